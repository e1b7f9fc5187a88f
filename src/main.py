"""
Odds Collector - Main Application

Runs one collector session (live stream or pre-match delta polling) until
SIGINT/SIGTERM, logging a status snapshot periodically.

Environment:
    COLLECTOR_FEED      live | pre_match (default: live)
    COLLECTOR_INTERVAL  collection interval in seconds (default: 15)
    COLLECTOR_SPORT     S | B | T (default: S)
    STATUS_INTERVAL     seconds between status logs (default: 60)
"""

import asyncio
import os
import signal
import sys
from typing import Optional

import structlog
from dotenv import load_dotenv

from config.settings import settings
from src.engine.collector import Collector
from src.models.errors import InvalidArgument
from src.models.schemas import FeedType
from src.utils.logging import MetricsLogger, setup_logging

logger = structlog.get_logger()


class CollectorApp:
    """Process wrapper around one Collector."""

    def __init__(
        self,
        feed_type: FeedType,
        interval: int,
        sport_code: str,
        status_interval: float = 60.0,
        metrics_logger: Optional[MetricsLogger] = None,
    ):
        self.collector = Collector(feed_type)
        self.interval = interval
        self.sport_code = sport_code
        self.status_interval = status_interval
        self.metrics_logger = metrics_logger

        self._shutdown_event = asyncio.Event()
        self.logger = logger.bind(component="app", feed_type=feed_type.value)

    async def start(self) -> None:
        await self.collector.start(self.interval, self.sport_code)
        status_task = asyncio.create_task(self._status_loop(), name="status_loop")

        try:
            await self._shutdown_event.wait()
        finally:
            status_task.cancel()
            await asyncio.gather(status_task, return_exceptions=True)
            await self.collector.close()
            self.logger.info("Collector shut down", matches=len(self.collector.store))

    async def _status_loop(self) -> None:
        while True:
            try:
                await asyncio.sleep(self.status_interval)
                status = self.collector.get_status()
                self.logger.info(
                    "Collector status",
                    state=status["state"],
                    total_matches=status["totalMatches"],
                    with_odds=status["matchesWithOdds"],
                    storage=status["storageType"],
                )
                if self.metrics_logger:
                    self.metrics_logger.log_status(self.collector.feed_type.value, status)
            except asyncio.CancelledError:
                break
            except Exception as e:
                self.logger.error("Status loop error", error=str(e))

    def shutdown(self) -> None:
        """Trigger graceful shutdown."""
        if not self._shutdown_event.is_set():
            self._shutdown_event.set()
            self.logger.info("Shutdown signal set")


def build_app() -> CollectorApp:
    feed = os.getenv("COLLECTOR_FEED", FeedType.LIVE.value).strip().lower()
    try:
        feed_type = FeedType(feed)
    except ValueError:
        raise InvalidArgument(f"Invalid COLLECTOR_FEED: {feed!r}. Use 'live' or 'pre_match'")

    try:
        interval = int(os.getenv("COLLECTOR_INTERVAL", "15"))
        status_interval = float(os.getenv("STATUS_INTERVAL", "60"))
    except ValueError as e:
        raise InvalidArgument(f"Invalid numeric setting: {e}")

    return CollectorApp(
        feed_type=feed_type,
        interval=interval,
        sport_code=os.getenv("COLLECTOR_SPORT", "S"),
        status_interval=status_interval,
        metrics_logger=MetricsLogger() if settings.debug else None,
    )


async def _main() -> None:
    app = build_app()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, app.shutdown)
        except NotImplementedError:
            signal.signal(sig, lambda *_: app.shutdown())
    await app.start()


def run() -> None:
    """Main entry point."""
    load_dotenv()
    setup_logging(settings.log_level, json_output=not settings.debug)
    try:
        asyncio.run(_main())
    except InvalidArgument as e:
        logger.error("Invalid configuration", error=str(e))
        sys.exit(2)
    except KeyboardInterrupt:
        logger.info("Interrupted by user")


if __name__ == "__main__":
    run()
