"""
Collector - session controller for one feed type.

Owns the match store, the session state, the active feed task and the save
timer. Feeds write through the sink methods on this class and never touch
the store directly.

States: IDLE -> BOOTSTRAPPING -> ACTIVE -> STOPPING -> IDLE
"""

import asyncio
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional

import structlog

from config.settings import Settings, settings as default_settings
from src.engine.match_store import MatchStore
from src.feeds.base import BaseFeed
from src.feeds.delta_client import DeltaPollingClient
from src.feeds.stream_client import StreamIngestionClient
from src.models.errors import InvalidArgument, NotFound, StorageFailure
from src.models.schemas import FeedType, Match, OddsSet, SnapshotMetadata, Sport
from src.storage.gateway import StorageGateway

logger = structlog.get_logger()


class CollectorState(str, Enum):
    IDLE = "idle"
    BOOTSTRAPPING = "bootstrapping"
    ACTIVE = "active"
    STOPPING = "stopping"


@dataclass
class SessionState:
    """Per-session parameters and cursors. Replaced on every start."""
    is_running: bool = False
    collection_interval: Optional[int] = None
    selected_sport: Optional[Sport] = None
    delta_token: Optional[str] = None
    resume_cursor: Optional[int] = None
    phase: Optional[str] = None
    last_processed_time: Optional[str] = None
    started_at: Optional[str] = None
    flushes: int = 0


FeedFactory = Callable[["Collector", Sport, int], BaseFeed]


def utc_now_iso(clock: Callable[[], float] = time.time) -> str:
    return datetime.fromtimestamp(clock(), tz=timezone.utc).isoformat().replace("+00:00", "Z")


class Collector:
    """
    One collection session at a time for a feed type.

    Usage:
        collector = Collector(FeedType.LIVE)
        await collector.start(15, "S")
        ...
        await collector.stop()
    """

    def __init__(
        self,
        feed_type: FeedType,
        storage: Optional[StorageGateway] = None,
        feed_factory: Optional[FeedFactory] = None,
        config: Optional[Settings] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.feed_type = feed_type
        self.config = config or default_settings
        self.clock = clock

        self.store = MatchStore(name=feed_type.value)
        self.storage = storage or StorageGateway(feed_type, self.config)
        self._feed_factory = feed_factory

        self.state = CollectorState.IDLE
        self.session = SessionState()

        self._feed: Optional[BaseFeed] = None
        self._feed_task: Optional[asyncio.Task] = None
        self._save_task: Optional[asyncio.Task] = None
        self._lifecycle_lock = asyncio.Lock()
        self._flush_lock = asyncio.Lock()

        self.logger = logger.bind(component="collector", feed_type=feed_type.value)

    # =========================================================================
    # Control surface
    # =========================================================================

    @property
    def allowed_intervals(self) -> list[int]:
        if self.feed_type == FeedType.LIVE:
            return list(self.config.collector.live_intervals)
        return list(self.config.collector.pre_match_intervals)

    @property
    def allowed_sports(self) -> list[str]:
        return list(self.config.collector.sports)

    def validate(self, interval: Any, sport_code: Any) -> Sport:
        """Check session parameters. Raises InvalidArgument."""
        if isinstance(interval, bool) or not isinstance(interval, int) or interval not in self.allowed_intervals:
            raise InvalidArgument(
                f"Invalid interval: {interval!r}. Allowed intervals: {self.allowed_intervals}"
            )
        sport = Sport.from_code(sport_code) if isinstance(sport_code, str) else None
        if sport is None or sport.value not in self.allowed_sports:
            raise InvalidArgument(
                f"Invalid sport: {sport_code!r}. Allowed sports: {self.allowed_sports}"
            )
        return sport

    async def start(self, interval: int, sport_code: str) -> bool:
        """
        Start a collection session.

        Returns False (and does nothing) if a session is already running.

        Raises:
            InvalidArgument: interval or sport not allowed
        """
        sport = self.validate(interval, sport_code)

        async with self._lifecycle_lock:
            if self.state != CollectorState.IDLE:
                self.logger.info("Collector already running", state=self.state.value)
                return False

            self.state = CollectorState.BOOTSTRAPPING
            self.session = SessionState(
                is_running=True,
                collection_interval=interval,
                selected_sport=sport,
                phase="bootstrap" if self.feed_type == FeedType.LIVE else None,
                started_at=utc_now_iso(self.clock),
            )
            self.logger.info("Starting collection", interval=interval, sport=sport.value)

            await self.storage.initialize()
            await self.store.clear()
            try:
                await self.storage.clear_all()
            except StorageFailure as e:
                self.logger.warning("Could not clear persisted snapshot", error=str(e))

            self._feed = self._create_feed(sport, interval)
            self._feed_task = asyncio.create_task(
                self._run_feed(self._feed), name=f"{self.feed_type.value}_feed"
            )
            return True

    async def stop(self) -> bool:
        """Stop the session and write a final snapshot. Returns False if already idle."""
        async with self._lifecycle_lock:
            if self.state == CollectorState.IDLE:
                return False

            self.state = CollectorState.STOPPING
            self.logger.info("Stopping collection")

            tasks = [task for task in (self._save_task, self._feed_task) if task is not None]
            for task in tasks:
                if not task.done():
                    task.cancel()
            if tasks:
                await asyncio.gather(*tasks, return_exceptions=True)
            self._save_task = None
            self._feed_task = None

            await self.flush()

            self.session.is_running = False
            self.state = CollectorState.IDLE
            self.logger.info("Collection stopped", matches=len(self.store))
            return True

    async def close(self) -> None:
        """Stop any running session and release storage connections."""
        await self.stop()
        await self.storage.close()

    def get_status(self) -> dict:
        counts = self.store.counts()
        status = {
            "state": self.state.value,
            "isRunning": self.session.is_running,
            "feedType": self.feed_type.value,
            "collectionInterval": self.session.collection_interval,
            "selectedSport": self.session.selected_sport.value if self.session.selected_sport else None,
            "totalMatches": counts["totalMatches"],
            "matchesWithOdds": counts["matchesWithOdds"],
            "bySport": counts["bySport"],
            "totalLeagues": self.store.league_count(),
            "lastProcessedTime": self.session.last_processed_time,
            "startedAt": self.session.started_at,
            "storageType": self.storage.get_storage_type().value,
            "cacheConnected": self.storage.is_cache_connected(),
        }
        if self.feed_type == FeedType.LIVE:
            status["phase"] = self.session.phase
            status["resumeCursor"] = self.session.resume_cursor
        else:
            status["deltaToken"] = self.session.delta_token
        status["feed"] = self._feed.get_metrics() if self._feed else None
        return status

    def get_matches(self) -> list[Match]:
        return self.store.snapshot()

    def get_match_by_id(self, match_id: int) -> Optional[Match]:
        return self.store.get(match_id)

    def get_match(self, match_id: int) -> Match:
        """Raises NotFound for an unknown id."""
        match = self.store.get(match_id)
        if match is None:
            raise NotFound(f"Match {match_id} not found")
        return match

    # =========================================================================
    # Sink (called by feeds)
    # =========================================================================

    def is_active(self) -> bool:
        return self.state in (CollectorState.BOOTSTRAPPING, CollectorState.ACTIVE)

    def has_match(self, match_id: int) -> bool:
        return self.store.contains(match_id)

    async def upsert_matches(self, matches: list[Match]) -> int:
        return await self.store.upsert_many(matches)

    async def merge_odds(self, match_id: int, odds: OddsSet) -> bool:
        return await self.store.merge_odds(match_id, odds)

    async def patch_match(self, match_id: int, **fields: Any) -> bool:
        return await self.store.patch(match_id, **fields)

    async def mark_ready(self) -> None:
        """Initial load done: go ACTIVE, persist it and start the save timer."""
        if self.state != CollectorState.BOOTSTRAPPING:
            return
        self.state = CollectorState.ACTIVE
        self.logger.info("Initial load complete", matches=len(self.store))
        await self.flush()
        self._save_task = asyncio.create_task(self._save_loop(), name=f"{self.feed_type.value}_save")

    async def flush(self) -> bool:
        """Persist a copy of the store through the storage gateway."""
        async with self._flush_lock:
            matches = self.store.snapshot()
            sport = self.session.selected_sport
            metadata = SnapshotMetadata(
                last_updated=utc_now_iso(self.clock),
                collection_interval=self.session.collection_interval or 0,
                selected_sport=sport.value if sport else None,
                total_matches=len(matches),
                total_leagues=self.store.league_count(),
            )
            saved = await self.storage.save_snapshot(matches, metadata)
            if saved:
                self.session.flushes += 1
            return saved

    def record_processed(self) -> None:
        self.session.last_processed_time = utc_now_iso(self.clock)

    def record_cursor(self, **values: Any) -> None:
        for name, value in values.items():
            if name in ("delta_token", "resume_cursor", "phase"):
                setattr(self.session, name, value)

    # =========================================================================
    # Internals
    # =========================================================================

    def _create_feed(self, sport: Sport, interval: int) -> BaseFeed:
        if self._feed_factory is not None:
            return self._feed_factory(self, sport, interval)
        if self.feed_type == FeedType.LIVE:
            return StreamIngestionClient(sport, self, config=self.config.stream, clock=self.clock)
        return DeltaPollingClient(sport, self, interval, config=self.config.delta, clock=self.clock)

    async def _run_feed(self, feed: BaseFeed) -> None:
        try:
            await feed.run()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.logger.error("Feed stopped unexpectedly", feed=feed.name, error=str(e))

    async def _save_loop(self) -> None:
        interval = self.session.collection_interval or 1
        while self.state == CollectorState.ACTIVE:
            try:
                await asyncio.sleep(interval)
                await self.flush()
            except asyncio.CancelledError:
                break
            except Exception as e:
                self.logger.error("Save timer error", error=str(e))
