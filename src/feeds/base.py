"""
Base classes for upstream odds feeds.
Provides the shared HTTP client, health tracking and the sink contract
that feeds write collected matches through.
"""

import asyncio
import ssl
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Optional, Protocol

import certifi
import httpx
import orjson
import structlog

from src.models.errors import DecodeFailure, UpstreamUnavailable
from src.models.schemas import Match, OddsSet, Sport

logger = structlog.get_logger()


@dataclass
class FeedHealth:
    """Health status of a data feed."""
    connected: bool = False
    last_message_ms: int = 0
    reconnect_count: int = 0
    error_count: int = 0
    frames_received: int = 0
    frames_dropped: int = 0

    @property
    def is_stale(self) -> bool:
        """Check if feed data is stale (>60 seconds old)."""
        if self.last_message_ms == 0:
            return True
        return self.age_ms > 60000

    @property
    def age_ms(self) -> int:
        """Get age of last message in milliseconds."""
        if self.last_message_ms == 0:
            return -1
        return int(time.time() * 1000) - self.last_message_ms

    def touch(self) -> None:
        self.last_message_ms = int(time.time() * 1000)


class MatchSink(Protocol):
    """
    Write side of a collector session, as seen by a feed.

    Feeds never hold the match store directly. Every write goes through
    these calls so the collector can serialize and account for it.
    """

    def is_active(self) -> bool: ...

    def has_match(self, match_id: int) -> bool: ...

    async def upsert_matches(self, matches: list[Match]) -> int: ...

    async def merge_odds(self, match_id: int, odds: OddsSet) -> bool: ...

    async def patch_match(self, match_id: int, **fields: Any) -> bool: ...

    async def mark_ready(self) -> None: ...

    async def flush(self) -> bool: ...

    def record_processed(self) -> None: ...

    def record_cursor(self, **values: Any) -> None: ...


def create_http_client(
    timeout: Optional[float],
    headers: Optional[dict] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    connect_timeout: Optional[float] = None,
) -> httpx.AsyncClient:
    """
    Build an httpx client verifying against the certifi CA bundle.

    A timeout of None disables the read timeout, used for long-lived streams
    which end only on cancellation or upstream close.
    """
    ssl_context = ssl.create_default_context(cafile=certifi.where())
    if timeout is None:
        client_timeout = httpx.Timeout(None, connect=connect_timeout)
    else:
        client_timeout = httpx.Timeout(timeout)
    return httpx.AsyncClient(
        verify=ssl_context,
        timeout=client_timeout,
        headers=headers,
        transport=transport,
        follow_redirects=True,
    )


def decode_json(payload: bytes | str) -> Any:
    """orjson decode that raises DecodeFailure instead of orjson.JSONDecodeError."""
    try:
        return orjson.loads(payload)
    except orjson.JSONDecodeError as e:
        fragment = payload if isinstance(payload, str) else payload.decode("utf-8", "replace")
        raise DecodeFailure(f"Malformed JSON: {e}", fragment=fragment) from e


class BaseFeed(ABC):
    """
    Abstract base class for collector feeds.

    A feed is run as one task by the collector: run() returns only when the
    session ends or the task is cancelled. Per-cycle failures are recovered
    inside run() and never propagate.
    """

    def __init__(
        self,
        name: str,
        sport: Sport,
        sink: MatchSink,
        clock: Callable[[], float] = time.time,
    ):
        self.name = name
        self.sport = sport
        self.sink = sink
        self.clock = clock

        self.health = FeedHealth()
        self._running = False
        self._client: Optional[httpx.AsyncClient] = None

        self.logger = logger.bind(feed=name, sport=sport.value)

    @abstractmethod
    async def run(self) -> None:
        """Collect until cancelled or the session stops."""

    def should_continue(self) -> bool:
        return self._running and self.sink.is_active()

    async def _request_json(
        self,
        method: str,
        url: str,
        **kwargs: Any,
    ) -> Any:
        """
        Issue a request/response call and decode the JSON body.

        Raises:
            UpstreamUnavailable: transport error, timeout or non-2xx status
            DecodeFailure: body is not valid JSON
        """
        if self._client is None:
            raise UpstreamUnavailable(f"{self.name} client not open")
        try:
            response = await self._client.request(method, url, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            self.health.error_count += 1
            raise UpstreamUnavailable(
                f"{method} {url} returned {e.response.status_code}",
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            self.health.error_count += 1
            raise UpstreamUnavailable(f"{method} {url} failed: {e!r}") from e

        self.health.touch()
        return decode_json(response.content)

    async def close(self) -> None:
        """Stop the feed and release its HTTP client."""
        self._running = False
        self.health.connected = False
        if self._client is not None:
            client, self._client = self._client, None
            try:
                await client.aclose()
            except Exception as e:
                self.logger.debug("Client close failed", error=str(e))

    async def _sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)

    def get_metrics(self) -> dict:
        """Get current metrics for this feed."""
        return {
            "name": self.name,
            "connected": self.health.connected,
            "is_stale": self.health.is_stale,
            "age_ms": self.health.age_ms,
            "reconnect_count": self.health.reconnect_count,
            "error_count": self.health.error_count,
            "frames_received": self.health.frames_received,
            "frames_dropped": self.health.frames_dropped,
        }
