"""
Live odds push-stream client.

Two phases:
- Bootstrap: one long-lived GET against the snapshot endpoint. Header and
  bet records are accumulated until the `data: END <ts>` control frame,
  then normalized and merged in one pass. The END timestamp becomes the
  resume cursor unless it is stale.
- Continuous: a long-lived GET against the subscribe endpoint with the
  resume cursor. Only LIVE frames are decoded. The reader only splits
  frames and queues them. A separate worker decodes and merges, so slow
  normalization never stalls the socket.

Any error or upstream close while the session is active reconnects after a
fixed delay. A failed bootstrap retries bootstrap. A failed continuous
stream retries continuous with a fresh wall-clock cursor.
"""

import asyncio
import time
from enum import Enum
from typing import Any, Callable, Optional

import httpx

from config.settings import StreamFeedSettings, settings
from src.engine.normalizer import OddsNormalizer, coded_records_from_bet
from src.feeds.base import BaseFeed, MatchSink, create_http_client, decode_json
from src.feeds.sse import FrameSplitter, SSEFrame, parse_frame
from src.models.errors import DecodeFailure, UpstreamUnavailable
from src.models.schemas import Match, Sport, optional_int

LIVE_EVENT = "LIVE"


class StreamPhase(str, Enum):
    BOOTSTRAP = "bootstrap"
    CONTINUOUS = "continuous"


def resolve_resume_cursor(
    end_timestamp: Optional[int],
    now: float,
    stale_after_seconds: int = 300,
) -> int:
    """Cursor for the continuous phase: the END timestamp, or now if it is missing or stale."""
    current = int(now)
    if end_timestamp is None or current - end_timestamp > stale_after_seconds:
        return current
    return end_timestamp


def match_from_header(header: dict, sport: Sport) -> Optional[Match]:
    """Build a Match from a stream header record. None if the id is missing."""
    match_id = optional_int(header.get("id"))
    if match_id is None:
        return None
    betting_allowed = header.get("ba")
    return Match(
        id=match_id,
        sport=sport,
        home=header.get("h") or "",
        away=header.get("a") or "",
        match_code=optional_int(header.get("mc")),
        league=header.get("lg") or "",
        league_short=header.get("lsh") or "",
        league_id=optional_int(header.get("lid")),
        kick_off_time=optional_int(header.get("kot")) or 0,
        status=str(header.get("ls") or ""),
        is_live=bool(header.get("liv", False)),
        blocked=not betting_allowed if betting_allowed is not None else False,
        favourite=bool(header.get("tm", False)),
        announcement=header.get("ann") or "",
        last_change_time=optional_int(header.get("lct")) or 0,
    )


def header_patch(header: dict) -> dict:
    """Fields of a repeated header that refresh an already-known match."""
    betting_allowed = header.get("ba")
    status = header.get("ls")
    return {
        "status": str(status) if status is not None else None,
        "is_live": header.get("liv"),
        "announcement": header.get("ann"),
        "blocked": (not betting_allowed) if betting_allowed is not None else None,
        "favourite": header.get("tm"),
        "last_change_time": optional_int(header.get("lct")),
    }


class StreamIngestionClient(BaseFeed):
    """
    Push-stream feed for live matches.

    Usage:
        client = StreamIngestionClient(Sport.FOOTBALL, sink=collector)
        task = asyncio.create_task(client.run())
    """

    def __init__(
        self,
        sport: Sport,
        sink: MatchSink,
        config: Optional[StreamFeedSettings] = None,
        normalizer: Optional[OddsNormalizer] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.time,
    ):
        super().__init__("live_stream", sport, sink, clock)
        self.config = config or settings.stream
        self.normalizer = normalizer or OddsNormalizer()
        self._transport = transport

        self.phase = StreamPhase.BOOTSTRAP
        self.resume_cursor: Optional[int] = None

        self._queue: asyncio.Queue[str] = asyncio.Queue(maxsize=self.config.frame_queue_size)
        self._worker: Optional[asyncio.Task] = None

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def run(self) -> None:
        self._running = True
        self._client = create_http_client(
            timeout=None,
            connect_timeout=self.config.connect_timeout_seconds,
            headers={
                "User-Agent": self.config.user_agent,
                "Accept": "text/event-stream",
                "Cache-Control": "no-cache",
            },
            transport=self._transport,
        )
        self._worker = asyncio.create_task(self._process_frames())
        self.logger.info("Starting live stream")

        try:
            while self.should_continue():
                try:
                    if self.phase == StreamPhase.BOOTSTRAP:
                        await self._bootstrap()
                        continue
                    await self._stream_live()
                    self.logger.info("Live stream closed by upstream")
                except asyncio.CancelledError:
                    raise
                except (UpstreamUnavailable, httpx.HTTPError) as e:
                    self.health.error_count += 1
                    self.logger.warning("Stream failed", phase=self.phase.value, error=str(e))
                except Exception as e:
                    self.health.error_count += 1
                    self.logger.error("Unexpected stream error", phase=self.phase.value, error=str(e))

                self.health.connected = False
                if not self.should_continue():
                    break
                self.health.reconnect_count += 1
                self.logger.info(
                    "Reconnecting",
                    phase=self.phase.value,
                    attempt=self.health.reconnect_count,
                    delay=self.config.reconnect_delay_seconds,
                )
                await self._sleep(self.config.reconnect_delay_seconds)
        finally:
            await self._stop_worker()
            await self.close()

    async def _stop_worker(self) -> None:
        if self._worker is None:
            return
        worker, self._worker = self._worker, None
        worker.cancel()
        try:
            await worker
        except asyncio.CancelledError:
            pass

    # =========================================================================
    # Bootstrap
    # =========================================================================

    async def _bootstrap(self) -> None:
        splitter = FrameSplitter()
        headers: list[dict] = []
        bets: list[dict] = []
        end_timestamp: Optional[int] = None

        self.logger.info("Bootstrapping from snapshot stream")
        async with self._client.stream("GET", self.config.bootstrap_url) as response:
            self._check_status(response)
            self.health.connected = True
            async for chunk in response.aiter_text():
                for raw in splitter.feed(chunk):
                    end_timestamp = self._collect(raw, headers, bets)
                    if end_timestamp is not None:
                        break
                if end_timestamp is not None:
                    break
            else:
                trailing = splitter.flush()
                if trailing:
                    end_timestamp = self._collect(trailing, headers, bets)

        self.resume_cursor = resolve_resume_cursor(
            end_timestamp, self.clock(), self.config.stale_cursor_seconds
        )
        self.logger.info(
            "Bootstrap complete",
            headers=len(headers),
            bets=len(bets),
            end_timestamp=end_timestamp,
            resume_cursor=self.resume_cursor,
        )

        await self.apply_feed(headers, bets)
        self.sink.record_processed()
        self.sink.record_cursor(phase=StreamPhase.CONTINUOUS.value, resume_cursor=self.resume_cursor)
        await self.sink.mark_ready()
        self.phase = StreamPhase.CONTINUOUS

    def _collect(self, raw: str, headers: list[dict], bets: list[dict]) -> Optional[int]:
        """Accumulate one bootstrap frame. Returns the END timestamp for the control frame."""
        frame = parse_frame(raw)
        if frame is None:
            return None
        self.health.frames_received += 1
        self.health.touch()

        end_timestamp = frame.end_timestamp
        if end_timestamp is not None:
            return end_timestamp

        try:
            payload = decode_json(frame.data)
        except DecodeFailure as e:
            self.health.frames_dropped += 1
            self.logger.debug("Dropped bootstrap frame", error=str(e), fragment=e.fragment[:80])
            return None
        if isinstance(payload, dict):
            headers.extend(payload.get("liveHeaders") or [])
            bets.extend(payload.get("liveBets") or [])
        return None

    # =========================================================================
    # Continuous
    # =========================================================================

    async def _stream_live(self) -> None:
        if self.resume_cursor is None:
            self.resume_cursor = int(self.clock())
        self.sink.record_cursor(resume_cursor=self.resume_cursor)
        params = {self.config.cursor_param: self.resume_cursor}
        splitter = FrameSplitter()

        self.logger.info("Connecting to live stream", resume_cursor=self.resume_cursor)
        try:
            async with self._client.stream("GET", self.config.subscribe_url, params=params) as response:
                self._check_status(response)
                self.health.connected = True
                async for chunk in response.aiter_text():
                    for raw in splitter.feed(chunk):
                        await self._enqueue(parse_frame(raw))
        finally:
            # Never resume from a cursor whose stream failed or ended
            self.resume_cursor = None
            self.sink.record_cursor(resume_cursor=None)

    async def _enqueue(self, frame: Optional[SSEFrame]) -> None:
        if frame is None:
            return
        self.health.frames_received += 1
        self.health.touch()
        if frame.event != LIVE_EVENT:
            return
        # Blocks the reader when the worker falls behind
        await self._queue.put(frame.data)

    async def _process_frames(self) -> None:
        while True:
            data = await self._queue.get()
            try:
                payload = decode_json(data)
                if not isinstance(payload, dict):
                    raise DecodeFailure("LIVE frame is not an object", fragment=data)
                await self.apply_feed(payload.get("liveHeaders") or [], payload.get("liveBets") or [])
                self.sink.record_processed()
            except asyncio.CancelledError:
                raise
            except DecodeFailure as e:
                self.health.frames_dropped += 1
                self.logger.debug("Dropped live frame", error=str(e), fragment=e.fragment[:80])
            except Exception as e:
                self.health.error_count += 1
                self.logger.error("Live frame processing failed", error=str(e))
            finally:
                self._queue.task_done()

    # =========================================================================
    # Normalization
    # =========================================================================

    async def apply_feed(self, headers: list[Any], bets: list[Any]) -> None:
        """Merge header and bet records for the selected sport into the sink."""
        new_matches: dict[int, Match] = {}
        patches: list[tuple[int, dict]] = []

        for header in headers:
            if not isinstance(header, dict) or header.get("s") != self.sport.value:
                continue
            match = match_from_header(header, self.sport)
            if match is None:
                continue
            if self.sink.has_match(match.id):
                patches.append((match.id, header_patch(header)))
            else:
                new_matches[match.id] = match

        if new_matches:
            await self.sink.upsert_matches(list(new_matches.values()))
            self.logger.debug("Added matches", count=len(new_matches))
        for match_id, fields in patches:
            await self.sink.patch_match(match_id, **fields)

        merged = 0
        for bet in bets:
            if not isinstance(bet, dict):
                continue
            match_id = optional_int(bet.get("mId"))
            if match_id is None or not self.sink.has_match(match_id):
                continue
            odds = self.normalizer.normalize(self.sport, coded_records_from_bet(bet))
            if odds and await self.sink.merge_odds(match_id, odds):
                merged += 1

        if new_matches or patches or merged:
            self.logger.debug(
                "Applied feed",
                new=len(new_matches),
                patched=len(patches),
                bets_merged=merged,
            )

    def _check_status(self, response: httpx.Response) -> None:
        if response.status_code >= 400:
            raise UpstreamUnavailable(
                f"Stream returned {response.status_code}",
                status_code=response.status_code,
            )

    def get_metrics(self) -> dict:
        metrics = super().get_metrics()
        metrics.update({
            "phase": self.phase.value,
            "resume_cursor": self.resume_cursor,
            "queue_depth": self._queue.qsize(),
            "dropped_markets": self.normalizer.dropped,
        })
        return metrics
