"""
Pre-match odds delta-polling client.

Phase one loads the full catalog for the selected sport through the
paginated fetcher and fetches detailed odds for every playable, eligible
event (bounded at `detail_concurrency` in flight).

Phase two polls the "changes since token" endpoint on a fixed period:
- changed events already in the store are patched in place
- new events get a detail fetch in the background (the poll loop never
  waits on it)
- changed bet outcomes are resolved through the same named-market table as
  phase one and merged as single keys

A poll that applied anything is followed by a snapshot flush.
"""

import asyncio
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

import httpx
import orjson

from config.settings import DeltaFeedSettings, settings
from src.engine.normalizer import OddsNormalizer, named_records_from_bets
from src.feeds.base import BaseFeed, MatchSink, create_http_client
from src.feeds.changes import EventChange, OutcomeChange, decode_changes
from src.feeds.paginated_fetcher import PaginatedEventFetcher
from src.models.errors import DecodeFailure, UpstreamUnavailable
from src.models.schemas import Match, OddsSet, OddValue, Sport, optional_int
from src.utils.concurrency import BoundedTaskPool

DEFAULT_HOME = "Home Team"
DEFAULT_AWAY = "Away Team"


def poll_period(interval: int) -> float:
    """Seconds between delta polls for a configured collection interval."""
    if interval <= 1:
        return 1.0
    if interval <= 15:
        return 2.0
    if interval <= 30:
        return 5.0
    return 10.0


def parse_team_names(name: Optional[str]) -> tuple[str, str]:
    """Split "Home - Away" into its two sides."""
    parts = (name or "").split(" - ")
    home = parts[0].strip() if parts else ""
    away = parts[1].strip() if len(parts) > 1 else ""
    return home or DEFAULT_HOME, away or DEFAULT_AWAY


def parse_kickoff_ms(value: Any) -> Optional[int]:
    """ISO-8601 date time (naive values are UTC) to epoch milliseconds."""
    if not value:
        return None
    if isinstance(value, (int, float)):
        return int(value)
    text = str(value).strip().replace("Z", "+00:00")
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(parsed.timestamp() * 1000)


def format_timestamp(moment: datetime) -> str:
    """UTC timestamp with millisecond precision, as the catalog expects."""
    moment = moment.astimezone(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


def match_from_event(event: dict, sport: Sport, odds: Optional[OddsSet] = None) -> Optional[Match]:
    """Build a Match from a catalog event. None if the id is missing."""
    match_id = optional_int(event.get("id"))
    if match_id is None:
        return None
    home, away = parse_team_names(event.get("name"))
    status = event.get("status")
    return Match(
        id=match_id,
        sport=sport,
        home=home,
        away=away,
        match_code=optional_int(event.get("sportMatchId")),
        league=event.get("competitionName") or "",
        league_short=event.get("shortName") or "",
        league_id=optional_int(event.get("competitionId")),
        kick_off_time=parse_kickoff_ms(event.get("dateTime")) or 0,
        status=str(status) if status is not None else "",
        is_live=bool(event.get("isLive", False)),
        blocked=not event.get("isPlayable", True),
        favourite=bool(event.get("isTopOffer", False)),
        region_id=optional_int(event.get("regionId")),
        competition_id=optional_int(event.get("competitionId")),
        odds=odds or {},
    )


def event_from_change(change: EventChange) -> dict:
    """Catalog-shaped event for a new event announced by the changes feed."""
    return {
        "id": change.event_id,
        "sportId": change.sport_id,
        "regionId": change.region_id,
        "competitionId": change.competition_id,
        "name": change.name,
        "competitionName": change.competition_name,
        "dateTime": change.date_time,
        "status": change.status,
        "sportMatchId": change.match_code,
        "isPlayable": True if change.is_playable is None else change.is_playable,
        "isTopOffer": bool(change.is_top_offer),
        "isLive": change.is_live,
    }


class DeltaPollingClient(BaseFeed):
    """
    Catalog + delta-poll feed for pre-match events.

    Usage:
        client = DeltaPollingClient(Sport.BASKETBALL, sink=collector, interval=120)
        task = asyncio.create_task(client.run())
    """

    def __init__(
        self,
        sport: Sport,
        sink: MatchSink,
        interval: int,
        config: Optional[DeltaFeedSettings] = None,
        normalizer: Optional[OddsNormalizer] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.time,
    ):
        super().__init__("pre_match_delta", sport, sink, clock)
        self.config = config or settings.delta
        self.interval = interval
        self.normalizer = normalizer or OddsNormalizer()
        self._transport = transport

        self.delta_token: Optional[str] = None
        self.detail_pool = BoundedTaskPool(
            self.config.detail_concurrency,
            name="detail",
            max_detached=self.config.detail_backlog,
        )
        self._pending_ids: set[int] = set()

        # Metrics
        self.catalog_events = 0
        self.polls = 0
        self.changes_applied = 0
        self.rejected_records = 0

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def run(self) -> None:
        self._running = True
        self._client = self._build_client()
        self.logger.info("Starting pre-match collection", interval=self.interval)

        try:
            await self.load_catalog()
            if not self.should_continue():
                return
            await self.sink.mark_ready()

            period = poll_period(self.interval)
            self.logger.info("Polling for changes", period=period)
            loop = asyncio.get_running_loop()
            while self.should_continue():
                started = loop.time()
                try:
                    await self.poll_once()
                except asyncio.CancelledError:
                    raise
                except (UpstreamUnavailable, DecodeFailure) as e:
                    self.logger.warning("Delta poll failed", error=str(e))
                except Exception as e:
                    self.health.error_count += 1
                    self.logger.error("Unexpected delta poll error", error=str(e))
                await asyncio.sleep(max(0.0, period - (loop.time() - started)))
        finally:
            await self.detail_pool.cancel()
            await self.close()

    def _build_client(self) -> httpx.AsyncClient:
        return create_http_client(
            timeout=self.config.request_timeout_seconds,
            headers={
                "language": self.config.language,
                "officeid": self.config.office_id,
                "origin": self.config.origin,
                "referer": self.config.origin.rstrip("/") + "/",
                "User-Agent": self.config.user_agent,
                "Accept": "application/json",
                "Cache-Control": "no-cache",
            },
            transport=self._transport,
        )

    # =========================================================================
    # Phase one: catalog
    # =========================================================================

    async def load_catalog(self) -> int:
        """Fetch every page of the catalog and ingest eligible events. Returns events ingested."""
        fetcher = PaginatedEventFetcher(
            self.fetch_catalog_page,
            page_size=self.config.page_size,
            page_ceiling=self.config.page_ceiling,
            concurrency=self.config.page_concurrency,
            inter_batch_delay=self.config.inter_batch_delay_seconds,
            name=f"{self.name}:{self.sport.value}",
        )
        events = await fetcher.fetch_all()
        eligible = [event for event in events if self.is_eligible(event)]
        self.logger.info("Catalog loaded", events=len(events), eligible=len(eligible))

        results = await self.detail_pool.map(self.ingest_event, eligible)
        ingested = sum(1 for result in results if result is not None)
        self.catalog_events = ingested
        self.health.connected = True
        self.sink.record_processed()
        return ingested

    def is_eligible(self, event: Any) -> bool:
        if not isinstance(event, dict) or optional_int(event.get("id")) is None:
            return False
        if optional_int(event.get("sportId")) not in (None, self.sport.provider_id):
            return False
        if not event.get("isPlayable", True):
            return False
        is_live = event.get("isLive")
        return is_live is None or bool(is_live) == self.config.live

    async def fetch_catalog_page(self, page: int) -> list[Any]:
        now = datetime.fromtimestamp(self.clock(), tz=timezone.utc)
        params = {
            "sportId": self.sport.provider_id,
            "topN": self.config.page_size,
            "skipN": page * self.config.page_size,
            "isLive": "true" if self.config.live else "false",
            "dateFrom": format_timestamp(now),
            "dateTo": format_timestamp(now + timedelta(days=self.config.lookahead_days)),
            "eventMappingTypes": self.config.mapping_types,
            "pageId": self.config.catalog_page_id,
        }
        data = await self._request_json(
            "GET", self.config.base_url + self.config.catalog_path, params=params
        )
        if not isinstance(data, list):
            raise DecodeFailure("Catalog page is not a list", fragment=repr(data))
        return data

    async def fetch_detail_bets(self, event: dict) -> Optional[list[Any]]:
        """Detailed bets of one event, or None if the detail call failed."""
        path = "/".join(str(event.get(key)) for key in ("sportId", "regionId", "competitionId", "id"))
        url = f"{self.config.base_url}{self.config.detail_path}/{path}"
        try:
            data = await self._request_json("GET", url)
        except (UpstreamUnavailable, DecodeFailure) as e:
            self.logger.debug("Detail fetch failed", event_id=event.get("id"), error=str(e))
            return None
        if not isinstance(data, dict):
            return None
        bets = data.get("bets")
        return bets if isinstance(bets, list) else None

    async def ingest_event(self, event: dict) -> Optional[Match]:
        """Fetch detailed odds for an event, normalize and upsert it."""
        if "sportId" not in event or event.get("sportId") is None:
            event = {**event, "sportId": self.sport.provider_id}
        bets = await self.fetch_detail_bets(event)
        if bets is None:
            bets = event.get("bets") or []
        odds = self.normalizer.normalize(self.sport, named_records_from_bets(bets))
        match = match_from_event(event, self.sport, odds)
        if match is None:
            return None
        await self.sink.upsert_matches([match])
        return match

    # =========================================================================
    # Phase two: deltas
    # =========================================================================

    async def poll_once(self) -> int:
        """Run one changes poll. Returns the number of applied changes."""
        payload = await self._request_json(
            "POST",
            self.config.base_url + self.config.changes_path,
            content=orjson.dumps({"deltaCacheNumber": self.delta_token}),
            headers={"Content-Type": "application/json"},
        )
        changes = decode_changes(payload)
        self.polls += 1
        self.rejected_records += changes.rejected
        if changes.rejected:
            self.logger.debug("Rejected change records", count=changes.rejected)

        if changes.token is not None:
            self.delta_token = changes.token
            self.sink.record_cursor(delta_token=self.delta_token)

        applied = 0
        for event in changes.events:
            if await self.apply_event_change(event):
                applied += 1
        for outcome in changes.outcomes:
            if await self.apply_outcome_change(outcome):
                applied += 1

        self.health.connected = True
        self.sink.record_processed()
        if applied:
            self.changes_applied += applied
            self.logger.debug(
                "Applied changes",
                applied=applied,
                events=len(changes.events),
                outcomes=len(changes.outcomes),
            )
            await self.sink.flush()
        return applied

    async def apply_event_change(self, change: EventChange) -> bool:
        if change.sport_id != self.sport.provider_id:
            return False

        if self.sink.has_match(change.event_id):
            home, away = (None, None)
            if change.name:
                home, away = parse_team_names(change.name)
            return await self.sink.patch_match(
                change.event_id,
                home=home,
                away=away,
                league=change.competition_name,
                kick_off_time=parse_kickoff_ms(change.date_time),
                status=str(change.status) if change.status is not None else None,
                blocked=None if change.is_playable is None else not change.is_playable,
                favourite=change.is_top_offer,
                is_live=change.is_live,
            )

        event = event_from_change(change)
        # Same playable and live/pre-match filter as the catalog load
        if not self.is_eligible(event) or change.event_id in self._pending_ids:
            return False
        if self.detail_pool.spawn(self._ingest_new_event, event) is None:
            self.logger.warning("Detail backlog full, deferring new event", event_id=change.event_id)
            return False
        self._pending_ids.add(change.event_id)
        return False

    async def _ingest_new_event(self, event: dict) -> Optional[Match]:
        try:
            return await self.ingest_event(event)
        finally:
            self._pending_ids.discard(event["id"])

    async def apply_outcome_change(self, change: OutcomeChange) -> bool:
        if change.sport_id != self.sport.provider_id:
            return False
        if not self.sink.has_match(change.event_id):
            return False

        resolved = self.normalizer.resolve_named(
            self.sport, change.bet_type_name, change.outcome_name, change.special_value
        )
        if resolved is None:
            self.normalizer.dropped += 1
            return False

        key, line = resolved
        odd = OddValue(value=change.odd, pick_code=change.pick_code)
        odds: OddsSet = {key: odd} if line is None else {key: {line: odd}}
        return await self.sink.merge_odds(change.event_id, odds)

    def get_metrics(self) -> dict:
        metrics = super().get_metrics()
        metrics.update({
            "delta_token": self.delta_token,
            "catalog_events": self.catalog_events,
            "polls": self.polls,
            "changes_applied": self.changes_applied,
            "rejected_records": self.rejected_records,
            "pending_details": len(self._pending_ids),
            "dropped_markets": self.normalizer.dropped,
            "detail_pool": self.detail_pool.get_metrics(),
        })
        return metrics
