"""
In-memory match store with merge semantics.

All mutations serialize on one asyncio.Lock. Reads are synchronous and
return copies, so a flush never holds a live reference into the store.
"""

import asyncio
from typing import Any, Iterable, Optional

import structlog

from src.models.schemas import (
    MUTABLE_MATCH_FIELDS,
    League,
    Match,
    OddsSet,
    Sport,
    copy_odds,
    merge_odds,
)

logger = structlog.get_logger()

# Identity fields only filled in when the stored value is missing
_IDENTITY_FIELDS = ("match_code", "region_id", "competition_id")


class MatchStore:
    """
    Keyed map of match id -> Match.

    Upsert refreshes mutable fields in place and merges odds key by key.
    A previously populated canonical key is only ever overwritten by a new
    value for that exact key (or line), never removed.
    """

    def __init__(self, name: str = "store"):
        self._matches: dict[int, Match] = {}
        self._lock = asyncio.Lock()
        self.logger = logger.bind(component="match_store", store=name)

    # =========================================================================
    # Mutations
    # =========================================================================

    async def upsert(self, match: Match) -> bool:
        """Insert or merge a match. Returns True when the id was new."""
        async with self._lock:
            return self._upsert(match)

    async def upsert_many(self, matches: Iterable[Match]) -> int:
        """Upsert a batch under one lock acquisition. Returns the number of new ids."""
        inserted = 0
        async with self._lock:
            for match in matches:
                if self._upsert(match):
                    inserted += 1
        return inserted

    async def patch(self, match_id: int, **fields: Any) -> bool:
        """
        Refresh mutable fields of a known match.

        None values are skipped. Unknown field names raise ValueError.
        Returns False if the match is not in the store.
        """
        unknown = set(fields) - set(MUTABLE_MATCH_FIELDS) - {"last_change_time"}
        if unknown:
            raise ValueError(f"Cannot patch fields: {sorted(unknown)}")

        async with self._lock:
            existing = self._matches.get(match_id)
            if existing is None:
                return False
            for name, value in fields.items():
                if value is None:
                    continue
                if name == "last_change_time":
                    existing.last_change_time = max(existing.last_change_time, int(value))
                else:
                    setattr(existing, name, value)
            return True

    async def merge_odds(self, match_id: int, odds: OddsSet) -> bool:
        """Merge odds into a known match. Returns False if the match is unknown."""
        async with self._lock:
            existing = self._matches.get(match_id)
            if existing is None:
                return False
            merge_odds(existing.odds, odds)
            return True

    async def clear(self) -> None:
        async with self._lock:
            self._matches.clear()

    def _upsert(self, match: Match) -> bool:
        existing = self._matches.get(match.id)
        if existing is None:
            stored = match.copy()
            self._matches[match.id] = stored
            return True

        for name in MUTABLE_MATCH_FIELDS:
            setattr(existing, name, getattr(match, name))
        for name in _IDENTITY_FIELDS:
            if getattr(existing, name) is None:
                setattr(existing, name, getattr(match, name))
        existing.last_change_time = max(existing.last_change_time, match.last_change_time)
        merge_odds(existing.odds, copy_odds(match.odds))
        return False

    # =========================================================================
    # Reads
    # =========================================================================

    def __len__(self) -> int:
        return len(self._matches)

    def __contains__(self, match_id: int) -> bool:
        return match_id in self._matches

    def contains(self, match_id: int) -> bool:
        return match_id in self._matches

    def get(self, match_id: int) -> Optional[Match]:
        match = self._matches.get(match_id)
        return match.copy() if match else None

    def snapshot(self) -> list[Match]:
        """Copy of every stored match, safe to serialize while ingestion continues."""
        return [match.copy() for match in list(self._matches.values())]

    def leagues(self) -> list[League]:
        """League index derived from stored matches."""
        index: dict[Any, League] = {}
        for match in list(self._matches.values()):
            if match.league_id is not None:
                index.setdefault(match.league_id, League(id=match.league_id, name=match.league))
            elif match.league:
                index.setdefault(match.league, League(id=0, name=match.league))
        return list(index.values())

    def league_count(self) -> int:
        return len(self.leagues())

    def counts(self) -> dict:
        """Totals and per-sport breakdown for status reporting."""
        by_sport = {sport.value: {"total": 0, "withOdds": 0} for sport in Sport}
        with_odds = 0
        matches = list(self._matches.values())
        for match in matches:
            bucket = by_sport[match.sport.value]
            bucket["total"] += 1
            if match.has_odds:
                bucket["withOdds"] += 1
                with_odds += 1
        return {
            "totalMatches": len(matches),
            "matchesWithOdds": with_odds,
            "bySport": by_sport,
        }
