"""
Canonical data models for collected matches and odds.

Defines the core data structures for:
- Sports and feed types
- Odds values and odds sets (flat and line-based markets)
- Matches, leagues and persisted snapshots
"""

import dataclasses
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union


class Sport(str, Enum):
    """Supported sports, keyed by the single-letter code used on the wire."""
    FOOTBALL = "S"
    BASKETBALL = "B"
    TENNIS = "T"

    @property
    def provider_id(self) -> int:
        """Numeric sport id used by the delta (pre-match) provider."""
        return _PROVIDER_SPORT_IDS[self]

    @classmethod
    def from_code(cls, value: str) -> Optional["Sport"]:
        """Convert a code or name to Sport."""
        if not isinstance(value, str):
            return None
        value_upper = value.strip().upper()
        for sport in cls:
            if sport.value == value_upper or sport.name == value_upper:
                return sport
        return None

    @classmethod
    def from_provider_id(cls, provider_id: int) -> Optional["Sport"]:
        for sport, pid in _PROVIDER_SPORT_IDS.items():
            if pid == provider_id:
                return sport
        return None


_PROVIDER_SPORT_IDS = {
    Sport.FOOTBALL: 1,
    Sport.BASKETBALL: 2,
    Sport.TENNIS: 3,
}


class FeedType(str, Enum):
    """Ingestion strategy of a collector."""
    LIVE = "live"            # Push stream
    PRE_MATCH = "pre_match"  # Catalog + delta polling


@dataclass(frozen=True)
class OddValue:
    """A single priced outcome."""
    value: float
    pick_code: int

    def to_dict(self) -> dict:
        return {"value": self.value, "pickCode": self.pick_code}

    @classmethod
    def from_dict(cls, data: dict) -> "OddValue":
        return cls(value=float(data["value"]), pick_code=int(data["pickCode"]))


# canonical key -> OddValue, or for line markets canonical key -> {line: OddValue}
LineOdds = dict[str, OddValue]
OddsSet = dict[str, Union[OddValue, LineOdds]]


def copy_odds(odds: OddsSet) -> OddsSet:
    """Copy an odds set so the result shares no mutable state."""
    return {
        key: dict(value) if isinstance(value, dict) else value
        for key, value in odds.items()
    }


def merge_odds(target: OddsSet, incoming: OddsSet) -> OddsSet:
    """
    Merge incoming odds into target in place.

    New keys are added, new line sub-keys are added next to existing lines,
    and a re-supplied key (or line) overwrites the previous value. Nothing
    already in target is removed.
    """
    for key, value in incoming.items():
        if isinstance(value, dict):
            existing = target.get(key)
            if isinstance(existing, dict):
                existing.update(value)
            else:
                target[key] = dict(value)
        else:
            target[key] = value
    return target


def odds_to_dict(odds: OddsSet) -> dict:
    result: dict[str, Any] = {}
    for key, value in odds.items():
        if isinstance(value, dict):
            result[key] = {line: odd.to_dict() for line, odd in value.items()}
        else:
            result[key] = value.to_dict()
    return result


def odds_from_dict(data: Optional[dict]) -> OddsSet:
    odds: OddsSet = {}
    for key, value in (data or {}).items():
        if not isinstance(value, dict):
            continue
        if "value" in value and "pickCode" in value:
            odds[key] = OddValue.from_dict(value)
        else:
            odds[key] = {
                line: OddValue.from_dict(odd)
                for line, odd in value.items()
                if isinstance(odd, dict)
            }
    return odds


@dataclass
class League:
    """League index entry (status reporting only)."""
    id: int
    name: str


@dataclass
class Match:
    """
    Canonical match record.

    The id is the upstream event id and stays stable for a collection
    session. Odds are only ever merged into, never replaced wholesale.
    """
    id: int
    sport: Sport
    home: str = ""
    away: str = ""
    match_code: Optional[int] = None
    league: str = ""
    league_short: str = ""
    league_id: Optional[int] = None
    kick_off_time: int = 0  # epoch ms
    status: str = ""
    is_live: bool = False
    blocked: bool = False
    favourite: bool = False
    announcement: str = ""
    last_change_time: int = 0
    region_id: Optional[int] = None
    competition_id: Optional[int] = None
    odds: OddsSet = field(default_factory=dict)

    @property
    def has_odds(self) -> bool:
        return bool(self.odds)

    def copy(self) -> "Match":
        return dataclasses.replace(self, odds=copy_odds(self.odds))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "matchCode": self.match_code,
            "home": self.home,
            "away": self.away,
            "league": self.league,
            "leagueShort": self.league_short,
            "leagueId": self.league_id,
            "sport": self.sport.value,
            "kickOffTime": self.kick_off_time,
            "status": self.status,
            "isLive": self.is_live,
            "blocked": self.blocked,
            "favourite": self.favourite,
            "announcement": self.announcement,
            "lastChangeTime": self.last_change_time,
            "regionId": self.region_id,
            "competitionId": self.competition_id,
            "odds": odds_to_dict(self.odds),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Match":
        sport = Sport.from_code(data.get("sport", "")) or Sport.FOOTBALL
        return cls(
            id=int(data["id"]),
            sport=sport,
            home=data.get("home") or "",
            away=data.get("away") or "",
            match_code=optional_int(data.get("matchCode")),
            league=data.get("league") or "",
            league_short=data.get("leagueShort") or "",
            league_id=optional_int(data.get("leagueId")),
            kick_off_time=optional_int(data.get("kickOffTime")) or 0,
            status=str(data.get("status") or ""),
            is_live=bool(data.get("isLive", False)),
            blocked=bool(data.get("blocked", False)),
            favourite=bool(data.get("favourite", False)),
            announcement=data.get("announcement") or "",
            last_change_time=optional_int(data.get("lastChangeTime")) or 0,
            region_id=optional_int(data.get("regionId")),
            competition_id=optional_int(data.get("competitionId")),
            odds=odds_from_dict(data.get("odds")),
        )


# Fields refreshed in place when an already-known match is upserted
MUTABLE_MATCH_FIELDS = (
    "home",
    "away",
    "league",
    "league_short",
    "league_id",
    "kick_off_time",
    "status",
    "is_live",
    "blocked",
    "favourite",
    "announcement",
)


@dataclass
class SnapshotMetadata:
    """Run metadata written alongside every snapshot."""
    last_updated: str
    collection_interval: int
    selected_sport: Optional[str] = None
    total_matches: int = 0
    total_leagues: Optional[int] = None

    def to_dict(self) -> dict:
        data = {
            "lastUpdated": self.last_updated,
            "collectionInterval": self.collection_interval,
            "totalMatches": self.total_matches,
        }
        if self.selected_sport is not None:
            data["selectedSport"] = self.selected_sport
        if self.total_leagues is not None:
            data["totalLeagues"] = self.total_leagues
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "SnapshotMetadata":
        return cls(
            last_updated=str(data.get("lastUpdated") or ""),
            collection_interval=optional_int(data.get("collectionInterval")) or 0,
            selected_sport=data.get("selectedSport") or None,
            total_matches=optional_int(data.get("totalMatches")) or 0,
            total_leagues=optional_int(data.get("totalLeagues")),
        )


@dataclass
class Snapshot:
    """A full read of persisted state."""
    matches: list[Match]
    metadata: Optional[SnapshotMetadata] = None


def optional_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        try:
            return int(float(value))
        except (TypeError, ValueError):
            return None
