"""
Positional decoding of the incremental changes response.

Each change record carries four parallel arrays: `id` (integers), `n`
(numbers), `b` (booleans) and `t` (strings). Field meaning is fixed by
position and is a contract with the upstream, so every index is named here
and every record is length-checked before use.
"""

from dataclasses import dataclass, field
from typing import Any, Optional

from src.models.errors import DecodeFailure
from src.models.schemas import optional_int

# =============================================================================
# Event record indices
# =============================================================================

EVENT_ID = 0
EVENT_SPORT_ID = 1
EVENT_REGION_ID = 2
EVENT_COMPETITION_ID = 3
EVENT_MIN_IDS = 4

EVENT_STATUS = 0
EVENT_MATCH_CODE = 1

EVENT_PLAYABLE = 0
EVENT_TOP_OFFER = 1
EVENT_LIVE = 2

EVENT_NAME = 0
EVENT_COMPETITION_NAME = 1
EVENT_DATE_TIME = 2

# =============================================================================
# Bet outcome record indices
# =============================================================================

OUTCOME_ID = 0
OUTCOME_SPORT_ID = 1
OUTCOME_REGION_ID = 2
OUTCOME_COMPETITION_ID = 3
OUTCOME_EVENT_ID = 4
OUTCOME_BET_ID = 5
OUTCOME_BET_TYPE_ID = 6
OUTCOME_BET_TYPE_OUTCOME_ID = 7
OUTCOME_MIN_IDS = 6

OUTCOME_ODD = 0
OUTCOME_SPECIAL_VALUE = 1
OUTCOME_MIN_NUMBERS = 1

OUTCOME_PLAYABLE = 0

OUTCOME_BET_TYPE_NAME = 0
OUTCOME_NAME = 1
OUTCOME_SBV = 2
OUTCOME_MIN_TEXTS = 2


@dataclass
class EventChange:
    """A new or changed catalog event."""
    event_id: int
    sport_id: int
    region_id: int
    competition_id: int
    status: Optional[int] = None
    match_code: Optional[int] = None
    is_playable: Optional[bool] = None
    is_top_offer: Optional[bool] = None
    is_live: Optional[bool] = None
    name: Optional[str] = None
    competition_name: Optional[str] = None
    date_time: Optional[str] = None


@dataclass
class OutcomeChange:
    """A changed price for one bet outcome."""
    outcome_id: int
    sport_id: int
    event_id: int
    pick_code: int
    odd: float
    bet_type_name: str
    outcome_name: str
    special_value: Any = None
    is_playable: Optional[bool] = None


@dataclass
class ChangeSet:
    """Decoded changes response."""
    token: Optional[str]
    events: list[EventChange] = field(default_factory=list)
    outcomes: list[OutcomeChange] = field(default_factory=list)
    rejected: int = 0

    @property
    def is_empty(self) -> bool:
        return not self.events and not self.outcomes


def _arrays(record: Any) -> tuple[list, list, list, list]:
    if not isinstance(record, dict):
        raise DecodeFailure("Change record is not an object", fragment=repr(record))
    arrays = []
    for name in ("id", "n", "b", "t"):
        value = record.get(name) or []
        if not isinstance(value, list):
            raise DecodeFailure(f"Change record field '{name}' is not an array", fragment=repr(record))
        arrays.append(value)
    return arrays[0], arrays[1], arrays[2], arrays[3]


def _at(values: list, index: int) -> Any:
    return values[index] if index < len(values) else None


def _bool_at(values: list, index: int) -> Optional[bool]:
    value = _at(values, index)
    return None if value is None else bool(value)


def _text_at(values: list, index: int) -> Optional[str]:
    value = _at(values, index)
    return None if value is None else str(value)


def _require_int(values: list, index: int, record: Any) -> int:
    value = optional_int(_at(values, index))
    if value is None:
        raise DecodeFailure(f"Change record id[{index}] is not an integer", fragment=repr(record))
    return value


def decode_event(record: Any) -> EventChange:
    ids, numbers, flags, texts = _arrays(record)
    if len(ids) < EVENT_MIN_IDS:
        raise DecodeFailure(
            f"Event change needs {EVENT_MIN_IDS} ids, got {len(ids)}", fragment=repr(record)
        )
    return EventChange(
        event_id=_require_int(ids, EVENT_ID, record),
        sport_id=_require_int(ids, EVENT_SPORT_ID, record),
        region_id=_require_int(ids, EVENT_REGION_ID, record),
        competition_id=_require_int(ids, EVENT_COMPETITION_ID, record),
        status=optional_int(_at(numbers, EVENT_STATUS)),
        match_code=optional_int(_at(numbers, EVENT_MATCH_CODE)),
        is_playable=_bool_at(flags, EVENT_PLAYABLE),
        is_top_offer=_bool_at(flags, EVENT_TOP_OFFER),
        is_live=_bool_at(flags, EVENT_LIVE),
        name=_text_at(texts, EVENT_NAME),
        competition_name=_text_at(texts, EVENT_COMPETITION_NAME),
        date_time=_text_at(texts, EVENT_DATE_TIME),
    )


def decode_outcome(record: Any) -> OutcomeChange:
    ids, numbers, flags, texts = _arrays(record)
    if len(ids) < OUTCOME_MIN_IDS:
        raise DecodeFailure(
            f"Outcome change needs {OUTCOME_MIN_IDS} ids, got {len(ids)}", fragment=repr(record)
        )
    if len(numbers) < OUTCOME_MIN_NUMBERS:
        raise DecodeFailure("Outcome change has no odd", fragment=repr(record))
    if len(texts) < OUTCOME_MIN_TEXTS:
        raise DecodeFailure(
            f"Outcome change needs {OUTCOME_MIN_TEXTS} texts, got {len(texts)}", fragment=repr(record)
        )

    try:
        odd = float(numbers[OUTCOME_ODD])
    except (TypeError, ValueError) as e:
        raise DecodeFailure("Outcome change odd is not numeric", fragment=repr(record)) from e

    outcome_id = _require_int(ids, OUTCOME_ID, record)
    pick_code = optional_int(_at(ids, OUTCOME_BET_TYPE_OUTCOME_ID))
    special_value = _at(numbers, OUTCOME_SPECIAL_VALUE)
    if special_value is None:
        special_value = _at(texts, OUTCOME_SBV)

    return OutcomeChange(
        outcome_id=outcome_id,
        sport_id=_require_int(ids, OUTCOME_SPORT_ID, record),
        event_id=_require_int(ids, OUTCOME_EVENT_ID, record),
        pick_code=pick_code if pick_code is not None else outcome_id,
        odd=odd,
        bet_type_name=str(texts[OUTCOME_BET_TYPE_NAME] or ""),
        outcome_name=str(texts[OUTCOME_NAME] or ""),
        special_value=special_value,
        is_playable=_bool_at(flags, OUTCOME_PLAYABLE),
    )


def decode_changes(payload: Any) -> ChangeSet:
    """
    Decode a full changes response.

    Records failing validation are counted in `rejected` and skipped. Only a
    payload that is not an object raises.
    """
    if not isinstance(payload, dict):
        raise DecodeFailure("Changes response is not an object", fragment=repr(payload))

    token = payload.get("maxDeltaCacheNumberAsString")
    changes = ChangeSet(token=str(token) if token is not None else None)

    for record in payload.get("changedEvents") or []:
        try:
            changes.events.append(decode_event(record))
        except DecodeFailure:
            changes.rejected += 1
    for record in payload.get("changedBetOutcomes") or []:
        try:
            changes.outcomes.append(decode_outcome(record))
        except DecodeFailure:
            changes.rejected += 1
    return changes
