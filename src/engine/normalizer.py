"""
Odds Normalizer.

Maps provider-specific bet records onto canonical market keys.

Two upstream encodings exist:
- Coded (live stream): numeric bet codes ("om") with odd value ("ov") and
  pick code ("bpc"), plus a bet-level special value like "total=2.5".
- Named (pre-match): bet type name + outcome name pairs with an optional
  numeric special value.

Both are resolved through declarative tables built at import time, so the
catalog path and the delta path produce identical keys for the same outcome.
Anything not in the tables is dropped and counted, never raised.
"""

import re
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional, Union

import structlog

from src.models.schemas import OddValue, OddsSet, Sport

logger = structlog.get_logger()


# =============================================================================
# Raw records
# =============================================================================

@dataclass(frozen=True)
class CodedOddsRecord:
    """One entry of a stream bet's odds map."""
    code: int
    value: float
    pick_code: int
    special_value: str = ""


@dataclass(frozen=True)
class NamedOddsRecord:
    """One outcome of a pre-match bet."""
    bet_type: str
    outcome: str
    value: float
    pick_code: int
    special_value: Any = None


RawOddsRecord = Union[CodedOddsRecord, NamedOddsRecord]


# =============================================================================
# Line values
# =============================================================================

LINE_PATTERN = re.compile(r"total=(\d+(?:\.\d+)?)")


def format_line(value: float) -> str:
    """Format a line as a stable key: 2.5 -> "2.5", 3 -> "3.0", 2.25 -> "2.25"."""
    text = f"{value:.2f}".rstrip("0")
    if text.endswith("."):
        text += "0"
    return text


def extract_line(raw: Any) -> Optional[str]:
    """Extract the numeric line from a special value (number, "2.5" or "total=2.5")."""
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        return format_line(float(raw))
    text = str(raw).strip()
    if not text:
        return None
    match = LINE_PATTERN.search(text)
    if match:
        return format_line(float(match.group(1)))
    try:
        return format_line(float(text))
    except ValueError:
        return None


LineExtractor = Callable[[Any], Optional[str]]


# =============================================================================
# Market tables
# =============================================================================

@dataclass(frozen=True)
class MarketTarget:
    """Canonical destination of a provider outcome."""
    key: str
    line_based: bool = False
    default_line: Optional[str] = None


@dataclass(frozen=True)
class OutcomeRule:
    """Matches a named outcome by exact name or by lowercase substring."""
    target: MarketTarget
    names: tuple[str, ...] = ()
    contains: tuple[str, ...] = ()

    def matches(self, outcome: str) -> bool:
        stripped = outcome.strip()
        if stripped in self.names:
            return True
        lowered = stripped.lower()
        return any(token in lowered for token in self.contains)


def _flat(key: str) -> MarketTarget:
    return MarketTarget(key)


def _line(key: str, default_line: Optional[str] = None) -> MarketTarget:
    return MarketTarget(key, line_based=True, default_line=default_line)


CODED_MARKETS: dict[Sport, dict[int, MarketTarget]] = {
    Sport.FOOTBALL: {
        1: _flat("fullTimeResultHomeWin"),
        2: _flat("fullTimeResultDraw"),
        3: _flat("fullTimeResultAwayWin"),
        4: _flat("firstHalfResultHomeWin"),
        5: _flat("firstHalfResultDraw"),
        6: _flat("firstHalfResultAwayWin"),
        229: _line("firstHalfOverTotal"),
        230: _line("firstHalfUnderTotal"),
        272: _flat("bothTeamsToScore"),
        273: _flat("oneTeamNotToScore"),
        22: _flat("zeroToTwoGoals"),
        278: _flat("oneOrTwoGoals"),
        279: _flat("oneToThreeGoals"),
        23: _flat("twoOrThreeGoals"),
        243: _flat("twoToFourGoals"),
        244: _flat("threeToFourGoals"),
        281: _flat("threeToFiveGoals"),
        379: _flat("fourToFiveGoals"),
        26: _flat("fourToSixGoals"),
    },
    Sport.BASKETBALL: {
        50291: _flat("basketballFTOT1"),
        50293: _flat("basketballFTOT2"),
    },
    Sport.TENNIS: {
        1: _flat("tennisHomeWins"),
        3: _flat("tennisAwayWins"),
        50510: _flat("tennisHomeWinsFirstSet"),
        50511: _flat("tennisAwayWinsFirstSet"),
        50512: _flat("tennisHomeWinsSecondSet"),
        50513: _flat("tennisAwayWinsSecondSet"),
    },
}


def _winner_rules(home_key: str, away_key: str, draw_key: Optional[str] = None) -> tuple[OutcomeRule, ...]:
    rules = [OutcomeRule(_flat(home_key), names=("1",), contains=("home",))]
    if draw_key:
        rules.append(OutcomeRule(_flat(draw_key), names=("X",), contains=("draw",)))
    rules.append(OutcomeRule(_flat(away_key), names=("2",), contains=("away",)))
    return tuple(rules)


def _total_rules(under_key: str, over_key: str, default_line: str) -> tuple[OutcomeRule, ...]:
    return (
        OutcomeRule(_line(under_key, default_line), contains=("manje",)),
        OutcomeRule(_line(over_key, default_line), contains=("vise",)),
    )


NAMED_MARKETS: dict[Sport, dict[str, tuple[OutcomeRule, ...]]] = {
    Sport.FOOTBALL: {
        "Konacan ishod": _winner_rules(
            "fullTimeResultHomeWin", "fullTimeResultAwayWin", "fullTimeResultDraw"
        ),
        "1.pol - 1X2": _winner_rules(
            "firstHalfResultHomeWin", "firstHalfResultAwayWin", "firstHalfResultDraw"
        ),
        "Broj golova": (
            OutcomeRule(_flat("oneToTwoGoals"), contains=("1-2",)),
            OutcomeRule(_flat("oneToThreeGoals"), contains=("1-3",)),
            OutcomeRule(_flat("oneToFourGoals"), contains=("1-4",)),
            OutcomeRule(_flat("twoOrThreeGoals"), contains=("2-3",)),
            OutcomeRule(_flat("twoToFourGoals"), contains=("2-4",)),
            OutcomeRule(_flat("threeToFourGoals"), contains=("3-4",)),
            OutcomeRule(_flat("threeToFiveGoals"), contains=("3-5",)),
            OutcomeRule(_flat("fourToFiveGoals"), contains=("4-5",)),
            OutcomeRule(_flat("fourToSixGoals"), contains=("4-6",)),
            OutcomeRule(_flat("zeroToTwoGoals"), contains=("0-2",)),
        ),
        "Oba tima daju gol": (
            OutcomeRule(_flat("bothTeamsToScore"), names=("GG",), contains=("da",)),
            OutcomeRule(_flat("oneTeamNotToScore"), names=("NG",), contains=("ne",)),
        ),
        "1.pol - Ukupno golova": _total_rules("firstHalfUnderTotal", "firstHalfOverTotal", "0.5"),
        "Ukupno golova": _total_rules("fullTimeUnderTotal", "fullTimeOverTotal", "2.5"),
    },
    Sport.BASKETBALL: {
        "Pobednik": _winner_rules("basketballFTOT1", "basketballFTOT2"),
    },
    Sport.TENNIS: {
        "Pobednik": _winner_rules("tennisHomeWins", "tennisAwayWins"),
        "1.set - Pobednik": _winner_rules("tennisHomeWinsFirstSet", "tennisAwayWinsFirstSet"),
        "2.set - Pobednik": _winner_rules("tennisHomeWinsSecondSet", "tennisAwayWinsSecondSet"),
    },
}


def _canonical_keys() -> dict[Sport, frozenset[str]]:
    keys: dict[Sport, set[str]] = {sport: set() for sport in Sport}
    for sport, table in CODED_MARKETS.items():
        keys[sport].update(target.key for target in table.values())
    for sport, bet_types in NAMED_MARKETS.items():
        for rules in bet_types.values():
            keys[sport].update(rule.target.key for rule in rules)
    return {sport: frozenset(values) for sport, values in keys.items()}


# Closed enumeration of canonical keys per sport
CANONICAL_KEYS = _canonical_keys()


# =============================================================================
# Wire decoding
# =============================================================================

def coded_records_from_bet(bet: dict) -> list[CodedOddsRecord]:
    """Decode the odds map of a stream bet ({"om": {"1": {"ov": .., "bpc": ..}}, "sv": ..})."""
    special_value = bet.get("sv") or ""
    records = []
    for code, entry in (bet.get("om") or {}).items():
        try:
            records.append(CodedOddsRecord(
                code=int(code),
                value=float(entry["ov"]),
                pick_code=int(entry["bpc"]),
                special_value=str(special_value),
            ))
        except (KeyError, TypeError, ValueError):
            continue
    return records


def named_records_from_bets(bets: Iterable[dict]) -> list[NamedOddsRecord]:
    """Decode pre-match detail bets ({"betTypeName": .., "betOutcomes": [..]})."""
    records = []
    for bet in bets or []:
        if not isinstance(bet, dict):
            continue
        bet_type = bet.get("betTypeName") or ""
        bet_special = bet.get("sbv")
        for outcome in bet.get("betOutcomes") or []:
            if not isinstance(outcome, dict):
                continue
            special = outcome.get("specialValue")
            if special is None:
                special = outcome.get("sbv") or bet_special
            pick_code = outcome.get("betTypeOutcomeId")
            if pick_code is None:
                pick_code = outcome.get("id")
            try:
                records.append(NamedOddsRecord(
                    bet_type=outcome.get("betTypeName") or bet_type,
                    outcome=str(outcome.get("name") or ""),
                    value=float(outcome["odd"]),
                    pick_code=int(pick_code),
                    special_value=special,
                ))
            except (KeyError, TypeError, ValueError):
                continue
    return records


# =============================================================================
# Normalizer
# =============================================================================

class OddsNormalizer:
    """
    Stateless mapping from raw bet records to an OddsSet.

    The only state is the dropped-record counter, kept for metrics.
    """

    def __init__(self, line_extractor: LineExtractor = extract_line):
        self.line_extractor = line_extractor
        self.dropped = 0

    def resolve_coded(
        self,
        sport: Sport,
        code: int,
        special_value: Any = None,
    ) -> Optional[tuple[str, Optional[str]]]:
        """Resolve a numeric bet code to (canonical key, line or None)."""
        target = CODED_MARKETS.get(sport, {}).get(code)
        return self._with_line(target, special_value)

    def resolve_named(
        self,
        sport: Sport,
        bet_type: str,
        outcome: str,
        special_value: Any = None,
    ) -> Optional[tuple[str, Optional[str]]]:
        """Resolve bet type name + outcome name (+ line) to (canonical key, line or None)."""
        rules = NAMED_MARKETS.get(sport, {}).get((bet_type or "").strip())
        if not rules:
            return None
        for rule in rules:
            if rule.matches(outcome or ""):
                return self._with_line(rule.target, special_value)
        return None

    def resolve(self, sport: Sport, record: RawOddsRecord) -> Optional[tuple[str, Optional[str]]]:
        if isinstance(record, CodedOddsRecord):
            return self.resolve_coded(sport, record.code, record.special_value)
        return self.resolve_named(sport, record.bet_type, record.outcome, record.special_value)

    def normalize(self, sport: Sport, records: Iterable[RawOddsRecord]) -> OddsSet:
        """Build an OddsSet from raw records, dropping anything unmapped."""
        odds: OddsSet = {}
        for record in records:
            resolved = self.resolve(sport, record)
            if resolved is None:
                self.dropped += 1
                logger.debug("Unrecognized market", sport=sport.value, record=repr(record)[:120])
                continue
            key, line = resolved
            odd = OddValue(value=record.value, pick_code=record.pick_code)
            if line is None:
                odds[key] = odd
            else:
                lines = odds.get(key)
                if not isinstance(lines, dict):
                    lines = {}
                    odds[key] = lines
                lines[line] = odd
        return odds

    def _with_line(
        self,
        target: Optional[MarketTarget],
        special_value: Any,
    ) -> Optional[tuple[str, Optional[str]]]:
        if target is None:
            return None
        if not target.line_based:
            return target.key, None
        line = self.line_extractor(special_value)
        if line is None:
            line = target.default_line
        if line is None:
            return None
        return target.key, line
