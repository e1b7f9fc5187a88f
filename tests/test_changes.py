"""Tests for positional decoding of change records."""

import pytest

from src.feeds.changes import decode_changes, decode_event, decode_outcome
from src.models.errors import DecodeFailure


def event_record(event_id=100, sport_id=1):
    return {
        "id": [event_id, sport_id, 10, 20],
        "n": [0, 5100],
        "b": [True, False, False],
        "t": ["Home - Away", "Premijer Liga", "2026-10-20T18:00:00"],
    }


def outcome_record(event_id=100, odd=1.95, sbv=None):
    return {
        "id": [9001, 1, 10, 20, event_id, 700, 12, 102],
        "n": [odd] if sbv is None else [odd, sbv],
        "b": [True],
        "t": ["Konacan ishod", "X"],
    }


class TestDecodeEvent:

    def test_fields_by_position(self):
        change = decode_event(event_record())
        assert change.event_id == 100
        assert change.sport_id == 1
        assert change.region_id == 10
        assert change.competition_id == 20
        assert change.status == 0
        assert change.match_code == 5100
        assert change.is_playable is True
        assert change.is_live is False
        assert change.name == "Home - Away"
        assert change.date_time == "2026-10-20T18:00:00"

    def test_short_optional_arrays_leave_fields_unset(self):
        change = decode_event({"id": [1, 1, 2, 3]})
        assert change.status is None
        assert change.is_playable is None
        assert change.name is None

    @pytest.mark.parametrize("record", [
        {"id": [1, 1, 2]},
        {"id": ["x", 1, 2, 3]},
        {"id": "1,1,2,3"},
        [1, 1, 2, 3],
    ])
    def test_rejects_malformed(self, record):
        with pytest.raises(DecodeFailure):
            decode_event(record)


class TestDecodeOutcome:

    def test_fields_by_position(self):
        change = decode_outcome(outcome_record(sbv=2.5))
        assert change.outcome_id == 9001
        assert change.event_id == 100
        assert change.pick_code == 102
        assert change.odd == 1.95
        assert change.bet_type_name == "Konacan ishod"
        assert change.outcome_name == "X"
        assert change.special_value == 2.5

    def test_special_value_falls_back_to_text(self):
        record = outcome_record()
        record["t"] = ["Ukupno golova", "vise", "total=3.5"]
        assert decode_outcome(record).special_value == "total=3.5"

    def test_pick_code_defaults_to_outcome_id(self):
        record = outcome_record()
        record["id"] = record["id"][:6]
        assert decode_outcome(record).pick_code == 9001

    @pytest.mark.parametrize("field,value", [
        ("id", [9001, 1, 10, 20, 100]),
        ("n", []),
        ("n", ["high"]),
        ("t", ["Konacan ishod"]),
    ])
    def test_rejects_short_or_malformed(self, field, value):
        record = outcome_record()
        record[field] = value
        with pytest.raises(DecodeFailure):
            decode_outcome(record)


class TestDecodeChanges:

    def test_bad_records_are_counted_not_fatal(self):
        changes = decode_changes({
            "maxDeltaCacheNumberAsString": "123456789012345678",
            "changedEvents": [event_record(1), {"id": [1]}],
            "changedBetOutcomes": [outcome_record(), {"id": []}, "junk"],
        })
        assert changes.token == "123456789012345678"
        assert len(changes.events) == 1
        assert len(changes.outcomes) == 1
        assert changes.rejected == 3

    def test_empty_response(self):
        changes = decode_changes({})
        assert changes.token is None
        assert changes.is_empty

    def test_non_object_payload_raises(self):
        with pytest.raises(DecodeFailure):
            decode_changes([])
