"""Tests for the canonical data models."""

import orjson
import pytest

from src.models.schemas import (
    Match,
    OddValue,
    SnapshotMetadata,
    Sport,
    merge_odds,
    optional_int,
)
from src.utils.logging import MetricsLogger
from tests.conftest import make_match


class TestSport:

    @pytest.mark.parametrize("value,expected", [
        ("S", Sport.FOOTBALL),
        ("b", Sport.BASKETBALL),
        (" tennis ", Sport.TENNIS),
        ("X", None),
        (3, None),
    ])
    def test_from_code(self, value, expected):
        assert Sport.from_code(value) == expected

    def test_provider_ids(self):
        assert Sport.FOOTBALL.provider_id == 1
        assert Sport.from_provider_id(3) == Sport.TENNIS
        assert Sport.from_provider_id(99) is None


class TestOdds:

    def test_merge_adds_lines_without_removing(self):
        target = {"a": OddValue(1.5, 1), "b": {"0.5": OddValue(1.2, 2)}}
        merge_odds(target, {"b": {"1.5": OddValue(2.0, 2)}, "c": OddValue(3.0, 3)})
        assert target == {
            "a": OddValue(1.5, 1),
            "b": {"0.5": OddValue(1.2, 2), "1.5": OddValue(2.0, 2)},
            "c": OddValue(3.0, 3),
        }

    def test_match_dict_uses_wire_names(self):
        data = make_match(5, region_id=3).to_dict()
        assert data["kickOffTime"] == 1_700_000_000_000
        assert data["regionId"] == 3
        assert data["odds"]["firstHalfOverTotal"] == {"0.5": {"value": 1.4, "pickCode": 229}}

        restored = Match.from_dict(orjson.loads(orjson.dumps(data)))
        assert restored == make_match(5, region_id=3)

    @pytest.mark.parametrize("value,expected", [
        ("12", 12),
        ("12.0", 12),
        (7.9, 7),
        ("", None),
        ("abc", None),
        (None, None),
    ])
    def test_optional_int(self, value, expected):
        assert optional_int(value) == expected


class TestSnapshotMetadata:

    def test_optional_fields_are_omitted(self):
        data = SnapshotMetadata(last_updated="t", collection_interval=15).to_dict()
        assert data == {"lastUpdated": "t", "collectionInterval": 15, "totalMatches": 0}

    def test_from_dict(self):
        metadata = SnapshotMetadata.from_dict({
            "lastUpdated": "t",
            "collectionInterval": "30",
            "selectedSport": "B",
            "totalMatches": "4",
        })
        assert metadata.collection_interval == 30
        assert metadata.total_matches == 4
        assert metadata.total_leagues is None


class TestMetricsLogger:

    def test_appends_json_lines(self, tmp_path):
        metrics = MetricsLogger(log_dir=str(tmp_path / "logs"))
        metrics.log_status("live", {"state": "active"}, timestamp_ms=1)
        metrics.log_status("live", {"state": "idle"}, timestamp_ms=2)

        lines = metrics.path.read_bytes().splitlines()
        assert [orjson.loads(line)["status"]["state"] for line in lines] == ["active", "idle"]
