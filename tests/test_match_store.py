"""Tests for the match store merge semantics."""

import asyncio

import pytest

from src.engine.match_store import MatchStore
from src.models.schemas import OddValue, Sport
from tests.conftest import make_match


@pytest.fixture
def store():
    return MatchStore(name="test")


class TestUpsert:

    async def test_insert_new_match(self, store):
        assert await store.upsert(make_match(1)) is True
        assert len(store) == 1
        assert store.get(1).home == "Partizan"

    async def test_upsert_is_idempotent(self, store):
        match = make_match(1)
        await store.upsert(match)
        first = store.get(1).odds
        await store.upsert(match)
        await store.upsert(match)
        assert store.get(1).odds == first
        assert len(store) == 1

    async def test_merge_adds_keys_and_lines(self, store):
        await store.upsert(make_match(1))
        await store.upsert(make_match(1, odds={
            "fullTimeResultDraw": OddValue(3.3, 2),
            "firstHalfOverTotal": {"1.5": OddValue(2.6, 229)},
        }))
        odds = store.get(1).odds
        assert odds["fullTimeResultHomeWin"] == OddValue(2.1, 1)
        assert odds["fullTimeResultDraw"] == OddValue(3.3, 2)
        assert odds["firstHalfOverTotal"] == {
            "0.5": OddValue(1.4, 229),
            "1.5": OddValue(2.6, 229),
        }

    async def test_merge_never_deletes_keys(self, store):
        await store.upsert(make_match(1))
        await store.upsert(make_match(1, odds={}))
        assert set(store.get(1).odds) == {"fullTimeResultHomeWin", "firstHalfOverTotal"}

    async def test_resupplied_key_overwrites_value(self, store):
        await store.upsert(make_match(1))
        await store.upsert(make_match(1, odds={"fullTimeResultHomeWin": OddValue(2.4, 1)}))
        assert store.get(1).odds["fullTimeResultHomeWin"] == OddValue(2.4, 1)

    async def test_mutable_fields_refresh_and_change_time_never_decreases(self, store):
        await store.upsert(make_match(1, status="1", last_change_time=200))
        await store.upsert(make_match(1, status="HT", blocked=True, last_change_time=150))
        stored = store.get(1)
        assert stored.status == "HT"
        assert stored.blocked is True
        assert stored.last_change_time == 200

    async def test_stored_match_is_isolated_from_caller(self, store):
        match = make_match(1)
        await store.upsert(match)
        match.odds["fullTimeResultDraw"] = OddValue(9.9, 2)
        match.odds["firstHalfOverTotal"]["9.5"] = OddValue(9.9, 229)
        odds = store.get(1).odds
        assert "fullTimeResultDraw" not in odds
        assert "9.5" not in odds["firstHalfOverTotal"]


class TestPatchAndMerge:

    async def test_patch_skips_none(self, store):
        await store.upsert(make_match(1))
        assert await store.patch(1, status="2", league=None) is True
        stored = store.get(1)
        assert stored.status == "2"
        assert stored.league == "Super Liga"

    async def test_patch_unknown_match(self, store):
        assert await store.patch(99, status="2") is False

    async def test_patch_rejects_unknown_field(self, store):
        await store.upsert(make_match(1))
        with pytest.raises(ValueError):
            await store.patch(1, odds={})

    async def test_merge_odds_requires_known_match(self, store):
        assert await store.merge_odds(5, {"fullTimeResultDraw": OddValue(3.0, 2)}) is False
        await store.upsert(make_match(5))
        assert await store.merge_odds(5, {"fullTimeResultDraw": OddValue(3.0, 2)}) is True
        assert "fullTimeResultDraw" in store.get(5).odds


class TestReads:

    async def test_snapshot_is_a_copy(self, store):
        await store.upsert(make_match(1))
        snapshot = store.snapshot()
        await store.merge_odds(1, {"fullTimeResultDraw": OddValue(3.0, 2)})
        assert "fullTimeResultDraw" not in snapshot[0].odds

    async def test_counts_and_leagues(self, store):
        await store.upsert_many([
            make_match(1, league_id=10),
            make_match(2, league_id=10),
            make_match(3, league_id=11, league="Premier", odds={}),
            make_match(4, sport=Sport.TENNIS, league_id=None, league="ATP", odds={}),
        ])
        counts = store.counts()
        assert counts["totalMatches"] == 4
        assert counts["matchesWithOdds"] == 2
        assert counts["bySport"]["S"] == {"total": 3, "withOdds": 2}
        assert counts["bySport"]["T"] == {"total": 1, "withOdds": 0}
        assert store.league_count() == 3

    async def test_clear(self, store):
        await store.upsert_many([make_match(1), make_match(2)])
        await store.clear()
        assert len(store) == 0

    async def test_concurrent_merges_are_not_lost(self, store):
        await store.upsert(make_match(1, odds={}))
        await asyncio.gather(*(
            store.merge_odds(1, {"firstHalfOverTotal": {f"{n}.5": OddValue(1.0 + n, 229)}})
            for n in range(20)
        ))
        assert len(store.get(1).odds["firstHalfOverTotal"]) == 20
