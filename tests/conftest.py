"""Shared fixtures and test doubles."""

import fnmatch
from typing import Any

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from config.settings import (
    CacheSettings,
    CollectorSettings,
    DeltaFeedSettings,
    Settings,
    StorageSettings,
    StreamFeedSettings,
)
from src.engine.match_store import MatchStore
from src.models.schemas import Match, OddValue, Sport


class FakeSink:
    """In-memory MatchSink backed by a real MatchStore."""

    def __init__(self):
        self.store = MatchStore(name="test")
        self.active = True
        self.ready_calls = 0
        self.flush_calls = 0
        self.processed = 0
        self.cursors: dict[str, Any] = {}

    def is_active(self) -> bool:
        return self.active

    def has_match(self, match_id: int) -> bool:
        return self.store.contains(match_id)

    async def upsert_matches(self, matches):
        return await self.store.upsert_many(matches)

    async def merge_odds(self, match_id, odds):
        return await self.store.merge_odds(match_id, odds)

    async def patch_match(self, match_id, **fields):
        return await self.store.patch(match_id, **fields)

    async def mark_ready(self) -> None:
        self.ready_calls += 1

    async def flush(self) -> bool:
        self.flush_calls += 1
        return True

    def record_processed(self) -> None:
        self.processed += 1

    def record_cursor(self, **values) -> None:
        self.cursors.update(values)


class FakePipeline:
    def __init__(self, redis: "FakeRedis"):
        self.redis = redis
        self.ops = []

    def hset(self, key, mapping):
        self.ops.append(lambda: self.redis.hset_sync(key, mapping))
        return self

    def expire(self, key, ttl):
        self.ops.append(lambda: self.redis.expire_sync(key, ttl))
        return self

    def sadd(self, key, *members):
        self.ops.append(lambda: self.redis.sadd_sync(key, *members))
        return self

    def hgetall(self, key):
        self.ops.append(lambda: dict(self.redis.hashes.get(key, {})))
        return self

    async def execute(self):
        if self.redis.fail_writes:
            raise RedisConnectionError("connection lost")
        return [op() for op in self.ops]


class FakeRedis:
    """Just enough of redis.asyncio.Redis for the cache backend."""

    def __init__(self, fail_ping: bool = False):
        self.fail_ping = fail_ping
        self.fail_writes = False
        self.hashes: dict[str, dict[str, str]] = {}
        self.sets: dict[str, set[str]] = {}
        self.ttls: dict[str, int] = {}
        self.closed = False

    async def ping(self):
        if self.fail_ping:
            raise RedisConnectionError("Connection refused")
        return True

    def pipeline(self, transaction: bool = True):
        return FakePipeline(self)

    def hset_sync(self, key, mapping):
        self.hashes.setdefault(key, {}).update(mapping)
        return len(mapping)

    def expire_sync(self, key, ttl):
        self.ttls[key] = ttl
        return True

    def sadd_sync(self, key, *members):
        bucket = self.sets.setdefault(key, set())
        before = len(bucket)
        bucket.update(members)
        return len(bucket) - before

    async def smembers(self, key):
        return set(self.sets.get(key, set()))

    async def hgetall(self, key):
        return dict(self.hashes.get(key, {}))

    async def scan_iter(self, match: str = "*"):
        for key in list(self.hashes) + list(self.sets):
            if fnmatch.fnmatch(key, match):
                yield key

    async def delete(self, *keys):
        removed = 0
        for key in keys:
            if self.hashes.pop(key, None) is not None or self.sets.pop(key, None) is not None:
                removed += 1
            self.ttls.pop(key, None)
        return removed

    async def aclose(self):
        self.closed = True


@pytest.fixture
def sink():
    return FakeSink()


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def test_settings(tmp_path):
    """Settings isolated from the environment: no Redis, files under tmp_path, no delays."""
    return Settings(
        cache=CacheSettings(enabled=False),
        storage=StorageSettings(data_dir=str(tmp_path)),
        stream=StreamFeedSettings(reconnect_delay_seconds=0.01),
        delta=DeltaFeedSettings(inter_batch_delay_seconds=0.0),
        collector=CollectorSettings(),
    )


def make_match(match_id: int = 1, sport: Sport = Sport.FOOTBALL, **overrides) -> Match:
    """Build a match with one flat and one line market."""
    values = {
        "home": "Partizan",
        "away": "Crvena Zvezda",
        "league": "Super Liga",
        "league_id": 10,
        "kick_off_time": 1_700_000_000_000,
        "status": "1",
        "last_change_time": 100,
        "odds": {
            "fullTimeResultHomeWin": OddValue(2.1, 1),
            "firstHalfOverTotal": {"0.5": OddValue(1.4, 229)},
        },
    }
    values.update(overrides)
    return Match(id=match_id, sport=sport, **values)


@pytest.fixture
def match_factory():
    return make_match
