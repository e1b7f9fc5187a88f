"""
Redis snapshot backend.

Layout under a per-feed prefix:
    <prefix>:<matchId>   hash, every field stringified, odds JSON-encoded
    <prefix>:index       set of match ids
    <prefix>:metadata    hash of run metadata
All keys expire after the configured TTL (24h by default).
"""

from typing import Any, Optional

import orjson
import redis.asyncio as redis
import structlog
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError

from config.settings import CacheSettings
from src.models.errors import StorageFailure
from src.models.schemas import Match, Snapshot, SnapshotMetadata

logger = structlog.get_logger()

_BOOL_FIELDS = ("isLive", "blocked", "favourite")


def _stringify(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def match_to_hash(match: Match) -> dict[str, str]:
    data = match.to_dict()
    odds = data.pop("odds")
    fields = {key: _stringify(value) for key, value in data.items()}
    fields["odds"] = orjson.dumps(odds).decode()
    return fields


def match_from_hash(fields: dict[str, str]) -> Match:
    data: dict[str, Any] = dict(fields)
    for key in _BOOL_FIELDS:
        data[key] = data.get(key) == "true"
    data["odds"] = orjson.loads(data["odds"]) if data.get("odds") else {}
    return Match.from_dict(data)


def metadata_to_hash(metadata: SnapshotMetadata) -> dict[str, str]:
    return {key: _stringify(value) for key, value in metadata.to_dict().items()}


class RedisMatchCache:
    """
    Snapshot writer/reader for one feed's key prefix.

    Any Redis error is re-raised as StorageFailure. A connection error also
    marks the cache disconnected so the gateway stops routing to it.
    """

    def __init__(
        self,
        config: CacheSettings,
        prefix: str,
        client: Optional[Any] = None,
    ):
        self.config = config
        self.prefix = prefix
        self.index_key = f"{prefix}:index"
        self.metadata_key = f"{prefix}:metadata"
        self.ttl = config.ttl_seconds

        self._client = client
        self.connected = False

        self.logger = logger.bind(component="redis_cache", prefix=prefix)

    def key_for(self, match_id: int) -> str:
        return f"{self.prefix}:{match_id}"

    async def connect(self) -> None:
        if self._client is None:
            self._client = redis.Redis(
                host=self.config.host,
                port=self.config.port,
                db=self.config.db,
                password=self.config.password or None,
                decode_responses=True,
                socket_connect_timeout=self.config.connect_timeout_seconds,
                socket_timeout=self.config.connect_timeout_seconds,
            )
        try:
            await self._client.ping()
        except (RedisError, OSError) as e:
            self.connected = False
            raise StorageFailure(f"Redis unavailable at {self.config.host}:{self.config.port}: {e}") from e
        self.connected = True
        self.logger.info("Connected to Redis", host=self.config.host, port=self.config.port)

    async def save(self, matches: list[Match], metadata: SnapshotMetadata) -> None:
        client = self._require_client()
        pipe = client.pipeline(transaction=False)
        for match in matches:
            key = self.key_for(match.id)
            pipe.hset(key, mapping=match_to_hash(match))
            pipe.expire(key, self.ttl)
        if matches:
            pipe.sadd(self.index_key, *[str(match.id) for match in matches])
            pipe.expire(self.index_key, self.ttl)
        pipe.hset(self.metadata_key, mapping=metadata_to_hash(metadata))
        pipe.expire(self.metadata_key, self.ttl)
        await self._execute(pipe.execute(), "save")

    async def load(self) -> Snapshot:
        client = self._require_client()
        ids = await self._execute(client.smembers(self.index_key), "load index")
        ordered_ids = sorted(ids, key=lambda value: int(value))

        pipe = client.pipeline(transaction=False)
        for match_id in ordered_ids:
            pipe.hgetall(f"{self.prefix}:{match_id}")
        rows = await self._execute(pipe.execute(), "load matches") if ordered_ids else []

        matches = []
        for row in rows:
            # Expired entries can linger in the index
            if not row:
                continue
            try:
                matches.append(match_from_hash(row))
            except (KeyError, ValueError, orjson.JSONDecodeError) as e:
                self.logger.warning("Skipping unreadable cached match", error=str(e))

        raw_metadata = await self._execute(client.hgetall(self.metadata_key), "load metadata")
        metadata = SnapshotMetadata.from_dict(raw_metadata) if raw_metadata else None
        return Snapshot(matches=matches, metadata=metadata)

    async def clear(self) -> int:
        """Delete every key under the prefix. Returns the number of keys removed."""
        client = self._require_client()
        keys = []
        try:
            async for key in client.scan_iter(match=f"{self.prefix}:*"):
                keys.append(key)
        except (RedisError, OSError) as e:
            self._on_error(e)
            raise StorageFailure(f"Redis clear failed: {e}") from e
        if self.metadata_key not in keys:
            keys.append(self.metadata_key)
        return await self._execute(client.delete(*keys), "clear")

    async def close(self) -> None:
        if self._client is None:
            return
        client, self._client = self._client, None
        self.connected = False
        try:
            await client.aclose()
        except (RedisError, OSError) as e:
            self.logger.debug("Redis close failed", error=str(e))

    def _require_client(self) -> Any:
        if self._client is None or not self.connected:
            raise StorageFailure("Redis not connected")
        return self._client

    async def _execute(self, awaitable: Any, operation: str) -> Any:
        try:
            return await awaitable
        except (RedisError, OSError) as e:
            self._on_error(e)
            raise StorageFailure(f"Redis {operation} failed: {e}") from e

    def _on_error(self, error: Exception) -> None:
        if isinstance(error, (RedisConnectionError, OSError)):
            self.connected = False
