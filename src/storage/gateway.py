"""
Storage gateway: Redis first, JSON file as fallback.

initialize() is called once per collection session and tries the cache
once. If that fails, or the cache is lost later, the gateway stays in file
mode until the next session calls initialize() again. Save failures are
logged and reported as False, never raised, since the next flush retries
anyway.
"""

from enum import Enum
from pathlib import Path
from typing import Optional

import structlog

from config.settings import Settings, settings as default_settings
from src.models.errors import StorageFailure
from src.models.schemas import FeedType, Match, Snapshot, SnapshotMetadata
from src.storage.cache import RedisMatchCache
from src.storage.file_store import JsonFileStore

logger = structlog.get_logger()


class StorageType(str, Enum):
    CACHE = "redis"
    FILE = "file"


class StorageGateway:
    """Snapshot persistence for one feed type."""

    def __init__(
        self,
        feed_type: FeedType,
        config: Optional[Settings] = None,
        cache: Optional[RedisMatchCache] = None,
        file_store: Optional[JsonFileStore] = None,
    ):
        config = config or default_settings
        self.feed_type = feed_type

        if file_store is None:
            filename = (
                config.storage.live_file if feed_type == FeedType.LIVE
                else config.storage.pre_match_file
            )
            file_store = JsonFileStore(Path(config.storage.data_dir) / filename)
        self.file_store = file_store

        if cache is None and config.cache.enabled:
            cache = RedisMatchCache(config.cache, prefix=f"{config.cache.namespace}:{feed_type.value}")
        self.cache = cache

        self._storage_type = StorageType.FILE

        # Metrics
        self.saves = 0
        self.failed_saves = 0

        self.logger = logger.bind(component="storage", feed_type=feed_type.value)

    async def initialize(self) -> StorageType:
        """Pick the backend for a new session. Never raises."""
        if self.is_cache_connected():
            return self._storage_type
        self._storage_type = StorageType.FILE

        if self.cache is None:
            self.logger.info("Cache disabled, using file storage", path=str(self.file_store.path))
            return self._storage_type

        try:
            await self.cache.connect()
            self._storage_type = StorageType.CACHE
            self.logger.info("Using Redis storage", prefix=self.cache.prefix)
        except StorageFailure as e:
            self.logger.warning(
                "Cache unavailable, falling back to file storage",
                error=str(e),
                path=str(self.file_store.path),
            )
        return self._storage_type

    def get_storage_type(self) -> StorageType:
        """Backend the next save goes to."""
        return self.current_backend

    def is_cache_connected(self) -> bool:
        return (
            self._storage_type == StorageType.CACHE
            and self.cache is not None
            and self.cache.connected
        )

    async def save_snapshot(self, matches: list[Match], metadata: SnapshotMetadata) -> bool:
        """Write matches and metadata to the active backend. Returns False on failure."""
        try:
            if self.is_cache_connected():
                await self.cache.save(matches, metadata)
            else:
                await self.file_store.save(matches, metadata)
        except StorageFailure as e:
            self.failed_saves += 1
            self.logger.error("Snapshot save failed", error=str(e), matches=len(matches))
            return False
        self.saves += 1
        self.logger.debug("Snapshot saved", matches=len(matches), storage=self.current_backend.value)
        return True

    async def load_snapshot(self) -> Snapshot:
        """Full read from the active backend."""
        if self.is_cache_connected():
            return await self.cache.load()
        return await self.file_store.load()

    async def clear_all(self) -> None:
        """Delete all persisted matches and metadata. Raises StorageFailure."""
        if self.is_cache_connected():
            removed = await self.cache.clear()
            self.logger.info("Cleared cached snapshot", keys=removed)
        else:
            await self.file_store.clear()
            self.logger.info("Cleared snapshot file")

    async def close(self) -> None:
        if self.cache is not None:
            await self.cache.close()

    @property
    def current_backend(self) -> StorageType:
        return StorageType.CACHE if self.is_cache_connected() else StorageType.FILE

    def get_metrics(self) -> dict:
        return {
            "storage_type": self._storage_type.value,
            "cache_connected": self.is_cache_connected(),
            "saves": self.saves,
            "failed_saves": self.failed_saves,
        }
