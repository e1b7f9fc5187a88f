"""Snapshot persistence backends."""

from src.storage.cache import RedisMatchCache
from src.storage.file_store import JsonFileStore
from src.storage.gateway import StorageGateway, StorageType

__all__ = [
    "RedisMatchCache",
    "JsonFileStore",
    "StorageGateway",
    "StorageType",
]
