"""Canonical data models and error taxonomy."""

from src.models.schemas import (
    Sport,
    FeedType,
    OddValue,
    OddsSet,
    League,
    Match,
    Snapshot,
    SnapshotMetadata,
)
from src.models.errors import (
    CollectorError,
    InvalidArgument,
    UpstreamUnavailable,
    DecodeFailure,
    StorageFailure,
    NotFound,
)

__all__ = [
    "Sport",
    "FeedType",
    "OddValue",
    "OddsSet",
    "League",
    "Match",
    "Snapshot",
    "SnapshotMetadata",
    "CollectorError",
    "InvalidArgument",
    "UpstreamUnavailable",
    "DecodeFailure",
    "StorageFailure",
    "NotFound",
]
