"""Upstream odds feeds."""

from src.feeds.base import BaseFeed, FeedHealth, MatchSink
from src.feeds.stream_client import StreamIngestionClient
from src.feeds.delta_client import DeltaPollingClient
from src.feeds.paginated_fetcher import PaginatedEventFetcher

__all__ = [
    "BaseFeed",
    "FeedHealth",
    "MatchSink",
    "StreamIngestionClient",
    "DeltaPollingClient",
    "PaginatedEventFetcher",
]
