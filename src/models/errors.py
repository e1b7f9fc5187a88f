"""
Error taxonomy for the collector.

Only InvalidArgument is surfaced to callers of Collector.start. Everything
else is caught where it happens, logged, and recovered from.
"""

from typing import Optional


class CollectorError(Exception):
    """Base class for collector errors."""


class InvalidArgument(CollectorError, ValueError):
    """Rejected session parameter (interval or sport)."""


class UpstreamUnavailable(CollectorError):
    """Network failure, timeout or non-2xx response from an upstream."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class DecodeFailure(CollectorError, ValueError):
    """Malformed JSON, stream frame or positional change record."""

    def __init__(self, message: str, fragment: str = ""):
        super().__init__(message)
        self.fragment = fragment[:200]


class StorageFailure(CollectorError):
    """Cache or file backend failure."""


class NotFound(CollectorError, LookupError):
    """Unknown match id."""
