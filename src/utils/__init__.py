"""Utility modules."""

from src.utils.concurrency import BoundedTaskPool
from src.utils.logging import setup_logging, MetricsLogger

__all__ = [
    "BoundedTaskPool",
    "setup_logging",
    "MetricsLogger",
]
