"""Normalization, match storage and session control."""

from src.engine.normalizer import OddsNormalizer
from src.engine.match_store import MatchStore

# Collector is imported from src.engine.collector directly: it depends on
# src.feeds, which in turn depends on the normalizer above.

__all__ = [
    "OddsNormalizer",
    "MatchStore",
]
