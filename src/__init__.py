"""Odds collector: live stream and pre-match delta ingestion into a canonical odds schema."""

__version__ = "0.1.0"
