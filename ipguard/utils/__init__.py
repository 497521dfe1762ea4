"""Utility helpers."""
from .matching import has_wildcard, matches, pattern_matches  # noqa: F401
from .time import isoformat_ms, now_ms  # noqa: F401
