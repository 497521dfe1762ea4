"""Time helpers."""
from __future__ import annotations

import time
from datetime import UTC, datetime


def now_ms() -> int:
    """Current wall-clock time as integer epoch milliseconds."""

    return time.time_ns() // 1_000_000


def isoformat_ms(value: datetime | None = None) -> str:
    """Render ``value`` (default: now) as ``2024-01-01T00:00:00.000Z``."""

    if value is None:
        value = datetime.now(UTC)
    elif value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    value = value.astimezone(UTC)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"
