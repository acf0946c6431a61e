"""Time helpers for UTC storage and checkpoint arithmetic."""

from __future__ import annotations

from datetime import datetime, timezone

SECONDS_PER_HOUR = 3600.0


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Return an aware UTC datetime; naive values are assumed to already be UTC.

    SQLite drops tzinfo on round-trip, so values read back from it are naive.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def hours_between(start: datetime, end: datetime) -> float:
    """Return the signed number of hours from ``start`` to ``end``."""
    return (ensure_utc(end) - ensure_utc(start)).total_seconds() / SECONDS_PER_HOUR


def window_bucket(now: datetime, window_seconds: int) -> int:
    """Return the fixed-window bucket index containing ``now``."""
    if window_seconds <= 0:
        raise ValueError("window_seconds must be > 0.")
    return int(ensure_utc(now).timestamp()) // int(window_seconds)
