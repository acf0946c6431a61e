"""Unit tests for UTC time helpers."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from time_utils import ensure_utc, hours_between, utc_now, window_bucket


def test_utc_now_is_aware() -> None:
    """utc_now returns an aware UTC datetime."""
    assert utc_now().tzinfo == timezone.utc


def test_ensure_utc_handles_naive_and_offset_values() -> None:
    """Naive values are treated as UTC; aware values are converted."""
    naive = datetime(2026, 3, 2, 9, 0)
    offset = datetime(2026, 3, 2, 4, 0, tzinfo=timezone(timedelta(hours=-5)))

    assert ensure_utc(naive) == datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)
    assert ensure_utc(offset).hour == 9
    assert ensure_utc(offset).tzinfo == timezone.utc


def test_hours_between_is_signed() -> None:
    """hours_between reports negative spans for past targets."""
    start = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)

    assert hours_between(start, start + timedelta(hours=6, minutes=30)) == 6.5
    assert hours_between(start, start - timedelta(hours=2)) == -2.0


def test_window_bucket_groups_fixed_windows() -> None:
    """Instants in the same aligned window share a bucket."""
    start = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)

    assert window_bucket(start, 3600) == window_bucket(start + timedelta(minutes=59), 3600)
    assert window_bucket(start, 3600) + 1 == window_bucket(start + timedelta(hours=1), 3600)
    with pytest.raises(ValueError):
        window_bucket(start, 0)
