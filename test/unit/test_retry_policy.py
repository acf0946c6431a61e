"""Unit tests for delivery retry policy helpers."""

from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from config import RetryConfig
from notifications.retry_policy import (
    RetryPolicy,
    compute_backoff_delay_seconds,
    compute_retry_at,
    resolve_retry_policy,
    should_retry,
)


def test_backoff_doubles_per_attempt_and_is_capped() -> None:
    """Ensure delays follow base * 2**attempts up to the cap."""
    delays = [compute_backoff_delay_seconds(attempt, 60, 1000) for attempt in range(1, 6)]

    assert delays == [120, 240, 480, 960, 1000]


def test_should_retry_until_ceiling() -> None:
    """Ensure retries stop once attempts reach the ceiling."""
    assert should_retry(1, 3) is True
    assert should_retry(2, 3) is True
    assert should_retry(3, 3) is False


def test_compute_retry_at_returns_none_at_ceiling(base_now: datetime) -> None:
    """Ensure the final failure yields no retry time."""
    policy = RetryPolicy(max_attempts=3, backoff_base_seconds=60, backoff_max_seconds=3600)

    assert compute_retry_at(base_now, 1, policy) == base_now + timedelta(seconds=120)
    assert compute_retry_at(base_now, 2, policy) == base_now + timedelta(seconds=240)
    assert compute_retry_at(base_now, 3, policy) is None


def test_backoff_rejects_non_positive_attempts() -> None:
    """Ensure attempt counts start at one."""
    with pytest.raises(ValueError):
        compute_backoff_delay_seconds(0, 60, 3600)


def test_policy_from_config_and_validation() -> None:
    """Ensure policies load from config and invalid ones are rejected."""
    policy = RetryPolicy.from_config(
        RetryConfig(max_attempts=5, backoff_base_seconds=10, backoff_max_seconds=100)
    )

    assert resolve_retry_policy(policy) == policy
    with pytest.raises(ValueError):
        resolve_retry_policy(RetryPolicy(max_attempts=0, backoff_base_seconds=1, backoff_max_seconds=1))
    with pytest.raises(ValueError):
        resolve_retry_policy(RetryPolicy(max_attempts=1, backoff_base_seconds=10, backoff_max_seconds=5))


def test_resolve_defaults_to_settings() -> None:
    """Ensure an unset policy falls back to configured defaults."""
    policy = resolve_retry_policy(None)

    assert policy.max_attempts >= 1
    assert policy.backoff_max_seconds >= policy.backoff_base_seconds
