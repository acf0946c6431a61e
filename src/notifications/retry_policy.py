"""Retry and backoff policy helpers for notification delivery."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from config import RetryConfig, settings


@dataclass(frozen=True)
class RetryPolicy:
    """Retry ceiling and capped exponential backoff for deliveries."""

    max_attempts: int
    backoff_base_seconds: int
    backoff_max_seconds: int

    @staticmethod
    def from_config(config: RetryConfig) -> "RetryPolicy":
        """Build a retry policy from a retry config section."""
        return RetryPolicy(
            max_attempts=int(config.max_attempts),
            backoff_base_seconds=int(config.backoff_base_seconds),
            backoff_max_seconds=int(config.backoff_max_seconds),
        )

    @staticmethod
    def from_settings() -> "RetryPolicy":
        """Build a retry policy from global settings."""
        return RetryPolicy.from_config(settings.retry)


def resolve_retry_policy(policy: RetryPolicy | None) -> RetryPolicy:
    """Return a validated retry policy, defaulting to settings when unset."""
    resolved = policy or RetryPolicy.from_settings()
    _validate_policy(resolved)
    return resolved


def should_retry(attempts: int, max_attempts: int) -> bool:
    """Return whether a notification with ``attempts`` failures may be retried."""
    return int(attempts) < int(max_attempts)


def compute_backoff_delay_seconds(
    attempts: int,
    backoff_base_seconds: int,
    backoff_max_seconds: int,
) -> int:
    """Return ``min(base * 2**attempts, cap)`` for the given failure count."""
    if attempts <= 0:
        raise ValueError("attempts must be >= 1.")
    if backoff_base_seconds < 0:
        raise ValueError("backoff_base_seconds must be >= 0.")
    return min(backoff_base_seconds * (2 ** int(attempts)), backoff_max_seconds)


def compute_retry_at(
    failed_at: datetime,
    attempts: int,
    policy: RetryPolicy,
) -> datetime | None:
    """Return when to retry, or ``None`` once the ceiling is reached."""
    if not should_retry(attempts, policy.max_attempts):
        return None
    delay_seconds = compute_backoff_delay_seconds(
        attempts,
        policy.backoff_base_seconds,
        policy.backoff_max_seconds,
    )
    return failed_at + timedelta(seconds=delay_seconds)


def _validate_policy(policy: RetryPolicy) -> None:
    """Validate retry policy settings."""
    if policy.max_attempts < 1:
        raise ValueError("max_attempts must be >= 1.")
    if policy.backoff_base_seconds < 0:
        raise ValueError("backoff_base_seconds must be >= 0.")
    if policy.backoff_max_seconds < policy.backoff_base_seconds:
        raise ValueError("backoff_max_seconds must be >= backoff_base_seconds.")
