"""Per-channel fixed-window rate limiting for reminder dispatch."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
import logging

from config import ChannelRateLimit, Settings
from notifications.counter_store import CounterStore, InMemoryCounterStore, RedisCounterStore
from reminders.domain import ChannelType
from reminders.errors import ConfigurationError
from services.redis_client import create_redis_client
from time_utils import window_bucket

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitConfig:
    """Rate limit configuration for a channel."""

    channel: str
    max_per_window: int
    window_seconds: int

    def __post_init__(self) -> None:
        if self.max_per_window < 1:
            raise ConfigurationError(
                f"max_per_window must be >= 1 for channel={self.channel}."
            )
        if self.window_seconds < 1:
            raise ConfigurationError(
                f"window_seconds must be >= 1 for channel={self.channel}."
            )


@dataclass(frozen=True)
class RateLimitDecision:
    """Result of rate limiting evaluation."""

    allowed: bool
    reason: str
    count: int | None = None


class RateLimiter:
    """Admit sends against per-channel ceilings shared through a counter store."""

    def __init__(
        self,
        store: CounterStore,
        limits: Mapping[str, RateLimitConfig],
        *,
        key_prefix: str = "reminders:rate",
    ) -> None:
        self._store = store
        self._limits = {ChannelType(channel).value: config for channel, config in limits.items()}
        self._key_prefix = key_prefix

    def try_admit(self, channel_type: ChannelType | str, now: datetime) -> bool:
        """Return whether one more send on ``channel_type`` fits the current window."""
        return self.evaluate(channel_type, now).allowed

    def evaluate(self, channel_type: ChannelType | str, now: datetime) -> RateLimitDecision:
        """Count this send against the current window and decide admission."""
        channel = ChannelType(channel_type).value
        config = self._limits.get(channel)
        if config is None:
            return RateLimitDecision(allowed=True, reason="unlimited_channel")
        bucket = window_bucket(now, config.window_seconds)
        key = f"{self._key_prefix}:{channel}:{bucket}"
        count = self._store.increment(key=key, ttl_seconds=config.window_seconds)
        if count <= config.max_per_window:
            return RateLimitDecision(allowed=True, reason="within_limit", count=count)
        logger.debug(
            "Rate limit exceeded: channel=%s bucket=%s count=%s max=%s",
            channel,
            bucket,
            count,
            config.max_per_window,
        )
        return RateLimitDecision(allowed=False, reason="rate_limit_exceeded", count=count)


def build_rate_limit_configs(
    raw: Mapping[str, ChannelRateLimit],
) -> dict[str, RateLimitConfig]:
    """Convert settings rate-limit sections into validated configs."""
    return {
        channel: RateLimitConfig(
            channel=channel,
            max_per_window=int(limit.max_per_window),
            window_seconds=int(limit.window_seconds),
        )
        for channel, limit in raw.items()
    }


def build_counter_store(config: Settings) -> CounterStore:
    """Construct the configured counter store backend."""
    if config.redis.counter_backend == "memory":
        return InMemoryCounterStore()
    return RedisCounterStore(create_redis_client(config.redis))


def build_rate_limiter(config: Settings, store: CounterStore | None = None) -> RateLimiter:
    """Construct a rate limiter from settings."""
    return RateLimiter(
        store or build_counter_store(config),
        build_rate_limit_configs(config.rate_limits),
        key_prefix=config.redis.key_prefix,
    )
