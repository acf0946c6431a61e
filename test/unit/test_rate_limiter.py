"""Unit tests for per-channel rate limiting."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta

import pytest

import notifications.rate_limiter as rate_limiter_module
from config import Settings
from notifications.counter_store import InMemoryCounterStore, RedisCounterStore
from notifications.rate_limiter import (
    RateLimitConfig,
    RateLimiter,
    build_counter_store,
    build_rate_limiter,
)
from reminders.domain import ChannelType
from reminders.errors import ConfigurationError


@dataclass
class _FakePipeline:
    """Records queued commands and applies them on execute."""

    client: "_FakeRedisClient"
    commands: list[tuple[str, str, int | None]] = field(default_factory=list)

    def incr(self, key: str) -> "_FakePipeline":
        self.commands.append(("incr", key, None))
        return self

    def expire(self, key: str, seconds: int) -> "_FakePipeline":
        self.commands.append(("expire", key, seconds))
        return self

    def execute(self) -> list[object]:
        results: list[object] = []
        for name, key, arg in self.commands:
            if name == "incr":
                self.client.values[key] = self.client.values.get(key, 0) + 1
                results.append(self.client.values[key])
            else:
                self.client.ttls[key] = int(arg or 0)
                results.append(True)
        self.commands.clear()
        return results


@dataclass
class _FakeRedisClient:
    """In-memory fake implementing the Redis calls the counter store uses."""

    values: dict[str, int] = field(default_factory=dict)
    ttls: dict[str, int] = field(default_factory=dict)
    transactions: list[bool] = field(default_factory=list)

    def pipeline(self, transaction: bool = True) -> _FakePipeline:
        self.transactions.append(transaction)
        return _FakePipeline(client=self)

    def ping(self) -> bool:
        return True


def _limiter(store, max_per_window: int = 2, window_seconds: int = 60) -> RateLimiter:
    return RateLimiter(
        store,
        {"push": RateLimitConfig(channel="push", max_per_window=max_per_window, window_seconds=window_seconds)},
        key_prefix="test:rate",
    )


def test_admits_at_most_k_sends_per_window(base_now: datetime) -> None:
    """Ensure the ceiling holds within a window and resets in the next one."""
    limiter = _limiter(InMemoryCounterStore(), max_per_window=3, window_seconds=60)

    first_window = [limiter.try_admit("push", base_now + timedelta(seconds=s)) for s in range(5)]
    next_window = limiter.try_admit(ChannelType.PUSH, base_now + timedelta(seconds=60))

    assert first_window == [True, True, True, False, False]
    assert next_window is True


def test_channels_without_limits_are_unlimited(base_now: datetime) -> None:
    """Ensure unconfigured channels are always admitted."""
    limiter = _limiter(InMemoryCounterStore(), max_per_window=1)

    decisions = [limiter.evaluate("email", base_now) for _ in range(10)]

    assert all(decision.allowed for decision in decisions)
    assert decisions[0].reason == "unlimited_channel"


def test_channels_are_limited_independently(base_now: datetime) -> None:
    """Ensure one channel's traffic does not consume another's budget."""
    limiter = RateLimiter(
        InMemoryCounterStore(),
        {
            "push": RateLimitConfig(channel="push", max_per_window=1, window_seconds=60),
            "email": RateLimitConfig(channel="email", max_per_window=1, window_seconds=60),
        },
    )

    assert limiter.try_admit("push", base_now) is True
    assert limiter.try_admit("push", base_now) is False
    assert limiter.try_admit("email", base_now) is True


def test_redis_store_increments_and_expires_in_one_transaction(base_now: datetime) -> None:
    """Ensure the Redis backend uses INCR plus EXPIRE on a windowed key."""
    client = _FakeRedisClient()
    limiter = _limiter(RedisCounterStore(client), max_per_window=1, window_seconds=60)

    allowed = limiter.evaluate("push", base_now)
    denied = limiter.evaluate("push", base_now + timedelta(seconds=30))

    bucket = int(base_now.timestamp()) // 60
    key = f"test:rate:push:{bucket}"
    assert allowed.allowed is True
    assert denied.allowed is False
    assert denied.count == 2
    assert client.values == {key: 2}
    assert client.ttls == {key: 60}
    assert client.transactions == [True, True]


def test_in_memory_counters_expire_after_ttl() -> None:
    """Ensure expired in-memory counters restart from zero."""
    clock = {"now": 100.0}
    store = InMemoryCounterStore(clock=lambda: clock["now"])

    assert store.increment(key="k", ttl_seconds=10) == 1
    assert store.increment(key="k", ttl_seconds=10) == 2
    clock["now"] = 111.0
    assert store.increment(key="k", ttl_seconds=10) == 1


def test_in_memory_store_drops_lapsed_window_keys() -> None:
    """Ensure old window keys do not accumulate in a long-running process."""
    clock = {"now": 0.0}
    store = InMemoryCounterStore(clock=lambda: clock["now"])

    for window in range(5):
        clock["now"] = window * 60.0
        store.increment(key=f"push:{window}", ttl_seconds=60)

    assert list(store._values) == ["push:4"]


@pytest.mark.parametrize("max_per_window,window_seconds", [(0, 60), (5, 0), (-1, -1)])
def test_invalid_rate_limit_config_is_fatal(max_per_window: int, window_seconds: int) -> None:
    """Ensure non-positive limits are rejected."""
    with pytest.raises(ConfigurationError):
        RateLimitConfig(channel="push", max_per_window=max_per_window, window_seconds=window_seconds)


def test_build_rate_limiter_uses_configured_backend(
    monkeypatch: pytest.MonkeyPatch,
    base_now: datetime,
) -> None:
    """Ensure settings select the counter backend and per-channel limits."""
    client = _FakeRedisClient()
    monkeypatch.setattr(rate_limiter_module, "create_redis_client", lambda config: client)
    redis_settings = Settings(
        redis={"counter_backend": "redis", "key_prefix": "prod:rate"},
        rate_limits={"push": {"max_per_window": 1, "window_seconds": 60}},
    )
    memory_settings = Settings(redis={"counter_backend": "memory"})

    limiter = build_rate_limiter(redis_settings)
    limiter.try_admit("push", base_now)

    assert isinstance(build_counter_store(memory_settings), InMemoryCounterStore)
    assert list(client.values) == [f"prod:rate:push:{int(base_now.timestamp()) // 60}"]
