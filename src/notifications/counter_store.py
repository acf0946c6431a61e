"""Atomic window counters backing the rate limiter."""

from __future__ import annotations

import threading
import time
from typing import Protocol

from redis import Redis


class CounterStore(Protocol):
    """Protocol for shared, expiring integer counters."""

    def increment(self, *, key: str, ttl_seconds: int) -> int:
        """Atomically increment ``key`` and return the new value."""

    def ping(self) -> bool:
        """Return backend liveness."""


class RedisCounterStore(CounterStore):
    """Counter store using Redis ``INCR`` and ``EXPIRE`` in one transaction."""

    def __init__(self, client: Redis) -> None:
        self._client = client

    def increment(self, *, key: str, ttl_seconds: int) -> int:
        """Increment one window counter and refresh its TTL."""
        pipe = self._client.pipeline(transaction=True)
        pipe.incr(key)
        pipe.expire(key, int(ttl_seconds))
        count, _ = pipe.execute()
        return int(count)

    def ping(self) -> bool:
        """Return Redis ping status."""
        return bool(self._client.ping())


class InMemoryCounterStore(CounterStore):
    """Process-local counter store for single-process deployments and tests."""

    def __init__(self, *, clock=time.monotonic) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._values: dict[str, tuple[int, float]] = {}

    def increment(self, *, key: str, ttl_seconds: int) -> int:
        """Increment one counter, resetting it once its TTL has lapsed.

        Lapsed counters are dropped on every call, so the store holds only
        live windows.
        """
        now = self._clock()
        with self._lock:
            expired = [name for name, (_, expires_at) in self._values.items() if expires_at <= now]
            for name in expired:
                del self._values[name]
            count = self._values.get(key, (0, 0.0))[0] + 1
            self._values[key] = (count, now + ttl_seconds)
            return count

    def ping(self) -> bool:
        return True
