"""Redis client construction helpers."""

from __future__ import annotations

from redis import Redis

from config import RedisConfig


def create_redis_client(config: RedisConfig) -> Redis:
    """Construct a configured Redis client instance."""
    return Redis.from_url(
        url=config.url,
        socket_connect_timeout=config.connect_timeout_seconds,
        socket_timeout=config.socket_timeout_seconds,
        max_connections=config.max_connections,
        decode_responses=True,
        encoding="utf-8",
    )
