"""Configuration management for the reminder engine."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from reminders.domain import ChannelType
from reminders.errors import ConfigurationError
from reminders.policy import DEFAULT_LEAD_TIMES, ReminderPolicy

_REPO_ROOT = Path(__file__).resolve().parents[1]
_DEFAULT_CONFIG_PATH = _REPO_ROOT / "config" / "reminders.yml"
_USER_CONFIG_PATHS = [
    Path("~/.config/reminder-engine/reminders.yml").expanduser(),
    Path("/config/reminders.yml"),
]


def _load_yaml(path: Path) -> dict[str, Any]:
    """Load a YAML mapping from disk, returning an empty mapping if missing."""
    if not path.exists():
        return {}
    data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Config file must contain a mapping: {path}")
    return data


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Merge ``override`` into ``base`` recursively, returning ``base``."""
    for key, value in override.items():
        existing = base.get(key)
        if isinstance(existing, dict) and isinstance(value, dict):
            _deep_merge(existing, value)
        else:
            base[key] = value
    return base


def _yaml_settings_source(paths: list[Path]):
    """Create a Pydantic settings source for a list of YAML paths."""

    def source() -> dict[str, Any]:
        merged: dict[str, Any] = {}
        for path in paths:
            _deep_merge(merged, _load_yaml(path))
        return merged

    return source


def _set_nested_value(target: dict[str, Any], path: str, value: Any) -> None:
    """Set a dotted-path value on a nested mapping, creating containers."""
    parts = path.split(".")
    cursor = target
    for key in parts[:-1]:
        node = cursor.get(key)
        if not isinstance(node, dict):
            node = {}
            cursor[key] = node
        cursor = node
    cursor[parts[-1]] = value


def _parse_env_value(raw: str, kind: str) -> Any:
    """Parse an environment value into the requested primitive type."""
    if kind == "int":
        return int(raw)
    if kind == "float":
        return float(raw)
    if kind == "bool":
        return raw.strip().lower() in {"1", "true", "yes", "on"}
    if kind == "json":
        return json.loads(raw)
    return raw


def _env_settings_source():
    """Create a settings source that maps environment variables to config keys."""
    mapping = {
        "REMINDER_DATABASE_URL": ("database.url", "str"),
        "DATABASE_URL": ("database.url", "str"),
        "REMINDER_REDIS_URL": ("redis.url", "str"),
        "REMINDER_COUNTER_BACKEND": ("redis.counter_backend", "str"),
        "REMINDER_LOG_LEVEL": ("log_level", "str"),
        "REMINDER_LOG_JSON": ("log_json", "bool"),
        "REMINDER_POLL_INTERVAL_SECONDS": ("dispatch.poll_interval_seconds", "float"),
        "REMINDER_BATCH_LIMIT": ("dispatch.batch_limit", "int"),
        "REMINDER_WORKER_COUNT": ("dispatch.worker_count", "int"),
        "REMINDER_POLICY_LEAD_TIMES": ("policy.lead_times", "json"),
        "REMINDER_NOTIFIER_CHANNELS": ("notifiers.channels", "json"),
        "REMINDER_NOTIFIER_DRY_RUN": ("notifiers.dry_run", "bool"),
        "CELERY_BROKER_URL": ("celery.broker_url", "str"),
        "CELERY_RESULT_BACKEND": ("celery.result_backend", "str"),
        "CELERY_QUEUE_NAME": ("celery.queue_name", "str"),
    }

    def source() -> dict[str, Any]:
        data: dict[str, Any] = {}
        # DATABASE_URL is a fallback; the prefixed variable wins when both are set.
        for env_key, (path, kind) in sorted(
            mapping.items(), key=lambda item: item[0].startswith("REMINDER_")
        ):
            raw = os.environ.get(env_key)
            if raw is None:
                continue
            _set_nested_value(data, path, _parse_env_value(raw, kind))
        return data

    return source


class PolicyConfig(BaseModel):
    """Per-priority reminder lead times in hours before due."""

    lead_times: dict[str, list[int]] = Field(
        default_factory=lambda: {key: list(values) for key, values in DEFAULT_LEAD_TIMES.items()}
    )

    @model_validator(mode="after")
    def validate_lead_times(self) -> "PolicyConfig":
        """Reject policies with missing priorities or malformed sequences."""
        ReminderPolicy.from_mapping(self.lead_times)
        return self

    def to_policy(self) -> ReminderPolicy:
        """Return the validated domain policy."""
        return ReminderPolicy.from_mapping(self.lead_times)


class ChannelRateLimit(BaseModel):
    """Fixed-window send ceiling for one channel."""

    max_per_window: int
    window_seconds: int

    @field_validator("max_per_window")
    @classmethod
    def validate_max_per_window(cls, value: int) -> int:
        """Ensure the ceiling admits at least one send."""
        if value < 1:
            raise ConfigurationError("rate_limits.*.max_per_window must be >= 1.")
        return value

    @field_validator("window_seconds")
    @classmethod
    def validate_window_seconds(cls, value: int) -> int:
        """Ensure the window size is positive."""
        if value < 1:
            raise ConfigurationError("rate_limits.*.window_seconds must be >= 1.")
        return value


def _default_rate_limits() -> dict[str, ChannelRateLimit]:
    return {
        ChannelType.PUSH.value: ChannelRateLimit(max_per_window=60, window_seconds=60),
        ChannelType.EMAIL.value: ChannelRateLimit(max_per_window=200, window_seconds=3600),
        ChannelType.PLATFORM_MESSAGE.value: ChannelRateLimit(
            max_per_window=100, window_seconds=3600
        ),
    }


class RetryConfig(BaseModel):
    """Delivery retry ceiling and exponential backoff bounds."""

    max_attempts: int = 3
    backoff_base_seconds: int = 60
    backoff_max_seconds: int = 3600

    @field_validator("max_attempts")
    @classmethod
    def validate_max_attempts(cls, value: int) -> int:
        """Ensure max attempts is positive."""
        if value < 1:
            raise ConfigurationError("retry.max_attempts must be >= 1.")
        return value

    @field_validator("backoff_base_seconds")
    @classmethod
    def validate_backoff_base_seconds(cls, value: int) -> int:
        """Ensure backoff base seconds is non-negative."""
        if value < 0:
            raise ConfigurationError("retry.backoff_base_seconds must be >= 0.")
        return value

    @model_validator(mode="after")
    def validate_backoff_cap(self) -> "RetryConfig":
        """Ensure the backoff cap is not below the base delay."""
        if self.backoff_max_seconds < self.backoff_base_seconds:
            raise ConfigurationError("retry.backoff_max_seconds must be >= backoff_base_seconds.")
        return self


class DispatchConfig(BaseModel):
    """Poll cadence, batch size, and worker pool sizing."""

    poll_interval_seconds: float = 120.0
    batch_limit: int = 100
    worker_count: int = 4
    send_timeout_seconds: float = 30.0
    claim_timeout_seconds: int = 300
    backfill_limit: int = 200

    @field_validator("poll_interval_seconds", "send_timeout_seconds")
    @classmethod
    def validate_positive_seconds(cls, value: float) -> float:
        """Ensure intervals and timeouts are positive."""
        if value <= 0:
            raise ConfigurationError("dispatch intervals and timeouts must be > 0.")
        return value

    @field_validator("batch_limit", "worker_count", "claim_timeout_seconds")
    @classmethod
    def validate_positive_int(cls, value: int) -> int:
        """Ensure sizing values are positive."""
        if value < 1:
            raise ConfigurationError(
                "dispatch.batch_limit, worker_count and claim_timeout_seconds must be >= 1."
            )
        return value

    @field_validator("backfill_limit")
    @classmethod
    def validate_backfill_limit(cls, value: int) -> int:
        """Ensure the backfill limit is non-negative (0 disables backfill)."""
        if value < 0:
            raise ConfigurationError("dispatch.backfill_limit must be >= 0.")
        return value

    @model_validator(mode="after")
    def validate_claim_outlives_send(self) -> "DispatchConfig":
        """Ensure a claim cannot go stale while its send is still within timeout."""
        if self.claim_timeout_seconds <= self.send_timeout_seconds:
            raise ConfigurationError(
                "dispatch.claim_timeout_seconds must be greater than send_timeout_seconds."
            )
        return self


class DatabaseConfig(BaseModel):
    """Database connection configuration."""

    url: str = "sqlite:///reminders.db"
    echo: bool = False


class RedisConfig(BaseModel):
    """Rate-limit counter backend configuration."""

    url: str = "redis://redis:6379/0"
    key_prefix: str = "reminders:rate"
    counter_backend: str = "redis"
    connect_timeout_seconds: float = 5.0
    socket_timeout_seconds: float = 5.0
    max_connections: int = 20

    @field_validator("counter_backend")
    @classmethod
    def validate_counter_backend(cls, value: str) -> str:
        """Ensure the counter backend is supported."""
        normalized = value.strip().lower()
        if normalized not in {"redis", "memory"}:
            raise ConfigurationError("redis.counter_backend must be redis or memory.")
        return normalized


class WebhookChannelConfig(BaseModel):
    """Webhook endpoint for one delivery channel."""

    url: str
    headers: dict[str, str] = Field(default_factory=dict)


class NotifierConfig(BaseModel):
    """Platform notifier wiring."""

    timeout_seconds: float = 10.0
    dry_run: bool = False
    channels: dict[str, WebhookChannelConfig] = Field(default_factory=dict)

    @field_validator("channels")
    @classmethod
    def validate_channels(
        cls, value: dict[str, WebhookChannelConfig]
    ) -> dict[str, WebhookChannelConfig]:
        """Ensure channel keys name known channel types."""
        for key in value:
            try:
                ChannelType(key)
            except ValueError as exc:
                raise ConfigurationError(f"Unknown notifier channel: {key!r}") from exc
        return value


class CeleryConfig(BaseModel):
    """Celery broker settings for the poll trigger."""

    broker_url: str = "redis://redis:6379/1"
    result_backend: str | None = "redis://redis:6379/2"
    queue_name: str = "reminders"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and YAML."""

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_nested_delimiter="__",
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        """Layer settings sources in descending order of precedence."""
        return (
            init_settings,
            _env_settings_source(),
            _yaml_settings_source(_USER_CONFIG_PATHS),
            _yaml_settings_source([_DEFAULT_CONFIG_PATH]),
        )

    # Logging
    log_level: str = "INFO"
    log_json: bool = True
    service_name: str = "reminder-engine"

    policy: PolicyConfig = Field(default_factory=PolicyConfig)
    rate_limits: dict[str, ChannelRateLimit] = Field(default_factory=_default_rate_limits)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    dispatch: DispatchConfig = Field(default_factory=DispatchConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    redis: RedisConfig = Field(default_factory=RedisConfig)
    notifiers: NotifierConfig = Field(default_factory=NotifierConfig)
    celery: CeleryConfig = Field(default_factory=CeleryConfig)

    @field_validator("rate_limits")
    @classmethod
    def validate_rate_limit_channels(
        cls, value: dict[str, ChannelRateLimit]
    ) -> dict[str, ChannelRateLimit]:
        """Ensure rate limits are keyed by known channel types."""
        for key in value:
            try:
                ChannelType(key)
            except ValueError as exc:
                raise ConfigurationError(f"Unknown rate-limit channel: {key!r}") from exc
        return value


def validate_settings(candidate: Settings) -> ReminderPolicy:
    """Run startup validation and return the resolved reminder policy."""
    return candidate.policy.to_policy()


# Global settings instance
settings = Settings()
