"""Reminder engine operator CLI implemented with Typer."""

from __future__ import annotations

import dataclasses
import json
import time
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from pathlib import Path
from typing import Any

import typer
from pydantic import ValidationError

from config import Settings, validate_settings
from logging_config import configure_logging
from notifications.dispatcher import NotificationDispatcher, build_dispatcher
from reminders.errors import ConfigurationError, TaskNotFoundError
from reminders.notification_repository import NotificationRepository
from reminders.task_repository import TaskRepository
from services import database
from time_utils import ensure_utc

CONFIG_ERROR_EXIT_CODE = 3
NOT_FOUND_EXIT_CODE = 4

_NOTIFICATION_FIELDS = (
    "id",
    "lead_time_hours",
    "channel_type",
    "scheduled_for",
    "status",
    "attempts",
    "last_attempt_at",
    "last_error",
)


@dataclass(frozen=True)
class CliConfig:
    """Global CLI runtime options."""

    as_json: bool
    log_level: str | None


def _load_settings() -> Settings:
    """Load settings fresh so validation errors surface per invocation."""
    return Settings()


def _session_factory():
    return database.get_sync_session()


def _build_dispatcher(settings: Settings) -> NotificationDispatcher:
    return build_dispatcher(settings, _session_factory)


def _serialize(value: Any) -> Any:
    """Convert result objects to JSON-serializable structures."""
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, datetime):
        return ensure_utc(value).isoformat()
    if isinstance(value, (date, Path)):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    if dataclasses.is_dataclass(value):
        return _serialize(dataclasses.asdict(value))
    if isinstance(value, dict):
        return {str(key): _serialize(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_serialize(item) for item in value]
    return str(value)


def _emit_output(result: Any, as_json: bool) -> None:
    """Render command output in requested format."""
    data = _serialize(result)
    if as_json:
        typer.echo(json.dumps(data, sort_keys=True, separators=(",", ":")))
        return
    if isinstance(data, dict):
        for key in sorted(data):
            typer.echo(f"{key}: {data[key]}")
        return
    typer.echo(str(data))


def _emit_error(message: str, as_json: bool) -> None:
    """Render errors to stderr."""
    if as_json:
        typer.echo(json.dumps({"error": message}), err=True)
        return
    typer.echo(f"error: {message}", err=True)


def _require_config(ctx: typer.Context) -> CliConfig:
    """Return required CLI config from Typer context."""
    config = ctx.obj
    if not isinstance(config, CliConfig):
        raise RuntimeError("CLI configuration not initialized")
    return config


def _settings_or_exit(cfg: CliConfig) -> Settings:
    try:
        settings = _load_settings()
        validate_settings(settings)
    except (ValidationError, ConfigurationError) as exc:
        _emit_error(f"invalid configuration: {exc}", cfg.as_json)
        raise typer.Exit(code=CONFIG_ERROR_EXIT_CODE) from exc
    configure_logging(
        level=cfg.log_level or settings.log_level,
        json_output=settings.log_json,
        service=settings.service_name,
    )
    return settings


app = typer.Typer(no_args_is_help=True, help="Task reminder engine command-line interface")


@app.callback()
def main(
    ctx: typer.Context,
    as_json: bool = typer.Option(False, "--json", help="Emit JSON output"),
    log_level: str | None = typer.Option(None, help="Override the configured log level"),
) -> None:
    """Store global options for all commands."""
    ctx.obj = CliConfig(as_json=as_json, log_level=log_level)


@app.command("validate-config")
def validate_config_command(ctx: typer.Context) -> None:
    """Load and validate configuration, then print the reminder policy."""
    cfg = _require_config(ctx)
    settings = _settings_or_exit(cfg)
    policy = validate_settings(settings)
    _emit_output(
        {
            "policy": policy.as_dict(),
            "rate_limits": {
                channel: limit.model_dump() for channel, limit in settings.rate_limits.items()
            },
            "retry": settings.retry.model_dump(),
        },
        cfg.as_json,
    )


@app.command("init-db")
def init_db_command(
    ctx: typer.Context,
    migrate: bool = typer.Option(False, help="Apply Alembic migrations instead of create_all"),
) -> None:
    """Create the reminder tables."""
    cfg = _require_config(ctx)
    _settings_or_exit(cfg)
    if migrate:
        database.run_migrations_sync()
    else:
        database.init_schema()
    _emit_output({"status": "ok", "migrated": migrate}, cfg.as_json)


@app.command("poll")
def poll_command(ctx: typer.Context) -> None:
    """Run one dispatch cycle and print its counts."""
    cfg = _require_config(ctx)
    settings = _settings_or_exit(cfg)
    result = _build_dispatcher(settings).run_cycle()
    _emit_output(result.as_dict(), cfg.as_json)


@app.command("serve")
def serve_command(
    ctx: typer.Context,
    max_cycles: int | None = typer.Option(None, min=1, help="Stop after this many cycles"),
    interval: float | None = typer.Option(
        None, min=0.0, help="Seconds between cycles (defaults to dispatch.poll_interval_seconds)"
    ),
) -> None:
    """Run dispatch cycles on a fixed interval until interrupted."""
    cfg = _require_config(ctx)
    settings = _settings_or_exit(cfg)
    dispatcher = _build_dispatcher(settings)
    pause = settings.dispatch.poll_interval_seconds if interval is None else interval
    cycles = 0
    try:
        while max_cycles is None or cycles < max_cycles:
            started = time.monotonic()
            result = dispatcher.run_cycle()
            cycles += 1
            if cfg.as_json:
                _emit_output(result.as_dict(), True)
            if max_cycles is not None and cycles >= max_cycles:
                break
            time.sleep(max(0.0, pause - (time.monotonic() - started)))
    except KeyboardInterrupt:
        pass
    _emit_output({"cycles": cycles}, cfg.as_json)


@app.command("task-status")
def task_status_command(
    ctx: typer.Context,
    task_id: str = typer.Argument(..., help="Task identifier"),
) -> None:
    """Print a task and its reminder notifications."""
    cfg = _require_config(ctx)
    _settings_or_exit(cfg)
    task = TaskRepository(_session_factory).get_task(task_id)
    if task is None:
        _emit_error(str(TaskNotFoundError(task_id)), cfg.as_json)
        raise typer.Exit(code=NOT_FOUND_EXIT_CODE)
    notifications = NotificationRepository(_session_factory).list_for_task(task_id)
    rows = [
        {field: getattr(notification, field) for field in _NOTIFICATION_FIELDS}
        for notification in notifications
    ]
    if cfg.as_json:
        _emit_output(
            {
                "task_id": task.id,
                "status": task.status,
                "priority": task.priority,
                "due_at": task.due_at,
                "notifications": rows,
            },
            True,
        )
        return
    typer.echo(
        f"Task {task.id}: status={task.status} priority={task.priority} "
        f"due_at={_serialize(task.due_at)}"
    )
    if not rows:
        typer.echo("No notifications.")
        return
    for row in rows:
        typer.echo(
            f"- {row['lead_time_hours']}h {row['channel_type']} {row['status']} "
            f"scheduled_for={_serialize(row['scheduled_for'])} attempts={row['attempts']}"
        )


if __name__ == "__main__":
    app()
