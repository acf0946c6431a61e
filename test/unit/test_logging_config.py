"""Unit tests for structured logging configuration."""

from __future__ import annotations

import io
import json
import logging

import pytest

import logging_config
from logging_config import (
    ContextFilter,
    JsonFormatter,
    PlainFormatter,
    bind_context,
    clear_context,
    configure_logging,
    get_context,
    log_context,
)


@pytest.fixture(autouse=True)
def _reset_context():
    """Keep context and root handlers isolated between tests."""
    root = logging.getLogger()
    handlers = root.handlers[:]
    level = root.level
    clear_context()
    logging_config._PROCESS_CONTEXT.clear()
    yield
    clear_context()
    logging_config._PROCESS_CONTEXT.clear()
    root.handlers[:] = handlers
    root.setLevel(level)


def _capture(formatter: logging.Formatter) -> tuple[logging.Logger, io.StringIO]:
    stream = io.StringIO()
    handler = logging.StreamHandler(stream)
    handler.addFilter(ContextFilter())
    handler.setFormatter(formatter)
    logger = logging.getLogger(f"test.logging.{id(stream)}")
    logger.handlers = [handler]
    logger.propagate = False
    logger.setLevel(logging.DEBUG)
    return logger, stream


def test_log_context_is_scoped_to_block() -> None:
    """Values bound inside log_context disappear afterwards."""
    bind_context(request="outer", skipped=None)

    with log_context({"notification_id": "n-1"}):
        assert get_context() == {"request": "outer", "notification_id": "n-1"}

    assert get_context() == {"request": "outer"}
    clear_context("request")
    assert get_context() == {}


def test_json_formatter_includes_context() -> None:
    """JSON records carry core fields plus bound context."""
    logger, stream = _capture(JsonFormatter())

    with log_context({"task_id": "task-1", "attempts": 2}):
        logger.warning("Reminder delivery failed")

    payload = json.loads(stream.getvalue())
    assert payload["level"] == "WARNING"
    assert payload["message"] == "Reminder delivery failed"
    assert payload["task_id"] == "task-1"
    assert payload["attempts"] == "2"


def test_plain_formatter_appends_sorted_context() -> None:
    """Plain records end with key=value context pairs."""
    logger, stream = _capture(PlainFormatter())

    with log_context({"task_id": "task-1", "channel": "push"}):
        logger.info("Reminder sent")

    assert stream.getvalue().rstrip().endswith("Reminder sent channel=push task_id=task-1")


def test_configure_logging_installs_single_handler() -> None:
    """Repeated configuration keeps one handler and binds the service name."""
    configure_logging(level="debug", json_output=False, service="reminder-engine")
    configure_logging(level="warning", json_output=True, service="reminder-engine")

    root = logging.getLogger()
    assert len(root.handlers) == 1
    assert isinstance(root.handlers[0].formatter, JsonFormatter)
    assert root.level == logging.WARNING
    assert get_context() == {"service": "reminder-engine"}
