"""Unit tests for the shipped webhook and dry-run notifiers."""

from __future__ import annotations

from datetime import datetime, timezone
import json

import httpx
import pytest
import respx

from config import NotifierConfig, WebhookChannelConfig
from models import Notification, Task
from notifications.webhook_notifier import (
    LoggingNotifier,
    WebhookNotifier,
    build_notifier_registry,
)
from reminders.domain import ChannelType
from reminders.errors import DeliveryError

URL = "http://hooks.test/push"


def _payload():
    task = Task(
        id="task-1",
        title="Submit expenses",
        priority="high",
        due_at=datetime(2026, 3, 3, 9, 0, tzinfo=timezone.utc),
        assignee="user-7",
    )
    notification = Notification(id="n-1", task_id="task-1", lead_time_hours=1)
    return WebhookNotifier(URL).render(notification, task)


def test_webhook_posts_reminder_payload() -> None:
    """Ensure 2xx responses succeed and carry the provider message id."""
    notifier = WebhookNotifier(URL, headers={"Authorization": "Bearer token"})
    payload = _payload()

    with respx.mock(assert_all_called=True) as router:
        route = router.post(URL).respond(202, headers={"x-message-id": "abc"})
        result = notifier.send(ChannelType.PUSH, payload, "user-7")

    assert result.ok is True
    assert result.provider_message_id == "abc"
    request = route.calls[0].request
    assert request.headers["Authorization"] == "Bearer token"
    body = json.loads(request.content.decode("utf-8"))
    assert body["channel"] == "push"
    assert body["destination"] == "user-7"
    assert body["subject"] == "Reminder: Submit expenses"
    assert "due in 1 hour " in body["body"]
    assert body["data"]["lead_time_hours"] == 1
    assert body["data"]["notification_id"] == "n-1"


def test_webhook_client_error_is_a_failed_result() -> None:
    """Ensure 4xx responses are reported as failures without raising."""
    with respx.mock(assert_all_called=True) as router:
        router.post(URL).respond(404)
        result = WebhookNotifier(URL).send("push", _payload(), "user-7")

    assert result.ok is False
    assert result.detail == "Webhook returned 404"


def test_webhook_server_error_raises() -> None:
    """Ensure 5xx responses raise DeliveryError."""
    with respx.mock(assert_all_called=True) as router:
        router.post(URL).respond(503)
        with pytest.raises(DeliveryError, match="503"):
            WebhookNotifier(URL).send("push", _payload(), "user-7")


@pytest.mark.parametrize(
    ("error", "message"),
    [
        (httpx.ConnectError("refused"), "connection error"),
        (httpx.ReadTimeout("slow"), "timed out"),
    ],
)
def test_webhook_transport_errors_raise(error: Exception, message: str) -> None:
    """Ensure network errors and timeouts surface as DeliveryError."""
    with respx.mock(assert_all_called=True) as router:
        router.post(URL).mock(side_effect=error)
        with pytest.raises(DeliveryError, match=message):
            WebhookNotifier(URL).send("push", _payload(), "user-7")


def test_registry_dry_run_logs_every_channel(caplog: pytest.LogCaptureFixture) -> None:
    """Ensure dry-run mode registers a logging notifier for all channels."""
    registry = build_notifier_registry(NotifierConfig(dry_run=True))

    with caplog.at_level("INFO"):
        result = registry.get("email").send("email", _payload(), "user-7")

    assert registry.channels() == ["email", "platform_message", "push"]
    assert isinstance(registry.get(ChannelType.PUSH), LoggingNotifier)
    assert result.ok is True
    assert "Dry-run reminder" in caplog.text


def test_registry_registers_configured_webhooks_only() -> None:
    """Ensure only channels with a webhook entry get a notifier."""
    config = NotifierConfig(
        timeout_seconds=2.5,
        channels={"push": WebhookChannelConfig(url=URL)},
    )

    registry = build_notifier_registry(config)

    notifier = registry.get("push")
    assert isinstance(notifier, WebhookNotifier)
    assert notifier.url == URL
    assert registry.get("email") is None
