"""Shipped notifier variants: HTTP webhook delivery and a logging dry-run sink."""

from __future__ import annotations

from collections.abc import Mapping
import logging

import httpx

from config import NotifierConfig, WebhookChannelConfig
from models import Notification, Task
from notifications.notifier import (
    DeliveryResult,
    NotifierRegistry,
    RenderedPayload,
    render_reminder,
)
from reminders.domain import ChannelType
from reminders.errors import DeliveryError

logger = logging.getLogger(__name__)


class WebhookNotifier:
    """Deliver reminders by POSTing JSON to a per-channel webhook URL."""

    def __init__(
        self,
        url: str,
        *,
        headers: Mapping[str, str] | None = None,
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.url = url
        self._headers = dict(headers or {})
        self._timeout = timeout
        self._transport = transport

    def render(self, notification: Notification, task: Task) -> RenderedPayload:
        return render_reminder(notification, task)

    def send(
        self,
        channel_type: ChannelType | str,
        payload: RenderedPayload,
        destination: str,
    ) -> DeliveryResult:
        """Send one reminder.

        Args:
            channel_type: Channel the reminder is delivered on
            payload: Rendered reminder content
            destination: Opaque assignee reference

        Returns:
            A successful DeliveryResult for 2xx responses, a failed one for 4xx

        Raises:
            DeliveryError: On 5xx responses, network errors and timeouts
        """
        body = {
            "channel": ChannelType(channel_type).value,
            "destination": destination,
            "subject": payload.subject,
            "body": payload.body,
            "data": dict(payload.data),
        }
        try:
            with httpx.Client(timeout=self._timeout, transport=self._transport) as client:
                response = client.post(self.url, json=body, headers=self._headers)
        except httpx.TimeoutException as e:
            raise DeliveryError(f"Webhook timed out: {e}") from e
        except httpx.RequestError as e:
            raise DeliveryError(f"Webhook connection error: {e}") from e

        if response.status_code >= 500:
            raise DeliveryError(f"Webhook returned {response.status_code}")
        if response.status_code >= 400:
            logger.warning(
                "Webhook rejected reminder: status=%s url=%s",
                response.status_code,
                self.url,
            )
            return DeliveryResult.failure(f"Webhook returned {response.status_code}")
        return DeliveryResult.success(response.headers.get("x-message-id"))


class LoggingNotifier:
    """Dry-run notifier that records reminders in the log instead of sending."""

    def render(self, notification: Notification, task: Task) -> RenderedPayload:
        return render_reminder(notification, task)

    def send(
        self,
        channel_type: ChannelType | str,
        payload: RenderedPayload,
        destination: str,
    ) -> DeliveryResult:
        logger.info(
            "Dry-run reminder: channel=%s destination=%s subject=%s",
            ChannelType(channel_type).value,
            destination,
            payload.subject,
        )
        return DeliveryResult.success()


def build_notifier_registry(
    config: NotifierConfig,
    *,
    transport: httpx.BaseTransport | None = None,
) -> NotifierRegistry:
    """Register one notifier per configured channel.

    In dry-run mode every channel gets a LoggingNotifier. Otherwise channels
    with a webhook entry get a WebhookNotifier and the rest stay unregistered,
    so reminders on them fail and retry until a notifier is configured.
    """
    registry = NotifierRegistry()
    if config.dry_run:
        for channel in ChannelType:
            registry.register(channel, LoggingNotifier())
        return registry
    for channel, channel_config in config.channels.items():
        registry.register(channel, _webhook_for(channel_config, config.timeout_seconds, transport))
    return registry


def _webhook_for(
    channel_config: WebhookChannelConfig,
    timeout: float,
    transport: httpx.BaseTransport | None,
) -> WebhookNotifier:
    return WebhookNotifier(
        channel_config.url,
        headers=channel_config.headers,
        timeout=timeout,
        transport=transport,
    )
