"""Platform notifier boundary: rendering and sending reminder payloads."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol

from models import Notification, Task
from reminders.domain import ChannelType


@dataclass(frozen=True)
class RenderedPayload:
    """Channel-ready reminder content."""

    subject: str
    body: str
    data: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class DeliveryResult:
    """Outcome reported by a notifier for one send."""

    ok: bool
    detail: str | None = None
    provider_message_id: str | None = None

    @staticmethod
    def success(provider_message_id: str | None = None) -> "DeliveryResult":
        return DeliveryResult(ok=True, provider_message_id=provider_message_id)

    @staticmethod
    def failure(detail: str) -> "DeliveryResult":
        return DeliveryResult(ok=False, detail=detail)


class PlatformNotifier(Protocol):
    """Capability contract for one delivery channel."""

    def render(self, notification: Notification, task: Task) -> RenderedPayload:
        """Build the payload for a reminder about ``task``."""

    def send(
        self,
        channel_type: ChannelType | str,
        payload: RenderedPayload,
        destination: str,
    ) -> DeliveryResult:
        """Deliver ``payload`` to ``destination``; raise or return a failure on error."""


class NotifierRegistry:
    """Registry of one notifier variant per channel type."""

    def __init__(self, notifiers: Mapping[ChannelType | str, PlatformNotifier] | None = None) -> None:
        self._notifiers: dict[str, PlatformNotifier] = {}
        for channel, notifier in (notifiers or {}).items():
            self.register(channel, notifier)

    def register(self, channel_type: ChannelType | str, notifier: PlatformNotifier) -> None:
        """Register ``notifier`` for ``channel_type``, replacing any previous one."""
        self._notifiers[ChannelType(channel_type).value] = notifier

    def get(self, channel_type: ChannelType | str) -> PlatformNotifier | None:
        """Return the notifier for ``channel_type`` if one is registered."""
        return self._notifiers.get(ChannelType(channel_type).value)

    def channels(self) -> list[str]:
        """Return registered channel names in sorted order."""
        return sorted(self._notifiers)


def render_reminder(notification: Notification, task: Task) -> RenderedPayload:
    """Render the default reminder text shared by the shipped notifiers."""
    title = task.title or f"Task {task.id}"
    lead = int(notification.lead_time_hours)
    unit = "hour" if lead == 1 else "hours"
    due_at = task.due_at.isoformat() if task.due_at is not None else "unknown"
    return RenderedPayload(
        subject=f"Reminder: {title}",
        body=f"'{title}' is due in {lead} {unit} (due {due_at}, priority {task.priority}).",
        data={
            "notification_id": notification.id,
            "task_id": task.id,
            "lead_time_hours": lead,
            "priority": task.priority,
            "due_at": due_at,
        },
    )
