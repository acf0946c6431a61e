"""Enumerations shared by the task and notification data model."""

from __future__ import annotations

from enum import Enum


class Priority(str, Enum):
    """Task priority levels, highest first."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        """Return the dispatch ordering rank (lower sorts first)."""
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {Priority.HIGH: 0, Priority.MEDIUM: 1, Priority.LOW: 2}


class TaskStatus(str, Enum):
    """Task lifecycle states."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        """Return True when no further reminders may fire for the task."""
        return self in TERMINAL_TASK_STATUSES


TERMINAL_TASK_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.CANCELLED})
ACTIVE_TASK_STATUSES = frozenset({TaskStatus.PENDING, TaskStatus.IN_PROGRESS})


class NotificationStatus(str, Enum):
    """Notification dispatch states.

    ``dispatching`` is held only between a successful claim and the recorded
    outcome of that dispatch attempt.
    """

    PENDING = "pending"
    DISPATCHING = "dispatching"
    SENT = "sent"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        """Return True for states that never transition again."""
        return self in TERMINAL_NOTIFICATION_STATUSES


TERMINAL_NOTIFICATION_STATUSES = frozenset(
    {NotificationStatus.SENT, NotificationStatus.FAILED, NotificationStatus.CANCELLED}
)
OPEN_NOTIFICATION_STATUSES = frozenset(
    {NotificationStatus.PENDING, NotificationStatus.DISPATCHING}
)


class ChannelType(str, Enum):
    """Delivery channels a notifier variant can be registered for."""

    PUSH = "push"
    EMAIL = "email"
    PLATFORM_MESSAGE = "platform_message"
