"""Error taxonomy for the reminder engine."""

from __future__ import annotations


class ReminderEngineError(Exception):
    """Base class for reminder engine errors."""


class ConfigurationError(ReminderEngineError, ValueError):
    """Raised for invalid static configuration; fatal at startup."""


class TaskNotFoundError(ReminderEngineError, LookupError):
    """Raised when a task id does not resolve to a stored task."""

    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task not found: {task_id}")
        self.task_id = task_id


class TerminalTaskError(ReminderEngineError):
    """Raised when a lifecycle mutation targets a completed or cancelled task."""

    def __init__(self, task_id: str, status: str) -> None:
        super().__init__(f"Task {task_id} is terminal (status={status}).")
        self.task_id = task_id
        self.status = status


class DeliveryError(ReminderEngineError):
    """Raised by notifiers for transient delivery failures."""
