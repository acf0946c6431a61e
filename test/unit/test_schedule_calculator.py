"""Unit tests for reminder checkpoint computation."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import pytest

from reminders.errors import ConfigurationError
from reminders.policy import ReminderPolicy
from reminders.schedule_calculator import (
    checkpoint_time,
    compute_next_checkpoint,
    compute_remaining_checkpoints,
    notification_id_for,
)

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


@dataclass
class _Task:
    id: str
    priority: str
    due_at: datetime


def _task(priority: str, hours_until_due: float) -> _Task:
    return _Task(id="task-1", priority=priority, due_at=NOW + timedelta(hours=hours_until_due))


def test_high_priority_due_in_30_hours_fires_24h_checkpoint_next() -> None:
    """Ensure the largest lead time below the remaining hours is chosen."""
    assert compute_next_checkpoint(_task("high", 30), NOW, ReminderPolicy.default()) == 24


def test_high_priority_with_13_hours_left_fires_12h_checkpoint_next() -> None:
    """Ensure passed checkpoints are skipped."""
    assert compute_next_checkpoint(_task("high", 13), NOW, ReminderPolicy.default()) == 12


def test_checkpoint_equal_to_remaining_hours_is_not_next() -> None:
    """Ensure the lead time must be strictly less than the hours until due."""
    assert compute_next_checkpoint(_task("high", 24), NOW, ReminderPolicy.default()) == 12


@pytest.mark.parametrize("hours_until_due", [0, -1, -48])
def test_due_or_overdue_tasks_have_no_checkpoint(hours_until_due: float) -> None:
    """Ensure no checkpoint remains once the due time is reached."""
    task = _task("high", hours_until_due)

    assert compute_next_checkpoint(task, NOW, ReminderPolicy.default()) is None
    assert compute_remaining_checkpoints(task, NOW, ReminderPolicy.default()) == []


def test_remaining_checkpoints_follow_policy_order() -> None:
    """Ensure remaining checkpoints are the policy list filtered by time left."""
    policy = ReminderPolicy.default()

    assert compute_remaining_checkpoints(_task("high", 7), NOW, policy) == [6, 2]
    assert compute_remaining_checkpoints(_task("medium", 100), NOW, policy) == [24, 4]
    assert compute_remaining_checkpoints(_task("low", 1.5), NOW, policy) == []


def test_calculation_is_idempotent() -> None:
    """Ensure repeated calls for the same state agree."""
    task = _task("medium", 30)
    policy = ReminderPolicy.default()

    first = compute_next_checkpoint(task, NOW, policy)
    second = compute_next_checkpoint(task, NOW, policy)

    assert first == second == 24


def test_naive_due_times_are_treated_as_utc() -> None:
    """Ensure values read back from SQLite without tzinfo still compare."""
    task = _Task(id="task-1", priority="high", due_at=(NOW + timedelta(hours=13)).replace(tzinfo=None))

    assert compute_next_checkpoint(task, NOW, ReminderPolicy.default()) == 12


def test_unknown_priority_raises_configuration_error() -> None:
    """Ensure a task priority outside the policy is a configuration error."""
    with pytest.raises(ConfigurationError):
        compute_next_checkpoint(_task("urgent", 30), NOW, ReminderPolicy.default())


def test_checkpoint_time_and_identity_are_deterministic() -> None:
    """Ensure checkpoint instants and notification ids derive from their inputs."""
    due_at = NOW + timedelta(hours=30)

    assert checkpoint_time(due_at, 24) == NOW + timedelta(hours=6)
    assert notification_id_for("task-1", 24) == notification_id_for("task-1", 24)
    assert notification_id_for("task-1", 24) != notification_id_for("task-1", 12)
    assert notification_id_for("task-1", 24) != notification_id_for("task-2", 24)
