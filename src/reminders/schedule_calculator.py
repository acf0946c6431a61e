"""Pure reminder checkpoint computation.

A checkpoint is a lead time, in hours, before a task's due time. The next
checkpoint is the largest configured lead time that is strictly less than the
hours remaining until due, so calling these helpers repeatedly for the same
task state always yields the same answer.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Protocol
import uuid

from reminders.policy import ReminderPolicy
from time_utils import ensure_utc, hours_between

# Fixed namespace so notification ids are stable across processes and deploys.
NOTIFICATION_ID_NAMESPACE = uuid.UUID("6f1c2a1e-3d0b-5b8e-9a55-2f4c8e7d9b10")


class SchedulableTask(Protocol):
    """Task attributes the calculator reads."""

    id: str
    priority: str
    due_at: datetime


def compute_remaining_checkpoints(
    task: SchedulableTask,
    now: datetime,
    policy: ReminderPolicy,
) -> list[int]:
    """Return configured lead times that have not yet passed, in policy order."""
    lead_times = policy.lead_times_for(task.priority)
    hours_until_due = hours_between(now, task.due_at)
    if hours_until_due <= 0:
        return []
    return [lead for lead in lead_times if lead < hours_until_due]


def compute_next_checkpoint(
    task: SchedulableTask,
    now: datetime,
    policy: ReminderPolicy,
) -> int | None:
    """Return the next lead time to fire for ``task`` or ``None`` when none remain."""
    remaining = compute_remaining_checkpoints(task, now, policy)
    if not remaining:
        return None
    return remaining[0]


def checkpoint_time(due_at: datetime, lead_time_hours: int) -> datetime:
    """Return the instant a checkpoint fires."""
    return ensure_utc(due_at) - timedelta(hours=lead_time_hours)


def notification_id_for(task_id: str, lead_time_hours: int) -> str:
    """Derive the deterministic notification id for a task checkpoint."""
    return str(uuid.uuid5(NOTIFICATION_ID_NAMESPACE, f"{task_id}:{int(lead_time_hours)}"))
