"""Keep a task's pending notifications aligned with its reminder schedule."""

from __future__ import annotations

from contextlib import closing
from dataclasses import dataclass
from datetime import datetime
import logging
from typing import Callable

from sqlalchemy.orm import Session

from models import Task
from reminders.domain import TaskStatus
from reminders.notification_repository import (
    cancel_obsolete_pending,
    realign_pending,
    upsert_notification,
)
from reminders.policy import ReminderPolicy
from reminders.schedule_calculator import (
    checkpoint_time,
    compute_next_checkpoint,
    compute_remaining_checkpoints,
)
from reminders.task_repository import TaskRepository, fetch_task
from time_utils import ensure_utc, utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScheduleOutcome:
    """What one scheduling pass changed for a task."""

    task_id: str
    next_lead_time_hours: int | None
    created: bool
    cancelled: int = 0
    realigned: int = 0


def schedule_next(
    session: Session,
    task: Task,
    policy: ReminderPolicy,
    now: datetime,
) -> ScheduleOutcome:
    """Upsert the task's next checkpoint within an existing session."""
    if TaskStatus(task.status).is_terminal:
        return ScheduleOutcome(task_id=task.id, next_lead_time_hours=None, created=False)
    lead = compute_next_checkpoint(task, now, policy)
    if lead is None:
        return ScheduleOutcome(task_id=task.id, next_lead_time_hours=None, created=False)
    created = upsert_notification(
        session,
        task_id=task.id,
        lead_time_hours=lead,
        channel_type=task.channel_preference,
        scheduled_for=checkpoint_time(task.due_at, lead),
        now=now,
    )
    return ScheduleOutcome(task_id=task.id, next_lead_time_hours=lead, created=created)


def recompute_schedule(
    session: Session,
    task: Task,
    policy: ReminderPolicy,
    now: datetime,
) -> ScheduleOutcome:
    """Reconcile pending notifications after a due-date or priority edit.

    Pending rows for lead times that no longer remain are cancelled, surviving
    rows that were never attempted follow the new due time, and the next
    checkpoint is upserted. Sent rows are left as history.
    """
    remaining = compute_remaining_checkpoints(task, now, policy)
    cancelled = cancel_obsolete_pending(session, task.id, remaining, now=now)
    realigned = realign_pending(session, task.id, task.due_at, now=now) if remaining else 0
    outcome = schedule_next(session, task, policy, now)
    return ScheduleOutcome(
        task_id=task.id,
        next_lead_time_hours=outcome.next_lead_time_hours,
        created=outcome.created,
        cancelled=cancelled,
        realigned=realigned,
    )


class ReminderScheduler:
    """Session-managing entry points for scheduling outside lifecycle edits."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        policy: ReminderPolicy,
        *,
        now_provider: Callable[[], datetime] = utc_now,
    ) -> None:
        self._session_factory = session_factory
        self._policy = policy
        self._now_provider = now_provider
        self._tasks = TaskRepository(session_factory)

    @property
    def policy(self) -> ReminderPolicy:
        return self._policy

    def schedule_next_for_task(self, task_id: str, *, now: datetime | None = None) -> ScheduleOutcome:
        """Upsert the next checkpoint for a stored task."""
        timestamp = ensure_utc(now or self._now_provider())
        with closing(self._session_factory()) as session:
            session.expire_on_commit = False
            try:
                task = fetch_task(session, task_id)
                outcome = schedule_next(session, task, self._policy, timestamp)
                session.commit()
            except Exception:
                session.rollback()
                raise
        if outcome.created:
            logger.info(
                "Next reminder scheduled: task_id=%s lead=%sh",
                task_id,
                outcome.next_lead_time_hours,
            )
        return outcome

    def backfill(self, *, limit: int, now: datetime | None = None) -> int:
        """Schedule checkpoints for active tasks that have no open notification.

        Returns the number of notifications created.
        """
        timestamp = ensure_utc(now or self._now_provider())
        created = 0
        candidates = self._tasks.list_backfill_candidates(
            timestamp,
            limit=limit,
            final_lead_hours=self._policy.final_lead_times(),
        )
        for task in candidates:
            outcome = self.schedule_next_for_task(task.id, now=timestamp)
            if outcome.created:
                created += 1
        if created:
            logger.info("Backfilled reminders: created=%s", created)
        return created
