"""Task lifecycle operations coupled to reminder scheduling."""

from __future__ import annotations

from contextlib import closing
from datetime import datetime
import logging
from typing import Callable

from sqlalchemy.orm import Session

from models import Task
from reminders.domain import ChannelType, Priority, TaskStatus
from reminders.errors import TerminalTaskError
from reminders.policy import ReminderPolicy
from reminders.scheduling_service import ScheduleOutcome, recompute_schedule, schedule_next
from reminders.task_repository import (
    TaskCreateInput,
    TaskUpdateInput,
    apply_updates,
    create_task,
    fetch_task,
    set_task_status,
)
from time_utils import ensure_utc, utc_now

logger = logging.getLogger(__name__)


class TaskLifecycleService:
    """Apply task mutations and their reminder side effects in one transaction."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        policy: ReminderPolicy,
        *,
        now_provider: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize the service with a session factory and reminder policy."""
        self._session_factory = session_factory
        self._policy = policy
        self._now_provider = now_provider

    def create_task(
        self,
        *,
        title: str,
        priority: Priority | str,
        due_at: datetime,
        assignee: str,
        channel_preference: ChannelType | str = ChannelType.PLATFORM_MESSAGE,
        task_id: str | None = None,
        now: datetime | None = None,
    ) -> Task:
        """Persist a new task and schedule its first reminder checkpoint."""
        timestamp = self._resolve_now(now)
        payload = TaskCreateInput(
            title=title,
            priority=priority,
            due_at=due_at,
            assignee=assignee,
            channel_preference=channel_preference,
            task_id=task_id,
        )

        def handler(session: Session) -> tuple[Task, ScheduleOutcome]:
            task = create_task(session, payload, now=timestamp)
            return task, schedule_next(session, task, self._policy, timestamp)

        task, outcome = self._execute(handler)
        logger.info(
            "Task created: task_id=%s priority=%s next_lead=%s",
            task.id,
            task.priority,
            outcome.next_lead_time_hours,
        )
        return task

    def start_task(self, task_id: str, *, now: datetime | None = None) -> Task:
        """Move a task to in_progress; its reminders keep firing."""
        timestamp = self._resolve_now(now)

        def handler(session: Session) -> Task:
            task, _ = set_task_status(session, task_id, TaskStatus.IN_PROGRESS, now=timestamp)
            return task

        return self._execute(handler)

    def complete_task(self, task_id: str, *, now: datetime | None = None) -> Task:
        """Complete a task and cancel its pending reminders."""
        return self._close(task_id, TaskStatus.COMPLETED, now)

    def cancel_task(self, task_id: str, *, now: datetime | None = None) -> Task:
        """Cancel a task and its pending reminders."""
        return self._close(task_id, TaskStatus.CANCELLED, now)

    def reprioritize_task(
        self,
        task_id: str,
        priority: Priority | str,
        *,
        now: datetime | None = None,
    ) -> ScheduleOutcome:
        """Change a task's priority and reconcile its reminder schedule."""
        return self._edit(task_id, TaskUpdateInput(priority=Priority(priority)), now)

    def reschedule_task(
        self,
        task_id: str,
        due_at: datetime,
        *,
        now: datetime | None = None,
    ) -> ScheduleOutcome:
        """Move a task's due time and reconcile its reminder schedule."""
        return self._edit(task_id, TaskUpdateInput(due_at=ensure_utc(due_at)), now)

    def _close(self, task_id: str, status: TaskStatus, now: datetime | None) -> Task:
        timestamp = self._resolve_now(now)

        task, cancelled = self._execute(
            lambda session: set_task_status(session, task_id, status, now=timestamp)
        )
        logger.info(
            "Task closed: task_id=%s status=%s cancelled_notifications=%s",
            task_id,
            status.value,
            cancelled,
        )
        return task

    def _edit(
        self,
        task_id: str,
        updates: TaskUpdateInput,
        now: datetime | None,
    ) -> ScheduleOutcome:
        timestamp = self._resolve_now(now)

        def handler(session: Session) -> ScheduleOutcome:
            task = self._fetch_mutable(session, task_id)
            apply_updates(task, updates)
            task.updated_at = timestamp
            session.flush()
            return recompute_schedule(session, task, self._policy, timestamp)

        outcome = self._execute(handler)
        logger.info(
            "Task schedule recomputed: task_id=%s next_lead=%s cancelled=%s realigned=%s",
            task_id,
            outcome.next_lead_time_hours,
            outcome.cancelled,
            outcome.realigned,
        )
        return outcome

    def _fetch_mutable(self, session: Session, task_id: str) -> Task:
        task = fetch_task(session, task_id)
        if TaskStatus(task.status).is_terminal:
            raise TerminalTaskError(task_id, task.status)
        return task

    def _resolve_now(self, now: datetime | None) -> datetime:
        return ensure_utc(now or self._now_provider())

    def _execute(self, handler):
        """Execute lifecycle work inside a managed session."""
        with closing(self._session_factory()) as session:
            session.expire_on_commit = False
            try:
                result = handler(session)
                session.commit()
            except Exception:
                session.rollback()
                raise
        return result
