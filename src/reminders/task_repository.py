"""Repository helpers for task persistence."""

from __future__ import annotations

from collections.abc import Mapping
from contextlib import closing
from dataclasses import dataclass
from datetime import datetime, timedelta
import logging
from typing import Callable

from sqlalchemy import and_, exists, or_, select
from sqlalchemy.orm import Session

from models import Notification, Task
from reminders.domain import (
    ACTIVE_TASK_STATUSES,
    OPEN_NOTIFICATION_STATUSES,
    ChannelType,
    Priority,
    TaskStatus,
)
from reminders.errors import TaskNotFoundError, TerminalTaskError
from reminders.notification_repository import cancel_pending_for_task
from time_utils import ensure_utc, utc_now

UNSET = object()
logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TaskCreateInput:
    """Input payload for creating a task record."""

    title: str
    priority: Priority | str
    due_at: datetime
    assignee: str
    channel_preference: ChannelType | str = ChannelType.PLATFORM_MESSAGE
    task_id: str | None = None


@dataclass(frozen=True)
class TaskUpdateInput:
    """Input payload for editing reminder-relevant task fields."""

    title: str | object = UNSET
    priority: Priority | str | object = UNSET
    due_at: datetime | object = UNSET
    channel_preference: ChannelType | str | object = UNSET


class TaskRepository:
    """Repository for task reads and lifecycle writes."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        """Initialize repository with a SQLAlchemy session factory."""
        self._session_factory = session_factory

    def create(self, payload: TaskCreateInput, *, now: datetime | None = None) -> Task:
        """Create and persist a task record."""
        return self._execute(lambda session: create_task(session, payload, now=now))

    def get_task(self, task_id: str) -> Task | None:
        """Fetch a task by id."""
        return self._execute(lambda session: session.get(Task, task_id))

    def update_task_status(
        self,
        task_id: str,
        status: TaskStatus | str,
        *,
        now: datetime | None = None,
    ) -> Task:
        """Set a task's status; a terminal status cancels its pending notifications.

        Raises:
            TaskNotFoundError: When the task does not exist.
            TerminalTaskError: When the task is already completed or cancelled.
        """
        timestamp = ensure_utc(now or utc_now())

        def handler(session: Session) -> Task:
            task, _ = set_task_status(session, task_id, status, now=timestamp)
            return task

        return self._execute(handler)

    def update(
        self,
        task_id: str,
        updates: TaskUpdateInput,
        *,
        now: datetime | None = None,
    ) -> Task:
        """Apply field edits to a task."""

        def handler(session: Session) -> Task:
            task = fetch_task(session, task_id)
            apply_updates(task, updates)
            task.updated_at = ensure_utc(now or utc_now())
            return task

        return self._execute(handler)

    def list_backfill_candidates(
        self,
        now: datetime,
        *,
        limit: int,
        final_lead_hours: Mapping[Priority, int] | None = None,
    ) -> list[Task]:
        """Return active, not-yet-due tasks that have no open notification.

        With ``final_lead_hours`` only tasks that still have a checkpoint
        ahead of them are returned: ``due_at - now`` must exceed the smallest
        lead time for the task's priority.
        """
        if limit <= 0:
            return []
        timestamp = ensure_utc(now)

        def handler(session: Session) -> list[Task]:
            has_open = exists().where(
                Notification.task_id == Task.id,
                Notification.status.in_([status.value for status in OPEN_NOTIFICATION_STATUSES]),
            )
            stmt = (
                select(Task)
                .where(Task.status.in_([status.value for status in ACTIVE_TASK_STATUSES]))
                .where(Task.due_at > timestamp)
                .where(~has_open)
            )
            if final_lead_hours:
                stmt = stmt.where(
                    or_(
                        *(
                            and_(
                                Task.priority == Priority(priority).value,
                                Task.due_at > timestamp + timedelta(hours=hours),
                            )
                            for priority, hours in final_lead_hours.items()
                        )
                    )
                )
            stmt = stmt.order_by(Task.due_at.asc()).limit(limit)
            return list(session.execute(stmt).scalars())

        return self._execute(handler)

    def _execute(self, handler):
        """Execute repository work inside a managed session."""
        with closing(self._session_factory()) as session:
            session.expire_on_commit = False
            try:
                result = handler(session)
                session.commit()
            except Exception:
                session.rollback()
                raise
        return result


def create_task(
    session: Session,
    payload: TaskCreateInput,
    *,
    now: datetime | None = None,
) -> Task:
    """Insert a task within an existing session."""
    if not payload.assignee or not payload.assignee.strip():
        raise ValueError("assignee is required")
    timestamp = ensure_utc(now or utc_now())
    task = Task(
        title=(payload.title or "").strip(),
        priority=Priority(payload.priority).value,
        due_at=ensure_utc(payload.due_at),
        status=TaskStatus.PENDING.value,
        assignee=payload.assignee.strip(),
        channel_preference=ChannelType(payload.channel_preference).value,
        created_at=timestamp,
        updated_at=timestamp,
    )
    if payload.task_id:
        task.id = payload.task_id
    session.add(task)
    session.flush()
    logger.debug(
        "Task created id=%s priority=%s due_at=%s",
        task.id,
        task.priority,
        task.due_at,
    )
    return task


def fetch_task(session: Session, task_id: str) -> Task:
    """Return a task or raise when missing."""
    task = session.get(Task, task_id)
    if task is None:
        raise TaskNotFoundError(task_id)
    return task


def set_task_status(
    session: Session,
    task_id: str,
    status: TaskStatus | str,
    *,
    now: datetime,
) -> tuple[Task, int]:
    """Move a non-terminal task to ``status`` within an existing session.

    Returns the task and the number of pending notifications cancelled, which
    is non-zero only when ``status`` is terminal.
    """
    task = fetch_task(session, task_id)
    if TaskStatus(task.status).is_terminal:
        raise TerminalTaskError(task_id, task.status)
    target = TaskStatus(status)
    task.status = target.value
    task.updated_at = now
    if not target.is_terminal:
        return task, 0
    # Status first so a concurrent dispatcher sees the terminal task.
    session.flush()
    return task, cancel_pending_for_task(session, task_id, now=now)


def apply_updates(task: Task, updates: TaskUpdateInput) -> None:
    """Apply set fields of ``updates`` onto ``task``."""
    if updates.title is not UNSET:
        task.title = str(updates.title).strip()
    if updates.priority is not UNSET:
        task.priority = Priority(updates.priority).value
    if updates.due_at is not UNSET:
        task.due_at = ensure_utc(updates.due_at)
    if updates.channel_preference is not UNSET:
        task.channel_preference = ChannelType(updates.channel_preference).value
