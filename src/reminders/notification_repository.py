"""Notification store with idempotent upsert and compare-and-set transitions.

Every status change is a single conditional ``UPDATE`` keyed by notification
id and the expected prior status, so two workers can never both move the same
row out of ``pending``.
"""

from __future__ import annotations

from collections.abc import Iterable
from contextlib import closing
from datetime import datetime
import logging
from typing import Callable

from sqlalchemy import case, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from models import Notification, Task
from reminders.domain import ChannelType, NotificationStatus, Priority
from reminders.schedule_calculator import checkpoint_time, notification_id_for
from time_utils import ensure_utc, utc_now

logger = logging.getLogger(__name__)

_PRIORITY_ORDER = case(
    {priority.value: priority.rank for priority in Priority},
    value=Task.priority,
    else_=len(Priority),
)


class NotificationRepository:
    """Repository for reminder notifications."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        """Initialize repository with a SQLAlchemy session factory."""
        self._session_factory = session_factory

    def upsert(
        self,
        *,
        task_id: str,
        lead_time_hours: int,
        channel_type: ChannelType | str,
        scheduled_for: datetime,
        now: datetime | None = None,
    ) -> bool:
        """Insert the checkpoint notification if absent; return True when created."""
        return self._execute(
            lambda session: upsert_notification(
                session,
                task_id=task_id,
                lead_time_hours=lead_time_hours,
                channel_type=channel_type,
                scheduled_for=scheduled_for,
                now=now,
            )
        )

    def get(self, notification_id: str) -> Notification | None:
        """Fetch a notification by id."""
        return self._execute(lambda session: session.get(Notification, notification_id))

    def list_for_task(self, task_id: str) -> list[Notification]:
        """Return every notification of a task ordered by checkpoint."""

        def handler(session: Session) -> list[Notification]:
            stmt = (
                select(Notification)
                .where(Notification.task_id == task_id)
                .order_by(Notification.lead_time_hours.desc())
            )
            return list(session.execute(stmt).scalars())

        return self._execute(handler)

    def has_open_notification(self, task_id: str) -> bool:
        """Return True when the task has a pending or in-flight notification."""

        def handler(session: Session) -> bool:
            stmt = (
                select(Notification.id)
                .where(Notification.task_id == task_id)
                .where(
                    Notification.status.in_(
                        [NotificationStatus.PENDING.value, NotificationStatus.DISPATCHING.value]
                    )
                )
                .limit(1)
            )
            return session.execute(stmt).first() is not None

        return self._execute(handler)

    def find_due(self, now: datetime, limit: int) -> list[Notification]:
        """Return due pending notifications ordered by time then task priority."""
        if limit <= 0:
            return []
        timestamp = ensure_utc(now)

        def handler(session: Session) -> list[Notification]:
            stmt = (
                select(Notification)
                .join(Task, Task.id == Notification.task_id)
                .where(Notification.status == NotificationStatus.PENDING.value)
                .where(Notification.scheduled_for <= timestamp)
                .order_by(
                    Notification.scheduled_for.asc(),
                    _PRIORITY_ORDER.asc(),
                    Notification.id.asc(),
                )
                .limit(limit)
            )
            return list(session.execute(stmt).scalars())

        return self._execute(handler)

    def find_stale_claims(self, cutoff: datetime, limit: int) -> list[Notification]:
        """Return notifications stuck in ``dispatching`` since before ``cutoff``."""
        if limit <= 0:
            return []
        timestamp = ensure_utc(cutoff)

        def handler(session: Session) -> list[Notification]:
            stmt = (
                select(Notification)
                .where(Notification.status == NotificationStatus.DISPATCHING.value)
                .where(Notification.claimed_at < timestamp)
                .order_by(Notification.claimed_at.asc())
                .limit(limit)
            )
            return list(session.execute(stmt).scalars())

        return self._execute(handler)

    def cancel_all_pending_for_task(self, task_id: str, *, now: datetime | None = None) -> int:
        """Cancel every pending notification of a task; return the count."""
        return self._execute(
            lambda session: cancel_pending_for_task(session, task_id, now=now)
        )

    def cancel_obsolete_pending(
        self,
        task_id: str,
        keep_lead_times: Iterable[int],
        *,
        now: datetime | None = None,
    ) -> int:
        """Cancel pending notifications whose lead time is not in ``keep_lead_times``."""
        return self._execute(
            lambda session: cancel_obsolete_pending(session, task_id, keep_lead_times, now=now)
        )

    def claim(self, notification_id: str, *, now: datetime | None = None) -> Notification | None:
        """Atomically move ``pending -> dispatching``; return the row if this caller won."""
        timestamp = ensure_utc(now or utc_now())

        def handler(session: Session) -> Notification | None:
            won = _transition(
                session,
                notification_id,
                expected=NotificationStatus.PENDING,
                values={
                    "status": NotificationStatus.DISPATCHING.value,
                    "claimed_at": timestamp,
                    "updated_at": timestamp,
                },
            )
            if not won:
                return None
            return session.get(Notification, notification_id)

        return self._execute(handler)

    def release_claim(self, notification_id: str, *, now: datetime | None = None) -> bool:
        """Return a claimed notification to ``pending`` without counting an attempt."""
        timestamp = ensure_utc(now or utc_now())
        return self._execute(
            lambda session: _transition(
                session,
                notification_id,
                expected=NotificationStatus.DISPATCHING,
                values={
                    "status": NotificationStatus.PENDING.value,
                    "claimed_at": None,
                    "updated_at": timestamp,
                },
            )
        )

    def cancel_claimed(self, notification_id: str, *, now: datetime | None = None) -> bool:
        """Cancel a claimed notification whose task turned out to be terminal."""
        timestamp = ensure_utc(now or utc_now())
        return self._execute(
            lambda session: _transition(
                session,
                notification_id,
                expected=NotificationStatus.DISPATCHING,
                values={
                    "status": NotificationStatus.CANCELLED.value,
                    "claimed_at": None,
                    "updated_at": timestamp,
                },
            )
        )

    def mark_sent(self, notification_id: str, *, now: datetime | None = None) -> bool:
        """Record a successful delivery for a claimed notification."""
        timestamp = ensure_utc(now or utc_now())
        return self._execute(
            lambda session: _transition(
                session,
                notification_id,
                expected=NotificationStatus.DISPATCHING,
                values={
                    "status": NotificationStatus.SENT.value,
                    "last_attempt_at": timestamp,
                    "claimed_at": None,
                    "last_error": None,
                    "updated_at": timestamp,
                },
            )
        )

    def record_failure(
        self,
        notification_id: str,
        *,
        attempts: int,
        now: datetime,
        retry_at: datetime | None,
        error: str | None,
    ) -> bool:
        """Record a failed attempt; reschedule when ``retry_at`` is set, else fail terminally."""
        timestamp = ensure_utc(now)
        values: dict[str, object] = {
            "attempts": int(attempts),
            "last_attempt_at": timestamp,
            "claimed_at": None,
            "last_error": error,
            "updated_at": timestamp,
        }
        if retry_at is not None:
            values["status"] = NotificationStatus.PENDING.value
            values["scheduled_for"] = ensure_utc(retry_at)
        else:
            values["status"] = NotificationStatus.FAILED.value
        return self._execute(
            lambda session: _transition(
                session,
                notification_id,
                expected=NotificationStatus.DISPATCHING,
                values=values,
            )
        )

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


def upsert_notification(
    session: Session,
    *,
    task_id: str,
    lead_time_hours: int,
    channel_type: ChannelType | str,
    scheduled_for: datetime,
    now: datetime | None = None,
) -> bool:
    """Insert a checkpoint notification unless one already exists for the key.

    Existing rows are never modified here: a pending row keeps its schedule and
    attempts, and a terminal row is never resurrected.
    """
    timestamp = ensure_utc(now or utc_now())
    values = {
        "id": notification_id_for(task_id, lead_time_hours),
        "task_id": task_id,
        "lead_time_hours": int(lead_time_hours),
        "channel_type": ChannelType(channel_type).value,
        "scheduled_for": ensure_utc(scheduled_for),
        "status": NotificationStatus.PENDING.value,
        "attempts": 0,
        "created_at": timestamp,
        "updated_at": timestamp,
    }
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        stmt = postgresql.insert(Notification).values(**values)
    elif dialect == "sqlite":
        stmt = sqlite.insert(Notification).values(**values)
    else:
        return _insert_if_absent(session, values)
    stmt = stmt.on_conflict_do_nothing(index_elements=["task_id", "lead_time_hours"])
    result = session.execute(stmt)
    created = result.rowcount == 1
    if created:
        logger.debug(
            "Notification scheduled task_id=%s lead=%sh at=%s",
            task_id,
            lead_time_hours,
            values["scheduled_for"],
        )
    return created


def _insert_if_absent(session: Session, values: dict[str, object]) -> bool:
    """Portable fallback for dialects without ``ON CONFLICT`` support."""
    existing = session.execute(
        select(Notification.id)
        .where(Notification.task_id == values["task_id"])
        .where(Notification.lead_time_hours == values["lead_time_hours"])
    ).first()
    if existing is not None:
        return False
    session.add(Notification(**values))
    session.flush()
    return True


def cancel_pending_for_task(
    session: Session,
    task_id: str,
    *,
    now: datetime | None = None,
) -> int:
    """Cancel a task's pending notifications within an existing session."""
    timestamp = ensure_utc(now or utc_now())
    result = session.execute(
        update(Notification)
        .where(Notification.task_id == task_id)
        .where(Notification.status == NotificationStatus.PENDING.value)
        .values(status=NotificationStatus.CANCELLED.value, updated_at=timestamp)
    )
    return int(result.rowcount or 0)


def cancel_obsolete_pending(
    session: Session,
    task_id: str,
    keep_lead_times: Iterable[int],
    *,
    now: datetime | None = None,
) -> int:
    """Cancel pending notifications for lead times no longer in the schedule."""
    timestamp = ensure_utc(now or utc_now())
    keep = [int(lead) for lead in keep_lead_times]
    stmt = (
        update(Notification)
        .where(Notification.task_id == task_id)
        .where(Notification.status == NotificationStatus.PENDING.value)
        .values(status=NotificationStatus.CANCELLED.value, updated_at=timestamp)
    )
    if keep:
        stmt = stmt.where(Notification.lead_time_hours.not_in(keep))
    result = session.execute(stmt)
    return int(result.rowcount or 0)


def realign_pending(
    session: Session,
    task_id: str,
    due_at: datetime,
    *,
    now: datetime | None = None,
) -> int:
    """Move never-attempted pending checkpoints to match a new due time."""
    timestamp = ensure_utc(now or utc_now())
    stmt = (
        select(Notification)
        .where(Notification.task_id == task_id)
        .where(Notification.status == NotificationStatus.PENDING.value)
        .where(Notification.attempts == 0)
    )
    moved = 0
    for notification in session.execute(stmt).scalars().all():
        target = checkpoint_time(due_at, notification.lead_time_hours)
        if ensure_utc(notification.scheduled_for) == target:
            continue
        moved += int(
            _transition(
                session,
                notification.id,
                expected=NotificationStatus.PENDING,
                values={"scheduled_for": target, "updated_at": timestamp},
            )
        )
    return moved


def _transition(
    session: Session,
    notification_id: str,
    *,
    expected: NotificationStatus,
    values: dict[str, object],
) -> bool:
    """Compare-and-set update keyed by id and expected status."""
    result = session.execute(
        update(Notification)
        .where(Notification.id == notification_id)
        .where(Notification.status == expected.value)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1
