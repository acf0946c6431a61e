"""Data models for the reminder engine."""

from datetime import datetime, timezone
import uuid

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base

from reminders.domain import (
    ChannelType,
    NotificationStatus,
    Priority,
    TaskStatus,
)

# SQLAlchemy base
Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_task_id() -> str:
    return uuid.uuid4().hex


def _in_list(column: str, values) -> str:
    joined = ", ".join(f"'{value.value}'" for value in values)
    return f"{column} IN ({joined})"


class Task(Base):
    """A task whose due time drives reminder checkpoints."""

    __tablename__ = "tasks"
    __table_args__ = (
        CheckConstraint(_in_list("priority", Priority), name="ck_tasks_priority"),
        CheckConstraint(_in_list("status", TaskStatus), name="ck_tasks_status"),
        CheckConstraint(
            _in_list("channel_preference", ChannelType), name="ck_tasks_channel_preference"
        ),
        Index("ix_tasks_status_due_at", "status", "due_at"),
    )

    id = Column(String(64), primary_key=True, default=_new_task_id)
    title = Column(Text, nullable=False, default="")
    priority = Column(String(20), nullable=False, default=Priority.MEDIUM.value)
    due_at = Column(DateTime(timezone=True), nullable=False)
    status = Column(String(20), nullable=False, default=TaskStatus.PENDING.value)
    assignee = Column(String(200), nullable=False)
    channel_preference = Column(
        String(40), nullable=False, default=ChannelType.PLATFORM_MESSAGE.value
    )
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow)


class Notification(Base):
    """One reminder checkpoint for a task, keyed by (task_id, lead_time_hours)."""

    __tablename__ = "notifications"
    __table_args__ = (
        UniqueConstraint("task_id", "lead_time_hours", name="uq_notifications_task_lead"),
        CheckConstraint(_in_list("status", NotificationStatus), name="ck_notifications_status"),
        CheckConstraint(
            _in_list("channel_type", ChannelType), name="ck_notifications_channel_type"
        ),
        CheckConstraint("attempts >= 0", name="ck_notifications_attempts_nonnegative"),
        Index("ix_notifications_status_scheduled_for", "status", "scheduled_for"),
        Index("ix_notifications_status_claimed_at", "status", "claimed_at"),
    )

    id = Column(String(64), primary_key=True)
    task_id = Column(String(64), ForeignKey("tasks.id"), nullable=False, index=True)
    lead_time_hours = Column(Integer, nullable=False)
    channel_type = Column(String(40), nullable=False)
    scheduled_for = Column(DateTime(timezone=True), nullable=False)
    status = Column(String(20), nullable=False, default=NotificationStatus.PENDING.value)
    attempts = Column(Integer, nullable=False, default=0)
    last_attempt_at = Column(DateTime(timezone=True), nullable=True)
    claimed_at = Column(DateTime(timezone=True), nullable=True)
    last_error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow)


class DeliveryAlert(Base):
    """Operator-visible record of a notification that exhausted its retries."""

    __tablename__ = "delivery_alerts"

    id = Column(Integer, primary_key=True)
    notification_id = Column(String(64), ForeignKey("notifications.id"), nullable=False)
    task_id = Column(String(64), nullable=False, index=True)
    channel_type = Column(String(40), nullable=False)
    attempts = Column(Integer, nullable=False)
    last_error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
