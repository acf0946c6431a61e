"""Reminder engine schema.

Revision ID: 0001_reminder_engine
Revises:
Create Date: 2026-10-18 00:00:00.000000

"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

revision = "0001_reminder_engine"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create tasks, notifications, and delivery alerts tables."""
    op.create_table(
        "tasks",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("title", sa.Text(), nullable=False, server_default=""),
        sa.Column("priority", sa.String(length=20), nullable=False),
        sa.Column("due_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("assignee", sa.String(length=200), nullable=False),
        sa.Column("channel_preference", sa.String(length=40), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            "priority IN ('high', 'medium', 'low')", name="ck_tasks_priority"
        ),
        sa.CheckConstraint(
            "status IN ('pending', 'in_progress', 'completed', 'cancelled')",
            name="ck_tasks_status",
        ),
        sa.CheckConstraint(
            "channel_preference IN ('push', 'email', 'platform_message')",
            name="ck_tasks_channel_preference",
        ),
    )
    op.create_index("ix_tasks_status_due_at", "tasks", ["status", "due_at"])

    op.create_table(
        "notifications",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("task_id", sa.String(length=64), sa.ForeignKey("tasks.id"), nullable=False),
        sa.Column("lead_time_hours", sa.Integer(), nullable=False),
        sa.Column("channel_type", sa.String(length=40), nullable=False),
        sa.Column("scheduled_for", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_attempt_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("claimed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("task_id", "lead_time_hours", name="uq_notifications_task_lead"),
        sa.CheckConstraint(
            "status IN ('pending', 'dispatching', 'sent', 'failed', 'cancelled')",
            name="ck_notifications_status",
        ),
        sa.CheckConstraint(
            "channel_type IN ('push', 'email', 'platform_message')",
            name="ck_notifications_channel_type",
        ),
        sa.CheckConstraint("attempts >= 0", name="ck_notifications_attempts_nonnegative"),
    )
    op.create_index("ix_notifications_task_id", "notifications", ["task_id"])
    op.create_index(
        "ix_notifications_status_scheduled_for",
        "notifications",
        ["status", "scheduled_for"],
    )
    op.create_index(
        "ix_notifications_status_claimed_at",
        "notifications",
        ["status", "claimed_at"],
    )

    op.create_table(
        "delivery_alerts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "notification_id",
            sa.String(length=64),
            sa.ForeignKey("notifications.id"),
            nullable=False,
        ),
        sa.Column("task_id", sa.String(length=64), nullable=False),
        sa.Column("channel_type", sa.String(length=40), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_delivery_alerts_task_id", "delivery_alerts", ["task_id"])


def downgrade() -> None:
    """Drop reminder engine tables."""
    op.drop_index("ix_delivery_alerts_task_id", table_name="delivery_alerts")
    op.drop_table("delivery_alerts")
    op.drop_index("ix_notifications_status_claimed_at", table_name="notifications")
    op.drop_index("ix_notifications_status_scheduled_for", table_name="notifications")
    op.drop_index("ix_notifications_task_id", table_name="notifications")
    op.drop_table("notifications")
    op.drop_index("ix_tasks_status_due_at", table_name="tasks")
    op.drop_table("tasks")
