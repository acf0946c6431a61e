"""Poll-driven dispatch of due reminder notifications.

One cycle recovers stale claims, backfills missing checkpoints, then fans the
due batch out over a bounded worker pool. Each worker claims its row with a
compare-and-set before doing anything else, so overlapping cycles never send
the same notification twice from the same claim.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from enum import Enum
import logging
from typing import Callable

from sqlalchemy.orm import Session

from config import DispatchConfig, Settings
from logging_config import log_context
from models import Notification, Task
from notifications.alerts import (
    AlertSink,
    DatabaseAlertSink,
    DeliveryFailureAlert,
    LoggingAlertSink,
)
from notifications.notifier import DeliveryResult, NotifierRegistry, PlatformNotifier
from notifications.rate_limiter import RateLimiter, build_rate_limiter
from notifications.retry_policy import RetryPolicy, compute_retry_at, resolve_retry_policy
from notifications.webhook_notifier import build_notifier_registry
from reminders.domain import TaskStatus
from reminders.errors import DeliveryError
from reminders.notification_repository import NotificationRepository
from reminders.policy import ReminderPolicy
from reminders.scheduling_service import ReminderScheduler
from reminders.task_repository import TaskRepository
from time_utils import ensure_utc, utc_now

logger = logging.getLogger(__name__)


class DispatchOutcome(str, Enum):
    """Result of handling one due notification."""

    SENT = "sent"
    DEFERRED = "deferred"
    RETRIED = "retried"
    FAILED = "failed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"


@dataclass
class DispatchCycleResult:
    """Counts reported by one poll cycle."""

    due: int = 0
    claimed: int = 0
    sent: int = 0
    deferred: int = 0
    retried: int = 0
    failed: int = 0
    skipped: int = 0
    cancelled: int = 0
    recovered: int = 0
    backfilled: int = 0

    def record(self, outcome: DispatchOutcome) -> None:
        if outcome is not DispatchOutcome.SKIPPED:
            self.claimed += 1
        setattr(self, outcome.value, getattr(self, outcome.value) + 1)

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


class NotificationDispatcher:
    """Run poll cycles over the notification store."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        *,
        policy: ReminderPolicy,
        registry: NotifierRegistry,
        rate_limiter: RateLimiter,
        config: DispatchConfig | None = None,
        retry_policy: RetryPolicy | None = None,
        alert_sink: AlertSink | None = None,
        now_provider: Callable[[], datetime] | None = None,
    ) -> None:
        self._notifications = NotificationRepository(session_factory)
        self._tasks = TaskRepository(session_factory)
        self._scheduler = ReminderScheduler(session_factory, policy)
        self._registry = registry
        self._rate_limiter = rate_limiter
        self._config = config or DispatchConfig()
        self._retry_policy = resolve_retry_policy(retry_policy)
        self._alert_sink = alert_sink or LoggingAlertSink()
        self._now_provider = now_provider or utc_now

    def run_cycle(self, now: datetime | None = None) -> DispatchCycleResult:
        """Run one poll cycle and return its counts.

        Each worker stamps its claim and outcome with the cycle time advanced
        by the clock time elapsed since the cycle began.
        """
        clock_start = self._now_provider()
        timestamp = ensure_utc(now or clock_start)
        result = DispatchCycleResult()

        self._recover_stale_claims(timestamp, result)
        if self._config.backfill_limit:
            result.backfilled = self._scheduler.backfill(
                limit=self._config.backfill_limit,
                now=timestamp,
            )

        due = self._notifications.find_due(timestamp, self._config.batch_limit)
        result.due = len(due)
        if due:
            workers = max(1, min(self._config.worker_count, len(due)))
            with ThreadPoolExecutor(
                max_workers=workers,
                thread_name_prefix="reminder-dispatch",
            ) as pool:
                futures = [
                    pool.submit(self._dispatch_in_cycle, notification.id, timestamp, clock_start)
                    for notification in due
                ]
                for future in futures:
                    result.record(future.result())

        logger.info(
            "Dispatch cycle complete: due=%s sent=%s deferred=%s retried=%s failed=%s "
            "skipped=%s cancelled=%s recovered=%s backfilled=%s",
            result.due,
            result.sent,
            result.deferred,
            result.retried,
            result.failed,
            result.skipped,
            result.cancelled,
            result.recovered,
            result.backfilled,
        )
        return result

    def dispatch_one(self, notification_id: str, now: datetime) -> DispatchOutcome:
        """Claim, admit, send, and record the outcome for one notification."""
        with log_context({"notification_id": notification_id}):
            notification = self._notifications.claim(notification_id, now=now)
            if notification is None:
                logger.debug("Claim lost; another worker owns the notification")
                return DispatchOutcome.SKIPPED
            with log_context(
                {"task_id": notification.task_id, "channel": notification.channel_type}
            ):
                return self._dispatch_claimed(notification, now)

    def _dispatch_in_cycle(
        self,
        notification_id: str,
        cycle_now: datetime,
        clock_start: datetime,
    ) -> DispatchOutcome:
        elapsed = self._now_provider() - clock_start
        return self.dispatch_one(notification_id, cycle_now + max(elapsed, timedelta(0)))

    def _dispatch_claimed(self, notification: Notification, now: datetime) -> DispatchOutcome:
        task = self._tasks.get_task(notification.task_id)
        if task is None or TaskStatus(task.status).is_terminal:
            self._notifications.cancel_claimed(notification.id, now=now)
            logger.info("Reminder cancelled at dispatch: task is closed or missing")
            return DispatchOutcome.CANCELLED

        if not self._rate_limiter.try_admit(notification.channel_type, now):
            self._notifications.release_claim(notification.id, now=now)
            logger.debug("Reminder deferred by rate limit")
            return DispatchOutcome.DEFERRED

        notifier = self._registry.get(notification.channel_type)
        if notifier is None:
            return self._handle_failure(
                notification,
                now,
                f"No notifier registered for channel {notification.channel_type}",
            )

        try:
            delivery = self._send(notifier, notification, task)
        except Exception as exc:
            return self._handle_failure(notification, now, f"{type(exc).__name__}: {exc}")
        if not delivery.ok:
            return self._handle_failure(notification, now, delivery.detail or "delivery failed")

        if not self._notifications.mark_sent(notification.id, now=now):
            logger.warning("Reminder sent but claim was already recovered elsewhere")
        else:
            logger.info("Reminder sent: lead=%sh", notification.lead_time_hours)
        self._schedule_following(task, now)
        return DispatchOutcome.SENT

    def _send(
        self,
        notifier: PlatformNotifier,
        notification: Notification,
        task: Task,
    ) -> DeliveryResult:
        """Render and send under the configured timeout.

        A call that overruns is reported as a failure; it is not interrupted.
        """
        timeout = self._config.send_timeout_seconds

        def call() -> DeliveryResult:
            payload = notifier.render(notification, task)
            return notifier.send(notification.channel_type, payload, task.assignee)

        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="reminder-send")
        try:
            future = executor.submit(call)
            try:
                return future.result(timeout=timeout)
            except FutureTimeoutError as exc:
                raise DeliveryError(f"send exceeded timeout ({timeout:.3f}s)") from exc
        finally:
            executor.shutdown(wait=False)

    def _handle_failure(
        self,
        notification: Notification,
        now: datetime,
        error: str,
    ) -> DispatchOutcome:
        attempts = int(notification.attempts or 0) + 1
        retry_at = compute_retry_at(now, attempts, self._retry_policy)
        recorded = self._notifications.record_failure(
            notification.id,
            attempts=attempts,
            now=now,
            retry_at=retry_at,
            error=error,
        )
        if not recorded:
            logger.warning("Failure not recorded; notification changed state concurrently")
            return DispatchOutcome.SKIPPED
        if retry_at is not None:
            logger.warning(
                "Reminder delivery failed: attempts=%s retry_at=%s error=%s",
                attempts,
                retry_at.isoformat(),
                error,
            )
            return DispatchOutcome.RETRIED
        self._alert_sink.emit(
            DeliveryFailureAlert(
                notification_id=notification.id,
                task_id=notification.task_id,
                channel_type=notification.channel_type,
                attempts=attempts,
                last_error=error,
            )
        )
        return DispatchOutcome.FAILED

    def _schedule_following(self, task: Task, now: datetime) -> None:
        try:
            self._scheduler.schedule_next_for_task(task.id, now=now)
        except Exception:
            # Backfill on a later cycle picks the task up again.
            logger.exception("Scheduling the following reminder failed")

    def _recover_stale_claims(self, now: datetime, result: DispatchCycleResult) -> None:
        cutoff = now - timedelta(seconds=self._config.claim_timeout_seconds)
        stale = self._notifications.find_stale_claims(cutoff, self._config.batch_limit)
        for notification in stale:
            with log_context(
                {
                    "notification_id": notification.id,
                    "task_id": notification.task_id,
                    "channel": notification.channel_type,
                }
            ):
                logger.warning(
                    "Recovering stale claim: claimed_at=%s",
                    ensure_utc(notification.claimed_at).isoformat(),
                )
                task = self._tasks.get_task(notification.task_id)
                if task is None or TaskStatus(task.status).is_terminal:
                    if self._notifications.cancel_claimed(notification.id, now=now):
                        result.recovered += 1
                        result.cancelled += 1
                    continue
                outcome = self._handle_failure(notification, now, "claim timed out")
                if outcome is DispatchOutcome.SKIPPED:
                    continue
                result.recovered += 1
                if outcome is DispatchOutcome.FAILED:
                    result.failed += 1
                else:
                    result.retried += 1


def build_dispatcher(
    config: Settings,
    session_factory: Callable[[], Session],
    *,
    registry: NotifierRegistry | None = None,
    rate_limiter: RateLimiter | None = None,
) -> NotificationDispatcher:
    """Wire a dispatcher from settings."""
    return NotificationDispatcher(
        session_factory,
        policy=config.policy.to_policy(),
        registry=registry or build_notifier_registry(config.notifiers),
        rate_limiter=rate_limiter or build_rate_limiter(config),
        config=config.dispatch,
        retry_policy=RetryPolicy.from_config(config.retry),
        alert_sink=DatabaseAlertSink(session_factory),
    )
