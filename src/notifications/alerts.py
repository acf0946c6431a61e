"""Operator alerts for notifications that exhausted their retries."""

from __future__ import annotations

from contextlib import closing
from dataclasses import dataclass
from datetime import datetime
import logging
from typing import Callable, Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session

from models import DeliveryAlert
from time_utils import ensure_utc, utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeliveryFailureAlert:
    """Details of one permanent delivery failure."""

    notification_id: str
    task_id: str
    channel_type: str
    attempts: int
    last_error: str | None


class AlertSink(Protocol):
    """Destination for permanent delivery failure alerts."""

    def emit(self, alert: DeliveryFailureAlert) -> None:
        """Record one alert."""


class LoggingAlertSink:
    """Alert sink that only writes an ERROR log record."""

    def emit(self, alert: DeliveryFailureAlert) -> None:
        _log_alert(alert)


class DatabaseAlertSink:
    """Alert sink persisting DeliveryAlert rows alongside an ERROR log record."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        *,
        now_provider: Callable[[], datetime] | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._now_provider = now_provider or utc_now

    def emit(self, alert: DeliveryFailureAlert) -> None:
        """Persist the alert; persistence errors are logged, not raised."""
        _log_alert(alert)
        with closing(self._session_factory()) as session:
            try:
                session.add(
                    DeliveryAlert(
                        notification_id=alert.notification_id,
                        task_id=alert.task_id,
                        channel_type=alert.channel_type,
                        attempts=alert.attempts,
                        last_error=alert.last_error,
                        created_at=ensure_utc(self._now_provider()),
                    )
                )
                session.commit()
            except Exception:
                session.rollback()
                logger.exception(
                    "Failed to persist delivery alert: notification_id=%s",
                    alert.notification_id,
                )

    def list_alerts(self, *, task_id: str | None = None) -> list[DeliveryAlert]:
        """Return stored alerts, newest first."""
        with closing(self._session_factory()) as session:
            stmt = select(DeliveryAlert).order_by(DeliveryAlert.id.desc())
            if task_id is not None:
                stmt = stmt.where(DeliveryAlert.task_id == task_id)
            return list(session.execute(stmt).scalars())


def _log_alert(alert: DeliveryFailureAlert) -> None:
    logger.error(
        "Reminder delivery failed permanently: notification_id=%s task_id=%s "
        "channel=%s attempts=%s error=%s",
        alert.notification_id,
        alert.task_id,
        alert.channel_type,
        alert.attempts,
        alert.last_error,
    )
