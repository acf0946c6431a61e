"""Celery entry point for the periodic reminder poll cycle."""

from __future__ import annotations

import logging
from typing import Any, Callable

from celery import Celery

from config import settings
from logging_config import configure_logging
from notifications.dispatcher import NotificationDispatcher, build_dispatcher
from services.database import get_sync_session

LOGGER = logging.getLogger(__name__)

POLL_TASK_NAME = "reminders.poll_cycle"

celery_app = Celery("reminders")
celery_app.conf.broker_url = settings.celery.broker_url
celery_app.conf.result_backend = settings.celery.result_backend
celery_app.conf.task_default_queue = settings.celery.queue_name
celery_app.conf.task_serializer = "json"
celery_app.conf.result_serializer = "json"
celery_app.conf.accept_content = ["json"]
celery_app.conf.enable_utc = True
celery_app.conf.timezone = "UTC"

beat_schedule = celery_app.conf.get("beat_schedule")
if beat_schedule is None:
    beat_schedule = {}
beat_schedule[POLL_TASK_NAME] = {
    "task": POLL_TASK_NAME,
    "schedule": float(settings.dispatch.poll_interval_seconds),
    # A cycle that is still queued when the next one is due is redundant.
    "options": {"expires": float(settings.dispatch.poll_interval_seconds)},
}
celery_app.conf.beat_schedule = beat_schedule

_DISPATCHER: NotificationDispatcher | None = None


def _session_factory():
    """Return a new synchronous SQLAlchemy session for poll tasks."""
    return get_sync_session()


def _get_dispatcher() -> NotificationDispatcher:
    global _DISPATCHER
    if _DISPATCHER is None:
        configure_logging(
            level=settings.log_level,
            json_output=settings.log_json,
            service=settings.service_name,
        )
        _DISPATCHER = build_dispatcher(settings, _session_factory)
    return _DISPATCHER


def run_poll_cycle(
    dispatcher_factory: Callable[[], NotificationDispatcher] | None = None,
) -> dict[str, Any]:
    """Run one dispatch cycle and return its counts."""
    dispatcher = (dispatcher_factory or _get_dispatcher)()
    result = dispatcher.run_cycle()
    return result.as_dict()


@celery_app.task(name=POLL_TASK_NAME, ignore_result=False)
def poll_cycle() -> dict[str, Any]:
    """Celery beat job that dispatches due reminders."""
    return run_poll_cycle()
