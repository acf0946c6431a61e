"""Pytest configuration for the reminder engine test suite."""

from __future__ import annotations

import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Generator

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker


def _ensure_test_env() -> None:
    """Seed environment variables so tests never touch real backends."""
    os.environ.setdefault("REMINDER_DATABASE_URL", "sqlite:///:memory:")
    os.environ.setdefault("REMINDER_COUNTER_BACKEND", "memory")
    os.environ.setdefault("REMINDER_LOG_JSON", "false")


_ensure_test_env()

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
sys.path.insert(0, str(SRC))


@pytest.fixture()
def sqlite_session_factory(tmp_path: Path) -> Generator[sessionmaker, None, None]:
    """Provide a sqlite session factory backed by a temp file.

    A file database lets dispatch worker threads use separate connections.
    """
    from models import Base

    db_path = tmp_path / "reminders.db"
    engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, expire_on_commit=False)
    yield factory
    engine.dispose()


@pytest.fixture()
def base_now() -> datetime:
    """Return a fixed, hour-aligned UTC instant."""
    return datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)
