"""Database engine and session management."""

import logging
from pathlib import Path

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from alembic import command
from alembic.config import Config

from config import settings
from models import Base

logger = logging.getLogger(__name__)

_sync_engine: Engine | None = None
_sync_session_factory: sessionmaker | None = None


def build_engine(url: str, *, echo: bool = False) -> Engine:
    """Create an engine for ``url`` with settings suited to threaded workers."""
    if url.startswith("sqlite"):
        return create_engine(
            url,
            echo=echo,
            connect_args={"check_same_thread": False, "timeout": 30},
        )
    return create_engine(url, echo=echo, pool_pre_ping=True)


def get_sync_engine() -> Engine:
    global _sync_engine
    if _sync_engine is None:
        _sync_engine = build_engine(settings.database.url, echo=settings.database.echo)
    return _sync_engine


def get_sync_session() -> Session:
    """Return a new session bound to the configured engine."""
    global _sync_session_factory
    if _sync_session_factory is None:
        _sync_session_factory = sessionmaker(bind=get_sync_engine(), expire_on_commit=False)
    return _sync_session_factory()


def init_schema(engine: Engine | None = None) -> None:
    """Create missing tables directly from model metadata."""
    Base.metadata.create_all(engine or get_sync_engine())
    logger.info("Database schema ensured")


def _run_migrations() -> None:
    alembic_ini = Path(__file__).resolve().parents[2] / "alembic.ini"
    alembic_cfg = Config(str(alembic_ini))
    alembic_cfg.set_main_option("sqlalchemy.url", settings.database.url)
    command.upgrade(alembic_cfg, "head")


def run_migrations_sync() -> None:
    """Run database migrations synchronously."""
    _run_migrations()
    logger.info("Database migrations applied")


def check_connection() -> bool:
    """Check if database connection is working."""
    try:
        with get_sync_engine().connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error("Database connection check failed: %s", e)
        return False
