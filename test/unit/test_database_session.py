"""Unit tests for database session helpers."""

from __future__ import annotations

from sqlalchemy import inspect

from services import database


def test_build_engine_allows_cross_thread_sqlite(tmp_path) -> None:
    """SQLite engines are usable from dispatch worker threads."""
    engine = database.build_engine(f"sqlite:///{tmp_path / 'engine.db'}")
    try:
        database.init_schema(engine)
        tables = set(inspect(engine).get_table_names())
    finally:
        engine.dispose()

    assert {"tasks", "notifications", "delivery_alerts"} <= tables


def test_session_factory_is_cached(monkeypatch, tmp_path) -> None:
    """get_sync_session reuses one engine and session factory."""
    engine = database.build_engine(f"sqlite:///{tmp_path / 'cached.db'}")
    monkeypatch.setattr(database, "_sync_engine", engine)
    monkeypatch.setattr(database, "_sync_session_factory", None)

    first = database.get_sync_session()
    second = database.get_sync_session()
    try:
        assert first is not second
        assert first.get_bind() is engine
        assert second.get_bind() is engine
    finally:
        first.close()
        second.close()
        engine.dispose()


def test_check_connection_reports_status(monkeypatch, tmp_path) -> None:
    """check_connection returns True for a reachable database and False otherwise."""
    engine = database.build_engine(f"sqlite:///{tmp_path / 'ok.db'}")
    monkeypatch.setattr(database, "_sync_engine", engine)
    assert database.check_connection() is True
    engine.dispose()

    broken = database.build_engine(f"sqlite:///{tmp_path / 'missing' / 'nope.db'}")
    monkeypatch.setattr(database, "_sync_engine", broken)
    assert database.check_connection() is False
