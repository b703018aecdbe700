"""Tests for ``relstore.database`` - the facade and factory."""

from __future__ import annotations

from pathlib import Path

import pytest

from relstore.backends.types import BackendKind
from relstore.database import Database, create_database
from relstore.errors import ConfigError, DatabaseConnectionError
from relstore.settings import StoreSettings


class TestCreateDatabase:
    def test_from_mapping(self, tmp_path: Path):
        db = create_database({"backend": "sqlite", "file_path": str(tmp_path / "a" / "b.db")})
        try:
            assert db.is_connected
            assert db.kind is BackendKind.EMBEDDED_FILE
            assert (tmp_path / "a" / "b.db").exists()
        finally:
            db.disconnect()

    def test_overrides(self):
        db = create_database(StoreSettings(backend="sqlite"), connect=False, backend="memory")
        assert db.kind is BackendKind.EMBEDDED_MEMORY
        assert db.is_connected is False

    def test_from_environment(self, monkeypatch):
        monkeypatch.setenv("RELSTORE_BACKEND", "memory")
        db = create_database(connect=False)
        assert db.kind is BackendKind.EMBEDDED_MEMORY

    def test_invalid_configuration(self):
        with pytest.raises(ConfigError) as exc_info:
            create_database({"backend": "mariadb"})
        assert exc_info.value.retryable is False

    def test_connect_failure_is_retryable(self, tmp_path: Path):
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        with pytest.raises(DatabaseConnectionError) as exc_info:
            create_database({"backend": "sqlite", "file_path": str(blocker / "x.db"), "reconnect_attempts": 0})
        assert exc_info.value.retryable is True


class TestDatabase:
    def test_context_manager(self, memory_settings):
        with Database(memory_settings) as db:
            assert db.is_connected
            db.execute_update("CREATE TABLE t (id INTEGER)")
        assert db.is_connected is False

    def test_instances_are_independent(self, tmp_path: Path):
        first = create_database({"backend": "sqlite", "file_path": str(tmp_path / "one.db")})
        second = create_database({"backend": "sqlite", "file_path": str(tmp_path / "two.db")})
        try:
            first.execute_update("CREATE TABLE t (id INTEGER)")
            second.execute_update("CREATE TABLE t (id INTEGER)")
            first.execute_update("INSERT INTO t VALUES (1)")
            assert second.query("SELECT COUNT(*) FROM t", lambda c: c.scalar()) == 0
        finally:
            first.disconnect()
            second.disconnect()

    def test_data_survives_reconnect_for_file(self, file_db):
        file_db.execute_update("CREATE TABLE t (id INTEGER)")
        file_db.execute_update("INSERT INTO t VALUES (?)", 1)
        file_db.disconnect()
        file_db.connect()
        assert file_db.query("SELECT COUNT(*) FROM t", lambda c: c.scalar()) == 1

    def test_disconnect_stops_async_executor(self, file_db):
        executor = file_db.async_executor
        assert file_db.async_executor is executor
        file_db.disconnect()
        with pytest.raises(RuntimeError):
            executor.submit(lambda: 1)
        file_db.connect()
        assert file_db.async_executor is not executor
        assert file_db.submit(lambda: "ok").result(timeout=5.0) == "ok"

    def test_async_workers_from_settings(self):
        db = create_database({"backend": "memory", "async_workers": 3})
        try:
            assert db.async_executor.max_workers == 3
        finally:
            db.disconnect()

    def test_repr_redacts(self):
        db = Database(
            StoreSettings(backend="mariadb", host="db", database="suite", username="u", password="pw")
        )
        assert "pw" not in repr(db)
        assert db.is_connected is False
