"""Tests for ``relstore.backends.sqlite`` - SQLite driver."""

from __future__ import annotations

import sqlite3
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from unittest.mock import patch

import pytest

from relstore.backends.sqlite import SQLiteDriver
from relstore.binding import Statement
from relstore.errors import DatabaseConnectionError, ExecutionError, IntegrityError
from relstore.settings import StoreSettings


@pytest.fixture
def file_driver(tmp_path: Path) -> SQLiteDriver:
    return SQLiteDriver(StoreSettings(backend="sqlite", file_path=tmp_path / "nested" / "dir" / "x.db"))


class TestSQLiteDriverOpen:
    def test_creates_parent_directories(self, file_driver, tmp_path):
        conn = file_driver.open()
        try:
            assert (tmp_path / "nested" / "dir" / "x.db").exists()
        finally:
            conn.close()

    def test_foreign_keys_enabled(self, file_driver):
        conn = file_driver.open()
        try:
            assert conn.execute("PRAGMA foreign_keys").fetchone()[0] == 1
        finally:
            conn.close()

    def test_file_uses_wal(self, file_driver):
        conn = file_driver.open()
        try:
            assert conn.execute("PRAGMA journal_mode").fetchone()[0].lower() == "wal"
        finally:
            conn.close()

    def test_autocommit(self, file_driver):
        conn = file_driver.open()
        try:
            assert conn.isolation_level is None
        finally:
            conn.close()

    def test_named_memory_is_shared(self):
        driver = SQLiteDriver(StoreSettings(backend="memory", memory_name="shared_test"))
        first = driver.open()
        second = driver.open()
        try:
            first.execute("CREATE TABLE t (id INTEGER)")
            first.execute("INSERT INTO t VALUES (1)")
            assert second.execute("SELECT COUNT(*) FROM t").fetchone()[0] == 1
        finally:
            first.close()
            second.close()

    @patch("sqlite3.connect", side_effect=sqlite3.OperationalError("unable to open database"))
    def test_connect_failure_raises(self, mock_connect, file_driver):
        with pytest.raises(DatabaseConnectionError) as exc_info:
            file_driver.open()
        assert exc_info.value.context.backend == "embedded_file"
        assert exc_info.value.retryable is False

    @patch("sqlite3.connect", side_effect=sqlite3.OperationalError("database is locked"))
    def test_locked_database_is_retryable(self, mock_connect, file_driver):
        with pytest.raises(DatabaseConnectionError) as exc_info:
            file_driver.open()
        assert exc_info.value.retryable is True

    def test_unwritable_parent(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        driver = SQLiteDriver(StoreSettings(backend="sqlite", file_path=blocker / "x.db"))
        with pytest.raises(DatabaseConnectionError) as exc_info:
            driver.open()
        assert exc_info.value.retryable is False


class TestSQLiteDriverTypes:
    def test_timestamp_round_trip(self, file_driver):
        conn = file_driver.open()
        try:
            conn.execute("CREATE TABLE t (at TIMESTAMP, day DATE)")
            at = datetime(2024, 5, 17, 12, 30, 45, 123456)
            conn.execute("INSERT INTO t VALUES (?, ?)", (file_driver.adapt(at), file_driver.adapt(date(2024, 5, 17))))
            assert conn.execute("SELECT at, day FROM t").fetchone() == (at, date(2024, 5, 17))
        finally:
            conn.close()

    def test_adapt(self, file_driver):
        assert file_driver.adapt(datetime(2024, 1, 2, 3, 4, 5)) == "2024-01-02 03:04:05"
        assert file_driver.adapt(date(2024, 1, 2)) == "2024-01-02"
        assert file_driver.adapt(Decimal("2.50")) == "2.50"
        assert file_driver.adapt(7) == 7


class TestSQLiteDriverErrors:
    def test_error_classification(self, file_driver):
        assert file_driver.is_integrity_error(sqlite3.IntegrityError("UNIQUE constraint failed"))
        assert not file_driver.is_integrity_error(sqlite3.OperationalError("no such table"))
        assert file_driver.is_disconnect(sqlite3.ProgrammingError("Cannot operate on a closed database."))
        assert not file_driver.is_disconnect(sqlite3.OperationalError("syntax error"))

    def test_wrap_error(self, file_driver):
        stmt = Statement("INSERT INTO t VALUES (?)", ("secret",))
        wrapped = file_driver.wrap_error(sqlite3.IntegrityError("UNIQUE constraint failed: t.id"), stmt)
        assert isinstance(wrapped, IntegrityError)
        assert wrapped.statement == "INSERT INTO t VALUES (?)"
        assert wrapped.param_count == 1
        assert "secret" not in str(wrapped.to_dict())

        plain = file_driver.wrap_error(sqlite3.OperationalError("no such table: t"), stmt)
        assert type(plain) is ExecutionError

    def test_ping(self, file_driver):
        conn = file_driver.open()
        assert file_driver.ping(conn) is True
        conn.close()
        assert file_driver.ping(conn) is False
