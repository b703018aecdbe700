"""SQLite driver for the embedded file and embedded memory backends."""

from __future__ import annotations

import sqlite3
from datetime import date, datetime, time
from decimal import Decimal
from pathlib import Path
from typing import Any

from relstore.errors import DatabaseConnectionError

from .base import Driver
from .types import BackendKind


def _convert_datetime(raw: bytes) -> datetime:
    return datetime.fromisoformat(raw.decode())


def _convert_date(raw: bytes) -> date:
    return date.fromisoformat(raw.decode())


def _convert_time(raw: bytes) -> time:
    return time.fromisoformat(raw.decode())


# Converters replace sqlite3's deprecated defaults so columns declared
# TIMESTAMP/DATETIME/DATE/TIME read back as Python objects. The converter
# registry is process-wide; it only applies to connections opened with
# PARSE_DECLTYPES. Writes are adapted per driver in SQLiteDriver.adapt().
sqlite3.register_converter("TIMESTAMP", _convert_datetime)
sqlite3.register_converter("DATETIME", _convert_datetime)
sqlite3.register_converter("DATE", _convert_date)
sqlite3.register_converter("TIME", _convert_time)


def _is_locked(error: sqlite3.Error) -> bool:
    return isinstance(error, sqlite3.OperationalError) and "locked" in str(error).lower()


class SQLiteDriver(Driver):
    """
    SQLite driver.

    Uses the built-in sqlite3 module in autocommit mode
    (``isolation_level=None``); batches open explicit transactions.
    Suitable for:
    - Single-server deployments (file)
    - Tests and ephemeral state (memory)
    """

    placeholder = "?"

    @property
    def error_types(self) -> tuple[type[BaseException], ...]:
        return (sqlite3.Error,)

    def _target(self) -> tuple[str, bool]:
        if self.kind is BackendKind.EMBEDDED_MEMORY:
            name = self.settings.memory_name
            if name:
                return f"file:{name}?mode=memory&cache=shared", True
            return ":memory:", False

        path = Path(self.settings.file_path)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise DatabaseConnectionError(
                f"Cannot create directory for SQLite database {path}: {e}",
                retryable=False,
                cause=e,
            ).with_context(backend=self.kind.value) from e
        return str(path), False

    def open(self) -> Any:
        """Open a SQLite connection with foreign keys enabled."""
        target, uri = self._target()
        try:
            conn = sqlite3.connect(
                target,
                timeout=self.settings.connect_timeout,
                detect_types=sqlite3.PARSE_DECLTYPES,
                isolation_level=None,
                check_same_thread=False,
                uri=uri,
            )
            conn.execute("PRAGMA foreign_keys = ON")
            if self.kind is BackendKind.EMBEDDED_FILE:
                conn.execute("PRAGMA journal_mode = WAL")
                conn.execute("PRAGMA synchronous = NORMAL")
        except sqlite3.Error as e:
            raise DatabaseConnectionError(
                f"Failed to open SQLite database {target}: {e}",
                retryable=_is_locked(e),
                cause=e,
            ).with_context(backend=self.kind.value) from e
        return conn

    def adapt(self, value: Any) -> Any:
        if isinstance(value, datetime):
            return value.isoformat(" ")
        if isinstance(value, (date, time)):
            return value.isoformat()
        if isinstance(value, Decimal):
            return str(value)
        return value

    def begin(self, raw: Any) -> None:
        raw.execute("BEGIN")

    def is_disconnect(self, error: BaseException) -> bool:
        return isinstance(error, sqlite3.ProgrammingError) and "closed" in str(error).lower()

    def is_integrity_error(self, error: BaseException) -> bool:
        return isinstance(error, sqlite3.IntegrityError)


__all__ = [
    "SQLiteDriver",
]
