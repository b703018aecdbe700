"""
Database facade - one configured relstore instance.

Feature modules receive a ``Database`` explicitly (there is no global
instance) and use it for both calling conventions::

    db = create_database({"backend": "sqlite", "file_path": "plugins/points.db"})
    db.execute_update("CREATE TABLE IF NOT EXISTS points (player TEXT PRIMARY KEY, amount INTEGER)")
    op = db.execute_update_async("INSERT INTO points VALUES (?, ?)", "steve", 10)
    op.then(lambda n: log.info("inserted", rows=n))

The synchronous methods block the calling thread; from the host's
designated thread use the ``*_async`` variants.

Tags:
    relstore, database, facade, factory
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterable, Mapping
from typing import Any, TypeVar

from pydantic import ValidationError

from relstore.async_executor import AsyncExecutor
from relstore.backends import Driver, driver_for
from relstore.backends.types import BackendDescriptor, BackendKind
from relstore.binding import Statement
from relstore.cursor import ResultCursor, Row
from relstore.errors import ConfigError
from relstore.executor import StatementExecutor
from relstore.logging import get_logger
from relstore.operations import PendingOperation
from relstore.provider import ConnectionProvider, PoolStats
from relstore.settings import StoreSettings

logger = get_logger(__name__)

T = TypeVar("T")


class Database:
    """
    Provider, synchronous executor and lazily started async executor for one
    configured backend.

    Example:
        >>> with Database(StoreSettings(backend="memory")) as db:
        ...     db.execute_update("CREATE TABLE t (id INTEGER)")
        ...     db.query("SELECT COUNT(*) FROM t", lambda c: c.scalar())
        0
        0
    """

    def __init__(self, settings: StoreSettings | None = None, *, driver: Driver | None = None):
        if settings is None:
            settings = driver.settings if driver is not None else StoreSettings()
        self._settings = settings
        self._driver = driver or driver_for(settings)
        self._provider = ConnectionProvider(self._driver)
        self._executor = StatementExecutor(self._provider)
        self._async: AsyncExecutor | None = None
        self._async_lock = threading.Lock()

    # ── Properties ───────────────────────────────────────────────

    @property
    def settings(self) -> StoreSettings:
        return self._settings

    @property
    def kind(self) -> BackendKind:
        return self._driver.kind

    @property
    def descriptor(self) -> BackendDescriptor:
        return self._driver.descriptor

    @property
    def provider(self) -> ConnectionProvider:
        return self._provider

    @property
    def executor(self) -> StatementExecutor:
        return self._executor

    @property
    def async_executor(self) -> AsyncExecutor:
        """Worker pool for the ``*_async`` calls, started on first use."""
        with self._async_lock:
            if self._async is None:
                self._async = AsyncExecutor(self._executor, max_workers=self._settings.async_workers)
            return self._async

    @property
    def is_connected(self) -> bool:
        return self._provider.is_connected

    # ── Lifecycle ────────────────────────────────────────────────

    def connect(self) -> Database:
        self._provider.connect()
        logger.info("database_connected", backend=self.kind.value, url=self._settings.url())
        return self

    def disconnect(self) -> None:
        """Stop the worker pool (cancelling queued work) and close all connections."""
        with self._async_lock:
            async_executor, self._async = self._async, None
        if async_executor is not None:
            async_executor.shutdown(wait=True, cancel_pending=True)
        self._provider.disconnect()

    def bind_host_thread(self, thread: threading.Thread | None = None) -> None:
        """Register the host's designated thread (default: the calling thread).

        Synchronous calls made from it afterwards are logged as warnings.
        """
        self._provider.bind_host_thread(thread or threading.current_thread())

    def stats(self) -> PoolStats:
        return self._provider.stats()

    def __enter__(self) -> Database:
        if not self.is_connected:
            self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.disconnect()

    def __repr__(self) -> str:
        return f"Database(url={self._settings.url()!r}, connected={self.is_connected})"

    # ── Synchronous calls ────────────────────────────────────────

    def execute_query(self, statement: Statement | str, *params: Any) -> ResultCursor:
        return self._executor.execute_query(statement, *params)

    def execute_update(self, statement: Statement | str, *params: Any) -> int:
        return self._executor.execute_update(statement, *params)

    def execute_update_returning_key(self, statement: Statement | str, *params: Any) -> int | None:
        return self._executor.execute_update_returning_key(statement, *params)

    def execute_batch(self, statements: Iterable[Statement | str]) -> list[int]:
        return self._executor.execute_batch(statements)

    def query(self, statement: Statement | str, mapper: Callable[[ResultCursor], T], *params: Any) -> T:
        return self._executor.query(statement, mapper, *params)

    def execute_query_with_consumer(
        self, statement: Statement | str, consumer: Callable[[Row], Any], *params: Any
    ) -> int:
        return self._executor.execute_query_with_consumer(statement, consumer, *params)

    # ── Asynchronous calls ───────────────────────────────────────

    def submit(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> PendingOperation[T]:
        return self.async_executor.submit(fn, *args, **kwargs)

    def execute_query_async(self, statement: Statement | str, *params: Any) -> PendingOperation[ResultCursor]:
        return self.async_executor.execute_query_async(statement, *params)

    def execute_update_async(self, statement: Statement | str, *params: Any) -> PendingOperation[int]:
        return self.async_executor.execute_update_async(statement, *params)

    def execute_update_returning_key_async(
        self, statement: Statement | str, *params: Any
    ) -> PendingOperation[int | None]:
        return self.async_executor.execute_update_returning_key_async(statement, *params)

    def execute_batch_async(self, statements: Iterable[Statement | str]) -> PendingOperation[list[int]]:
        return self.async_executor.execute_batch_async(statements)

    def query_async(
        self, statement: Statement | str, mapper: Callable[[ResultCursor], T], *params: Any
    ) -> PendingOperation[T]:
        return self.async_executor.query_async(statement, mapper, *params)

    def execute_query_async_with_consumer(
        self, statement: Statement | str, consumer: Callable[[Row], Any], *params: Any
    ) -> PendingOperation[int]:
        return self.async_executor.execute_query_async_with_consumer(statement, consumer, *params)


def create_database(
    settings: StoreSettings | Mapping[str, Any] | None = None,
    *,
    connect: bool = True,
    **overrides: Any,
) -> Database:
    """
    Build (and by default connect) a ``Database``.

    Args:
        settings: A ``StoreSettings``, a mapping of its fields, or None to
            read the environment
        connect: Open the provider before returning
        **overrides: Field values applied on top of ``settings``

    Raises:
        ConfigError: the configuration is invalid
        DatabaseConnectionError: ``connect`` was requested and failed
    """
    try:
        if isinstance(settings, StoreSettings):
            if overrides:
                settings = StoreSettings(**{**settings.model_dump(), **overrides})
        else:
            settings = StoreSettings(**{**dict(settings or {}), **overrides})
    except ValidationError as e:
        raise ConfigError(f"Invalid relstore configuration: {e}", cause=e) from e

    db = Database(settings)
    if connect:
        db.connect()
    return db


__all__ = [
    "Database",
    "create_database",
]
