"""
Statement executor - the one synchronous execution path.

Every call binds its parameters first, then leases a connection from the
``ConnectionProvider``, runs the statement through the backend ``Driver``
and returns the connection on every exit path. The async layer calls these
same methods on worker threads; nothing here knows about threads.

Manifesto:
    Binding errors must never cost a round trip, and a failed statement must
    never leak a lease. Both properties live here once instead of at every
    call site in the feature modules.

Features:
    - ``execute_query()``: cursor that owns its lease
    - ``execute_update()`` / ``execute_update_returning_key()``
    - ``execute_batch()``: atomic or partial, per backend
    - ``query()``: scoped cursor + result mapper
    - ``execute_query_with_consumer()``: scoped cursor + per-row consumer

Guardrails:
    ❌ DON'T: call these from the host's designated thread
    ✅ DO: use ``AsyncExecutor`` there

    ❌ DON'T: format values into SQL text
    ✅ DO: pass them as positional parameters for ``?`` placeholders

Tags:
    relstore, executor, statement, batch, synchronous
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import Any, TypeVar

from relstore.backends.base import Driver
from relstore.binding import Statement
from relstore.cursor import ResultCursor, Row
from relstore.errors import (
    BatchError,
    BindingError,
    CancelledError,
    ExecutionError,
    QueryError,
    describe_cause,
    statement_context,
)
from relstore.logging import get_logger
from relstore.provider import ConnectionHandle, ConnectionProvider

logger = get_logger(__name__)

T = TypeVar("T")

Prepared = tuple[Statement, str, tuple[Any, ...]]


class StatementExecutor:
    """
    Synchronous statement execution over a ``ConnectionProvider``.

    Example:
        >>> executor = StatementExecutor(provider)
        >>> executor.execute_update("INSERT INTO points (player, amount) VALUES (?, ?)", "steve", 5)
        1
        >>> executor.query("SELECT amount FROM points WHERE player = ?", lambda c: c.scalar(), "steve")
        5
    """

    def __init__(self, provider: ConnectionProvider):
        self._provider = provider
        self._driver: Driver = provider.driver

    @property
    def provider(self) -> ConnectionProvider:
        return self._provider

    @property
    def driver(self) -> Driver:
        return self._driver

    # ── Internals ────────────────────────────────────────────────

    def _prepare(self, statement: Statement | str, params: tuple[Any, ...]) -> Prepared:
        stmt = Statement.of(statement, params)
        sql, bound = self._driver.prepare(stmt)
        return stmt, sql, bound

    @staticmethod
    def _run(cursor: Any, sql: str, bound: tuple[Any, ...]) -> None:
        if bound:
            cursor.execute(sql, bound)
        else:
            cursor.execute(sql)

    def _fail(self, error: BaseException, stmt: Statement, handle: ConnectionHandle) -> ExecutionError:
        """Classify a driver error, flag a lost connection, and log it."""
        if self._driver.is_disconnect(error):
            handle.mark_broken()
        wrapped = self._driver.wrap_error(error, stmt)
        logger.warning(
            "statement_failed",
            backend=self._driver.kind.value,
            statement=stmt.sql,
            param_count=stmt.param_count,
            error_type=type(wrapped).__name__,
            errno=getattr(error, "errno", None),
            error=describe_cause(error),
            connection_lost=handle.broken,
        )
        return wrapped

    # ── Statements ───────────────────────────────────────────────

    def execute_query(self, statement: Statement | str, *params: Any) -> ResultCursor:
        """
        Run a query and return a cursor over its rows.

        The cursor owns the lease; close it (or use ``with``) to return the
        connection.

        Raises:
            BindingError: parameters do not fit the statement
            DatabaseConnectionError / PoolExhaustedError: no connection
            ExecutionError: the backend rejected the statement
        """
        stmt, sql, bound = self._prepare(statement, params)
        handle = self._provider.acquire()
        try:
            raw_cursor = self._driver.cursor(handle.raw)
        except self._driver.error_types as e:
            error = self._fail(e, stmt, handle)
            self._provider.release(handle)
            raise error from e
        except BaseException:
            self._provider.release(handle)
            raise

        try:
            self._run(raw_cursor, sql, bound)
            return ResultCursor(stmt, raw_cursor, handle, self._driver, self._provider.release)
        except self._driver.error_types as e:
            error = self._fail(e, stmt, handle)
            self._discard(raw_cursor, handle)
            raise error from e
        except BaseException:
            self._discard(raw_cursor, handle)
            raise

    def _discard(self, raw_cursor: Any, handle: ConnectionHandle) -> None:
        try:
            raw_cursor.close()
        except self._driver.error_types as e:
            logger.debug("cursor_close_failed", backend=self._driver.kind.value, error=describe_cause(e))
        finally:
            self._provider.release(handle)

    def _update(self, statement: Statement | str, params: tuple[Any, ...], result: Callable[[Any], T]) -> T:
        stmt, sql, bound = self._prepare(statement, params)
        with self._provider.get_connection() as handle:
            try:
                cursor = self._driver.cursor(handle.raw)
            except self._driver.error_types as e:
                raise self._fail(e, stmt, handle) from e
            try:
                self._run(cursor, sql, bound)
                return result(cursor)
            except self._driver.error_types as e:
                raise self._fail(e, stmt, handle) from e
            finally:
                cursor.close()

    def execute_update(self, statement: Statement | str, *params: Any) -> int:
        """Run a data-changing statement and return the affected row count (0 for DDL)."""
        return self._update(statement, params, lambda cursor: max(cursor.rowcount, 0))

    def execute_update_returning_key(self, statement: Statement | str, *params: Any) -> int | None:
        """Run an INSERT and return the generated key, or None when none was generated."""
        return self._update(statement, params, self._driver.last_insert_id)

    def execute_batch(self, statements: Iterable[Statement | str]) -> list[int]:
        """
        Run statements in order on one connection and return their row counts.

        Every statement is bound before the first one reaches the backend.
        Atomic backends run the batch in one transaction and roll it back on
        the first failure; partial backends keep what was applied and stop.

        Raises:
            BindingError: a statement's parameters do not fit (context
                ``batch_index`` names it); nothing was executed
            BatchError: a statement failed; ``index`` and ``applied`` describe
                what happened
        """
        prepared: list[Prepared] = []
        for index, statement in enumerate(statements):
            try:
                prepared.append(self._prepare(statement, ()))
            except BindingError as e:
                e.context.batch_index = index
                raise
        if not prepared:
            return []

        atomic = self._driver.atomic_batches
        counts: list[int] = []
        with self._provider.get_connection() as handle:
            raw = handle.raw
            in_transaction = False
            try:
                if atomic:
                    try:
                        self._driver.begin(raw)
                    except self._driver.error_types as e:
                        raise self._fail(e, prepared[0][0], handle) from e
                    in_transaction = True
                cursor = self._driver.cursor(raw)
                try:
                    for index, (stmt, sql, bound) in enumerate(prepared):
                        try:
                            self._run(cursor, sql, bound)
                        except self._driver.error_types as e:
                            raise self._batch_failed(e, index, stmt, counts, atomic, handle) from e
                        counts.append(max(cursor.rowcount, 0))
                finally:
                    cursor.close()
                if atomic:
                    try:
                        self._driver.commit(raw)
                    except self._driver.error_types as e:
                        raise self._fail(e, prepared[-1][0], handle) from e
                    in_transaction = False
            finally:
                if in_transaction:
                    self._rollback(handle)
        return counts

    def _batch_failed(
        self,
        error: BaseException,
        index: int,
        stmt: Statement,
        counts: list[int],
        atomic: bool,
        handle: ConnectionHandle,
    ) -> BatchError:
        if self._driver.is_disconnect(error):
            handle.mark_broken()
        applied = [] if atomic else list(counts)
        logger.warning(
            "batch_failed",
            backend=self._driver.kind.value,
            index=index,
            statement=stmt.sql,
            param_count=stmt.param_count,
            applied=len(applied),
            atomic=atomic,
            error=describe_cause(error),
        )
        mode = "rolled back" if atomic else f"{len(applied)} statement(s) remain applied"
        return BatchError(
            f"Batch statement {index} failed ({mode}): {describe_cause(error)}",
            index=index,
            applied=applied,
            atomic=atomic,
            context=statement_context(stmt.sql, stmt.param_count, backend=self._driver.kind.value),
            cause=error,
        )

    def _rollback(self, handle: ConnectionHandle) -> None:
        try:
            self._driver.rollback(handle.raw)
        except self._driver.error_types as e:
            # The connection state is unknown after a failed rollback.
            handle.mark_broken()
            logger.warning("rollback_failed", backend=self._driver.kind.value, error=describe_cause(e))

    # ── Scoped reads ─────────────────────────────────────────────

    def query(self, statement: Statement | str, mapper: Callable[[ResultCursor], T], *params: Any) -> T:
        """
        Run a query, apply ``mapper`` to its cursor exactly once, and close it.

        Raises:
            QueryError: ``mapper`` raised; the cursor is closed regardless
        """
        with self.execute_query(statement, *params) as cursor:
            try:
                return mapper(cursor)
            except (ExecutionError, QueryError, CancelledError):
                raise
            except Exception as e:
                raise self._consumer_failed("Result mapper", e, cursor.statement) from e

    def execute_query_with_consumer(
        self,
        statement: Statement | str,
        consumer: Callable[[Row], Any],
        *params: Any,
        should_stop: Callable[[], bool] | None = None,
    ) -> int:
        """
        Run a query and hand each row to ``consumer`` in backend order.

        ``should_stop`` is checked between rows; when it returns True the
        cursor is closed and ``CancelledError`` is raised.

        Returns:
            Number of rows delivered to ``consumer``
        """
        delivered = 0
        with self.execute_query(statement, *params) as cursor:
            for row in cursor:
                if should_stop is not None and should_stop():
                    raise CancelledError(
                        f"Cancelled after {delivered} row(s)",
                        context=statement_context(
                            cursor.statement.sql, cursor.statement.param_count, backend=self._driver.kind.value
                        ),
                    )
                try:
                    consumer(row)
                except Exception as e:
                    raise self._consumer_failed("Row consumer", e, cursor.statement, row=delivered) from e
                delivered += 1
        return delivered

    def _consumer_failed(self, what: str, error: Exception, stmt: Statement, **metadata: Any) -> QueryError:
        logger.warning(
            "query_callback_failed",
            backend=self._driver.kind.value,
            callback=what,
            statement=stmt.sql,
            error_type=type(error).__name__,
        )
        return QueryError(
            f"{what} failed: {error}",
            context=statement_context(stmt.sql, stmt.param_count, backend=self._driver.kind.value, **metadata),
            cause=error,
        )


__all__ = [
    "StatementExecutor",
]
