"""Async executor - ThreadPool-backed non-blocking calls.

Manifesto:
    The host runs its own logic on one thread that must never wait on the
    database. ``AsyncExecutor`` moves every ``StatementExecutor`` call onto
    a bounded ``ThreadPoolExecutor`` and hands back a ``PendingOperation``.
    It wraps the synchronous executor; it never re-implements execution.

ARCHITECTURE
────────────
::

    AsyncExecutor(executor, max_workers=4)
      ├── .submit(fn, *args)                    ─ any callable on a worker
      ├── .execute_query_async(sql, *params)    ─ PendingOperation[ResultCursor]
      ├── .execute_update_async(sql, *params)   ─ PendingOperation[int]
      ├── .execute_batch_async(statements)      ─ PendingOperation[list[int]]
      ├── .query_async(sql, mapper, *params)    ─ PendingOperation[T]
      ├── .execute_query_async_with_consumer()  ─ PendingOperation[int]
      └── .shutdown(wait, cancel_pending)       ─ drain pool

No ordering guarantee exists between submitted operations. Chain with
``PendingOperation.then()`` when one must follow another.

Tags:
    relstore, async, executor, thread-pool

Doc-Types:
    api-reference
"""

from __future__ import annotations

import functools
import threading
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor
from typing import Any, TypeVar

from relstore.binding import Statement, as_statements
from relstore.cursor import ResultCursor, Row
from relstore.executor import StatementExecutor
from relstore.logging import get_logger
from relstore.operations import OperationState, PendingOperation

logger = get_logger(__name__)

T = TypeVar("T")


class AsyncExecutor:
    """ThreadPoolExecutor-based wrapper around a ``StatementExecutor``.

    Example:
        >>> with AsyncExecutor(StatementExecutor(provider), max_workers=4) as async_exec:
        ...     op = async_exec.execute_update_async("UPDATE points SET amount = amount + ? WHERE player = ?", 5, "steve")
        ...     op.result(timeout=5.0)
        1
    """

    def __init__(
        self,
        executor: StatementExecutor,
        max_workers: int = 4,
        thread_name_prefix: str = "relstore-db",
    ):
        """Initialize with worker pool.

        Args:
            executor: Synchronous executor every call is delegated to
            max_workers: ThreadPool size (default: 4)
            thread_name_prefix: Worker thread name prefix
        """
        if max_workers < 1:
            raise ValueError(f"max_workers must be positive, got {max_workers}")
        self._executor = executor
        self._max_workers = max_workers
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix=thread_name_prefix)
        self._pending: set[PendingOperation] = set()
        self._lock = threading.Lock()
        self._shutdown = False

    @property
    def executor(self) -> StatementExecutor:
        return self._executor

    @property
    def max_workers(self) -> int:
        return self._max_workers

    @property
    def pending_count(self) -> int:
        """Operations submitted and not yet finished."""
        with self._lock:
            return len(self._pending)

    # ── Submission ───────────────────────────────────────────────

    def _dispatch(self, op: PendingOperation[T], fn: Callable[[], T]) -> PendingOperation[T]:
        with self._lock:
            if self._shutdown:
                raise RuntimeError("AsyncExecutor has been shut down")
            self._pending.add(op)
            future = self._pool.submit(op._run, fn)
        op._attach(future)
        op.add_done_callback(self._forget)
        return op

    def _forget(self, op: PendingOperation) -> None:
        with self._lock:
            self._pending.discard(op)

    def submit(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> PendingOperation[T]:
        """Run ``fn(*args, **kwargs)`` on a worker thread.

        Raises:
            RuntimeError: the executor has been shut down
        """
        name = getattr(fn, "__name__", "operation")
        return self._dispatch(PendingOperation(name=name), functools.partial(fn, *args, **kwargs))

    def execute_query_async(self, statement: Statement | str, *params: Any) -> PendingOperation[ResultCursor]:
        """Async ``execute_query``. The caller closes the resulting cursor."""
        return self.submit(self._executor.execute_query, statement, *params)

    def execute_update_async(self, statement: Statement | str, *params: Any) -> PendingOperation[int]:
        return self.submit(self._executor.execute_update, statement, *params)

    def execute_update_returning_key_async(
        self, statement: Statement | str, *params: Any
    ) -> PendingOperation[int | None]:
        return self.submit(self._executor.execute_update_returning_key, statement, *params)

    def execute_batch_async(self, statements: Iterable[Statement | str]) -> PendingOperation[list[int]]:
        # Materialised on the caller's thread; generators are not shared with workers.
        return self.submit(self._executor.execute_batch, as_statements(statements))

    def query_async(
        self,
        statement: Statement | str,
        mapper: Callable[[ResultCursor], T],
        *params: Any,
    ) -> PendingOperation[T]:
        """Async ``query``. ``mapper`` runs on the worker thread."""
        return self.submit(self._executor.query, statement, mapper, *params)

    def execute_query_async_with_consumer(
        self,
        statement: Statement | str,
        consumer: Callable[[Row], Any],
        *params: Any,
    ) -> PendingOperation[int]:
        """Async streaming read. ``consumer`` runs on the worker thread; cancel stops it between rows."""
        op: PendingOperation[int] = PendingOperation(name="execute_query_with_consumer")
        fn = functools.partial(
            self._executor.execute_query_with_consumer,
            statement,
            consumer,
            *params,
            should_stop=lambda: op.cancel_requested,
        )
        return self._dispatch(op, fn)

    # ── Lifecycle ────────────────────────────────────────────────

    def shutdown(self, wait: bool = True, cancel_pending: bool = False) -> None:
        """Shutdown thread pool.

        Args:
            wait: If True, wait for running work to complete
            cancel_pending: If True, cancel operations that have not started
        """
        with self._lock:
            if self._shutdown:
                return
            self._shutdown = True
            pending = list(self._pending)
        cancelled = 0
        if cancel_pending:
            for op in pending:
                if op.state is OperationState.PENDING and op.cancel():
                    cancelled += 1
        self._pool.shutdown(wait=wait)
        logger.info("async_executor_shutdown", cancelled=cancelled, waited=wait)

    def __enter__(self) -> AsyncExecutor:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.shutdown(wait=True)


__all__ = [
    "AsyncExecutor",
]
