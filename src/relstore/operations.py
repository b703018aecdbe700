"""Pending operations - handles for work running on the async executor.

State machine::

    PENDING ──► RUNNING ──► COMPLETED(value)
       │           └──────► FAILED(error)
       └──────► CANCELLED

Exactly one terminal transition happens per operation. Cancelling a
``RUNNING`` operation only records the request: streaming consumers stop
between rows, and whatever the operation eventually produces is discarded
(the operation ends ``FAILED`` with ``CancelledError``).
"""

from __future__ import annotations

import threading
import uuid
from collections.abc import Callable
from concurrent.futures import Future
from enum import Enum
from typing import Any, Generic, TypeVar

from relstore.errors import CancelledError
from relstore.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")
U = TypeVar("U")


class OperationState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (OperationState.COMPLETED, OperationState.FAILED, OperationState.CANCELLED)


class PendingOperation(Generic[T]):
    """
    Result handle for one asynchronous database call.

    Example:
        >>> op = db.execute_update_async("DELETE FROM keys WHERE expires < ?", now)
        >>> op.result(timeout=5.0)
        3
    """

    def __init__(self, name: str = "operation"):
        self.id = uuid.uuid4().hex[:8]
        self.name = name
        self._cond = threading.Condition()
        self._state = OperationState.PENDING
        self._value: T | None = None
        self._error: BaseException | None = None
        self._cancel_requested = False
        self._callbacks: list[Callable[[PendingOperation[T]], None]] = []
        self._future: Future | None = None

    # ── State ────────────────────────────────────────────────────

    @property
    def state(self) -> OperationState:
        return self._state

    @property
    def cancel_requested(self) -> bool:
        """True once ``cancel()`` was called on a running operation."""
        return self._cancel_requested

    def done(self) -> bool:
        return self._state.is_terminal

    def cancelled(self) -> bool:
        return self._state is OperationState.CANCELLED

    # ── Transitions (worker side) ────────────────────────────────

    def _attach(self, future: Future) -> None:
        self._future = future

    def _start(self) -> bool:
        with self._cond:
            if self._state is not OperationState.PENDING:
                return False
            self._state = OperationState.RUNNING
            return True

    def _run(self, fn: Callable[[], T]) -> None:
        """Run ``fn`` on the current thread unless the operation was cancelled first."""
        if not self._start():
            return
        try:
            value = fn()
        except Exception as e:
            self._fail(e)
        except BaseException as e:
            self._fail(e)
            raise
        else:
            self._complete(value)

    def _complete(self, value: T) -> None:
        discarded = False
        with self._cond:
            if self._state is not OperationState.RUNNING:
                return
            if self._cancel_requested:
                # Closed before waiters wake so a discarded cursor's lease is back.
                try:
                    self._close_discarded(value)
                finally:
                    self._state = OperationState.FAILED
                    self._error = CancelledError(f"Operation {self.name} [{self.id}] was cancelled while running")
                    self._cond.notify_all()
                discarded = True
            else:
                self._state = OperationState.COMPLETED
                self._value = value
                self._cond.notify_all()
        if discarded:
            logger.info("operation_cancelled", operation=self.id, name=self.name, running=True)
        self._fire_callbacks()

    def _fail(self, error: BaseException) -> None:
        with self._cond:
            if self._state is not OperationState.RUNNING:
                return
            self._state = OperationState.FAILED
            self._error = error
            self._cond.notify_all()
        if isinstance(error, CancelledError):
            logger.info("operation_cancelled", operation=self.id, name=self.name, running=True)
        else:
            logger.warning(
                "operation_failed",
                operation=self.id,
                name=self.name,
                error_type=type(error).__name__,
                error=str(error),
            )
        self._fire_callbacks()

    def _close_discarded(self, value: Any) -> None:
        close = getattr(value, "close", None)
        if callable(close):
            close()

    # ── Caller side ──────────────────────────────────────────────

    def cancel(self) -> bool:
        """
        Cancel the operation.

        A pending operation becomes ``CANCELLED`` and never runs. A running
        operation is flagged; its result will be discarded. Returns False
        when the operation had already finished.
        """
        with self._cond:
            if self._state is OperationState.PENDING:
                self._state = OperationState.CANCELLED
                self._error = CancelledError(f"Operation {self.name} [{self.id}] was cancelled")
                self._cond.notify_all()
            elif self._state is OperationState.RUNNING:
                self._cancel_requested = True
                return True
            else:
                return False
        if self._future is not None:
            self._future.cancel()
        logger.info("operation_cancelled", operation=self.id, name=self.name, running=False)
        self._fire_callbacks()
        return True

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the operation finishes. Returns False on timeout."""
        with self._cond:
            return self._cond.wait_for(self.done, timeout)

    def result(self, timeout: float | None = None) -> T:
        """
        Block for the value.

        Raises:
            TimeoutError: the operation did not finish within ``timeout``
            CancelledError: the operation was cancelled
            StoreError: whatever the operation failed with
        """
        if not self.wait(timeout):
            raise TimeoutError(f"Operation {self.name} [{self.id}] did not finish within {timeout}s")
        if self._error is not None:
            raise self._error
        return self._value  # type: ignore[return-value]

    def exception(self, timeout: float | None = None) -> BaseException | None:
        """Block for the error (``CancelledError`` when cancelled), or None on success."""
        if not self.wait(timeout):
            raise TimeoutError(f"Operation {self.name} [{self.id}] did not finish within {timeout}s")
        return self._error

    def add_done_callback(self, fn: Callable[[PendingOperation[T]], None]) -> None:
        """Call ``fn(self)`` once finished; immediately if already finished."""
        with self._cond:
            if not self.done():
                self._callbacks.append(fn)
                return
        self._invoke(fn)

    def then(self, fn: Callable[[T], U]) -> PendingOperation[U]:
        """
        Chain a continuation that receives this operation's value.

        The continuation runs on the thread that finishes this operation.
        Failure and cancellation propagate to the returned operation.
        """
        child: PendingOperation[U] = PendingOperation(name=f"{self.name}.then")

        def _continue(parent: PendingOperation[T]) -> None:
            if parent.cancelled():
                child.cancel()
            elif parent._error is not None:
                if child._start():
                    child._fail(parent._error)
            else:
                child._run(lambda: fn(parent._value))  # type: ignore[arg-type]

        self.add_done_callback(_continue)
        return child

    def _fire_callbacks(self) -> None:
        with self._cond:
            callbacks, self._callbacks = self._callbacks, []
        for fn in callbacks:
            self._invoke(fn)

    def _invoke(self, fn: Callable[[PendingOperation[T]], None]) -> None:
        try:
            fn(self)
        except Exception:
            logger.exception("operation_callback_failed", operation=self.id, name=self.name)

    def __repr__(self) -> str:
        return f"PendingOperation({self.name!r}, id={self.id}, state={self._state.value})"


__all__ = [
    "OperationState",
    "PendingOperation",
]
