"""
Structured error types for relstore.

Every failure raised by this layer is a ``StoreError`` carrying a category,
an explicit retry flag, structured context, and the chained driver
exception. Feature modules catch the narrow subclasses; alerting and logging
use ``to_dict()``.

Manifesto:
    - **Typed hierarchy:** one class per failure the caller can act on
    - **Explicit retry semantics:** connection and pool failures are
      retryable, binding and query failures are not
    - **No parameter values:** errors carry the statement text and the
      parameter count, never the bound values
    - **Error chaining:** the driver exception is kept as ``cause``

Architecture:
    ::

        StoreError
        ├── ConfigError                 (CONFIG)
        ├── DatabaseConnectionError     (DATABASE, retryable)
        ├── PoolExhaustedError          (DATABASE, retryable)
        ├── BindingError                (VALIDATION)
        ├── ExecutionError              (DATABASE)
        │   ├── IntegrityError
        │   └── BatchError
        ├── QueryError                  (DATABASE)
        └── CancelledError              (INTERNAL)

Guardrails:
    ❌ DON'T: put parameter values into messages or context
    ✅ DO: use ``statement_context()`` to build context from SQL text

    ❌ DON'T: retry inside this layer
    ✅ DO: let the caller decide using ``is_retryable()``

Tags:
    error-handling, exception-hierarchy, relstore, database

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import re
from concurrent import futures
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and routing."""

    DATABASE = "DATABASE"         # Connection, pool, statement failures
    VALIDATION = "VALIDATION"     # Parameter binding
    CONFIG = "CONFIG"             # Missing or invalid settings
    INTERNAL = "INTERNAL"         # Cancellation, unexpected state
    UNKNOWN = "UNKNOWN"


@dataclass
class ErrorContext:
    """
    Structured metadata attached to an error.

    Attributes:
        backend: Backend kind value (``"embedded_file"``, ...)
        statement: SQL text of the failing statement
        param_count: Number of parameters supplied
        batch_index: Position of the failing statement inside a batch
        metadata: Additional key-value pairs
    """

    backend: str | None = None
    statement: str | None = None
    param_count: int | None = None
    batch_index: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["backend", "statement", "param_count", "batch_index"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


# MariaDB/MySQL quote offending values into messages ("Duplicate entry '...'"),
# so everything from the first quote on is dropped.
_QUOTED_TAIL = re.compile(r"""['"`].*""", re.DOTALL)


def redact_literals(text: str) -> str:
    """Cut driver text at its first quoted literal."""
    return _QUOTED_TAIL.sub("'?'", text, count=1)


def describe_cause(error: BaseException) -> str:
    """``ErrorClass: message`` with quoted literals redacted, safe for logs."""
    return f"{type(error).__name__}: {redact_literals(str(error))}"


def statement_context(
    sql: str,
    param_count: int,
    *,
    backend: str | None = None,
    **metadata: Any,
) -> ErrorContext:
    """Build an ``ErrorContext`` for a statement without its parameter values."""
    return ErrorContext(backend=backend, statement=sql, param_count=param_count, metadata=dict(metadata))


class StoreError(Exception):
    """
    Base exception for all relstore errors.

    Subclasses set ``default_category`` and ``default_retryable``; callers may
    override either per instance.

    Examples:
        >>> err = ExecutionError("no such table: t", context=statement_context("SELECT * FROM t", 0))
        >>> err.retryable
        False
        >>> err.context.statement
        'SELECT * FROM t'
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    @property
    def statement(self) -> str | None:
        """SQL text of the failing statement, if any."""
        return self.context.statement

    @property
    def param_count(self) -> int | None:
        """Number of parameters supplied with the failing statement, if any."""
        return self.context.param_count

    def with_context(self, **kwargs: Any) -> StoreError:
        """
        Add context to this error (fluent API).

        Usage:
            raise ExecutionError("Failed").with_context(backend="embedded_file")
        """
        for key, value in kwargs.items():
            if key != "metadata" and hasattr(self.context, key):
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = describe_cause(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# CONFIGURATION
# =============================================================================


class ConfigError(StoreError):
    """Invalid or incomplete configuration. Never retryable."""

    default_category = ErrorCategory.CONFIG
    default_retryable = False


# =============================================================================
# CONNECTION & POOL
# =============================================================================


class DatabaseConnectionError(StoreError):
    """
    A physical connection could not be opened or the provider is not connected.

    Raised when the driver is not installed, the endpoint is unreachable, or
    the database file cannot be opened or created. Only failures that may
    clear on their own (unreachable endpoint, locked file, server connection
    limit) stay retryable.
    """

    default_category = ErrorCategory.DATABASE
    default_retryable = True


class PoolExhaustedError(StoreError):
    """No connection became available before the lease timeout expired."""

    default_category = ErrorCategory.DATABASE
    default_retryable = True

    def __init__(self, message: str, *, timeout: float, pool_size: int, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.timeout = timeout
        self.pool_size = pool_size
        self.context.metadata.setdefault("lease_timeout", timeout)
        self.context.metadata.setdefault("pool_size", pool_size)


# =============================================================================
# STATEMENTS
# =============================================================================


class BindingError(StoreError):
    """Parameters do not fit the statement. Raised before the backend is reached."""

    default_category = ErrorCategory.VALIDATION
    default_retryable = False

    def __init__(
        self,
        message: str,
        *,
        expected: int | None = None,
        given: int | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.expected = expected
        self.given = given


class ExecutionError(StoreError):
    """The backend rejected the statement."""

    default_category = ErrorCategory.DATABASE
    default_retryable = False


class IntegrityError(ExecutionError):
    """A constraint (primary key, unique, foreign key, not null) was violated."""


class BatchError(ExecutionError):
    """
    A statement inside a batch failed.

    Attributes:
        index: Zero-based position of the first failing statement
        applied: Affected-row counts of the statements that remain applied
            (always empty for atomic batches, which are rolled back)
        atomic: Whether the batch ran all-or-nothing
    """

    def __init__(
        self,
        message: str,
        *,
        index: int,
        applied: list[int] | None = None,
        atomic: bool,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.index = index
        self.applied = list(applied or [])
        self.atomic = atomic
        self.context.batch_index = index


class QueryError(StoreError):
    """A result mapper or row consumer failed, or a closed cursor was read."""

    default_category = ErrorCategory.DATABASE
    default_retryable = False


class CancelledError(StoreError, futures.CancelledError):
    """A pending operation was cancelled before it produced a result."""

    default_category = ErrorCategory.INTERNAL
    default_retryable = False


# =============================================================================
# HELPERS
# =============================================================================


def is_retryable(error: BaseException) -> bool:
    """Return True if the error is a ``StoreError`` marked retryable."""
    return isinstance(error, StoreError) and error.retryable


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "statement_context",
    "redact_literals",
    "describe_cause",
    "StoreError",
    "ConfigError",
    "DatabaseConnectionError",
    "PoolExhaustedError",
    "BindingError",
    "ExecutionError",
    "IntegrityError",
    "BatchError",
    "QueryError",
    "CancelledError",
    "is_retryable",
]
