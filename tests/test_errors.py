"""Tests for ``relstore.errors`` - typed error hierarchy."""

from __future__ import annotations

import concurrent.futures

import pytest

from relstore.errors import (
    BatchError,
    BindingError,
    CancelledError,
    ConfigError,
    DatabaseConnectionError,
    ErrorCategory,
    ErrorContext,
    ExecutionError,
    IntegrityError,
    PoolExhaustedError,
    QueryError,
    StoreError,
    describe_cause,
    is_retryable,
    redact_literals,
    statement_context,
)


class TestErrorContext:
    def test_to_dict_skips_unset_fields(self):
        ctx = ErrorContext(statement="SELECT 1", param_count=0)
        assert ctx.to_dict() == {"statement": "SELECT 1", "param_count": 0}

    def test_metadata_is_merged(self):
        ctx = statement_context("SELECT ?", 1, backend="embedded_file", position=1)
        assert ctx.to_dict() == {
            "backend": "embedded_file",
            "statement": "SELECT ?",
            "param_count": 1,
            "position": 1,
        }


class TestStoreError:
    def test_defaults(self):
        err = StoreError("boom")
        assert err.category == ErrorCategory.INTERNAL
        assert err.retryable is False
        assert err.cause is None
        assert str(err) == "boom"

    def test_cause_is_chained(self):
        original = ValueError("driver said no")
        err = ExecutionError("rejected", cause=original)
        assert err.cause is original
        assert err.__cause__ is original

    def test_with_context_sets_known_fields_and_metadata(self):
        err = ExecutionError("failed").with_context(backend="embedded_memory", table="points")
        assert err.context.backend == "embedded_memory"
        assert err.context.metadata == {"table": "points"}

    def test_to_dict(self):
        err = BindingError(
            "mismatch",
            expected=2,
            given=1,
            context=statement_context("SELECT ? + ?", 1),
            cause=TypeError("x"),
        )
        d = err.to_dict()
        assert d["error_type"] == "BindingError"
        assert d["category"] == "VALIDATION"
        assert d["retryable"] is False
        assert d["context"]["statement"] == "SELECT ? + ?"
        assert d["cause"] == "TypeError: x"

    def test_statement_properties(self):
        err = ExecutionError("x", context=statement_context("DELETE FROM t", 0))
        assert err.statement == "DELETE FROM t"
        assert err.param_count == 0

    def test_overrides(self):
        err = ExecutionError("x", retryable=True, category=ErrorCategory.UNKNOWN)
        assert err.retryable is True
        assert err.category == ErrorCategory.UNKNOWN


class TestHierarchy:
    @pytest.mark.parametrize(
        "cls, category, retryable",
        [
            (ConfigError, ErrorCategory.CONFIG, False),
            (DatabaseConnectionError, ErrorCategory.DATABASE, True),
            (BindingError, ErrorCategory.VALIDATION, False),
            (ExecutionError, ErrorCategory.DATABASE, False),
            (IntegrityError, ErrorCategory.DATABASE, False),
            (QueryError, ErrorCategory.DATABASE, False),
            (CancelledError, ErrorCategory.INTERNAL, False),
        ],
    )
    def test_defaults(self, cls, category, retryable):
        err = cls("x")
        assert isinstance(err, StoreError)
        assert err.category == category
        assert err.retryable is retryable

    def test_pool_exhausted_carries_limits(self):
        err = PoolExhaustedError("busy", timeout=1.5, pool_size=4)
        assert err.retryable is True
        assert err.timeout == 1.5
        assert err.pool_size == 4
        assert err.context.metadata == {"lease_timeout": 1.5, "pool_size": 4}

    def test_batch_error(self):
        err = BatchError("failed", index=1, applied=[1], atomic=False)
        assert isinstance(err, ExecutionError)
        assert err.index == 1
        assert err.applied == [1]
        assert err.atomic is False
        assert err.context.batch_index == 1

    def test_cancelled_is_a_futures_cancelled_error(self):
        with pytest.raises(concurrent.futures.CancelledError):
            raise CancelledError("cancelled")


class TestIsRetryable:
    def test_store_errors(self):
        assert is_retryable(DatabaseConnectionError("down")) is True
        assert is_retryable(ExecutionError("bad sql")) is False

    def test_foreign_errors(self):
        assert is_retryable(OSError("nope")) is False


class TestRedaction:
    def test_duplicate_entry_value_dropped(self):
        text = "1062 (23000): Duplicate entry 'hunter2-secret' for key 'PRIMARY'"
        assert redact_literals(text) == "1062 (23000): Duplicate entry '?'"

    def test_unterminated_quote(self):
        assert redact_literals("Incorrect integer value: 'abc") == "Incorrect integer value: '?'"

    def test_text_without_quotes_is_kept(self):
        assert redact_literals("no such table: t") == "no such table: t"

    def test_describe_cause(self):
        assert describe_cause(ValueError("Data too long for 'x'")) == "ValueError: Data too long for '?'"

    def test_to_dict_cause_is_redacted(self):
        err = IntegrityError("rejected", cause=ValueError("Duplicate entry 'alice@example.com' for key 'email'"))
        assert "alice@example.com" not in str(err.to_dict())
