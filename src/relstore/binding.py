"""Statements and positional parameter binding.

All SQL handed to relstore uses ``?`` positional placeholders. A ``?`` inside
a quoted literal, a quoted identifier, or a comment is not a placeholder.
Drivers whose native paramstyle differs get the text rewritten by
``translate_placeholders()``; nothing else in the statement is touched.

Binding rules (left to right, position 1..N):

==================================  ====================================
Python value                        Backend value
==================================  ====================================
``None``                            NULL
``bool``, ``int``, ``float``,       numeric
``Decimal``
``str``                             text
``bytes``, ``bytearray``            blob
``datetime``, ``date``, ``time``    backend-native timestamp/date/time
==================================  ====================================

Anything else, or a count mismatch, raises ``BindingError`` before a
connection is leased.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from datetime import date, datetime, time
from decimal import Decimal
from functools import cached_property
from typing import Any

from relstore.errors import BindingError, statement_context

BINDABLE_TYPES: tuple[type, ...] = (
    bool,
    int,
    float,
    Decimal,
    str,
    bytes,
    bytearray,
    datetime,
    date,
    time,
)


def placeholder_positions(sql: str) -> list[int]:
    """Return the offsets of every ``?`` placeholder outside literals and comments."""
    positions: list[int] = []
    i = 0
    n = len(sql)
    while i < n:
        ch = sql[i]
        if ch in ("'", '"', "`"):
            # Quoted literal or identifier; a doubled quote is an escaped quote.
            i += 1
            while i < n:
                if sql[i] == "\\" and ch == "'":
                    i += 2
                    continue
                if sql[i] == ch:
                    if i + 1 < n and sql[i + 1] == ch:
                        i += 2
                        continue
                    break
                i += 1
        elif ch == "-" and sql.startswith("--", i):
            end = sql.find("\n", i)
            i = n if end == -1 else end
        elif ch == "/" and sql.startswith("/*", i):
            end = sql.find("*/", i + 2)
            i = n if end == -1 else end + 1
        elif ch == "?":
            positions.append(i)
        i += 1
    return positions


def translate_placeholders(sql: str, marker: str) -> str:
    """Rewrite every ``?`` placeholder to ``marker`` (e.g. ``%s``)."""
    if marker == "?":
        return sql
    parts: list[str] = []
    last = 0
    for pos in placeholder_positions(sql):
        parts.append(sql[last:pos])
        parts.append(marker)
        last = pos + 1
    parts.append(sql[last:])
    return "".join(parts)


@dataclass(frozen=True)
class Statement:
    """
    SQL text plus its ordered positional parameters.

    Example:
        >>> stmt = Statement("SELECT * FROM points WHERE player = ? AND amount > ?", ("steve", 10))
        >>> stmt.placeholder_count
        2
    """

    sql: str
    params: tuple[Any, ...] = ()

    @classmethod
    def of(cls, statement: Statement | str, params: Sequence[Any] = ()) -> Statement:
        """Coerce ``statement`` (and extra positional ``params``) into a Statement."""
        if isinstance(statement, Statement):
            if params:
                raise BindingError(
                    "Parameters given both in the Statement and as arguments",
                    context=statement_context(statement.sql, len(statement.params) + len(params)),
                )
            return statement
        if not isinstance(statement, str):
            raise TypeError(f"Expected SQL text or Statement, got {type(statement).__name__}")
        return cls(statement, tuple(params))

    @property
    def param_count(self) -> int:
        return len(self.params)

    @cached_property
    def placeholder_count(self) -> int:
        return len(placeholder_positions(self.sql))

    def bind(self, adapt: Callable[[Any], Any] | None = None) -> tuple[Any, ...]:
        """
        Validate the parameters and return them ready for the driver.

        Raises:
            BindingError: count mismatch or a value of an unsupported type
        """
        if self.placeholder_count != self.param_count:
            raise BindingError(
                f"Statement has {self.placeholder_count} placeholder(s) "
                f"but {self.param_count} parameter(s) were given",
                expected=self.placeholder_count,
                given=self.param_count,
                context=statement_context(self.sql, self.param_count),
            )
        bound = []
        for position, value in enumerate(self.params, start=1):
            if value is not None and not isinstance(value, BINDABLE_TYPES):
                raise BindingError(
                    f"Parameter {position} has unsupported type {type(value).__name__}",
                    expected=self.placeholder_count,
                    given=self.param_count,
                    context=statement_context(self.sql, self.param_count, position=position),
                )
            bound.append(adapt(value) if adapt is not None and value is not None else value)
        return tuple(bound)

    def __repr__(self) -> str:
        # Parameter values stay out of reprs, logs and tracebacks.
        return f"Statement({self.sql!r}, params=<{self.param_count}>)"


def as_statements(statements: Iterable[Statement | str]) -> list[Statement]:
    """Coerce a batch of SQL strings and Statements."""
    return [Statement.of(s) for s in statements]


__all__ = [
    "BINDABLE_TYPES",
    "Statement",
    "as_statements",
    "placeholder_positions",
    "translate_placeholders",
]
