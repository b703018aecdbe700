"""Result cursors and rows.

A ``ResultCursor`` is forward-only and owns the lease of the connection it
reads from. Closing it (explicitly, through ``with``, or by iterating to the
end inside ``StatementExecutor.query``) returns that connection to the
provider. Reading after close raises ``QueryError``.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator, Mapping, Sequence
from typing import TYPE_CHECKING, Any

from relstore.binding import Statement
from relstore.errors import QueryError, describe_cause, statement_context
from relstore.logging import get_logger

if TYPE_CHECKING:
    from relstore.backends.base import Driver
    from relstore.provider import ConnectionHandle

logger = get_logger(__name__)


class Row(Mapping[str, Any]):
    """
    One result row, addressable by column name or zero-based index.

    Example:
        >>> row = Row(("id", "name"), (1, "steve"))
        >>> row["name"], row[0]
        ('steve', 1)
    """

    __slots__ = ("_columns", "_values", "_index")

    def __init__(self, columns: Sequence[str], values: Sequence[Any], index: dict[str, int] | None = None):
        self._columns = tuple(columns)
        self._values = tuple(values)
        if index is None:
            index = {}
            for position, name in enumerate(self._columns):
                index.setdefault(name, position)
        self._index = index

    def __getitem__(self, key: str | int) -> Any:
        if isinstance(key, int):
            return self._values[key]
        try:
            return self._values[self._index[key]]
        except KeyError:
            raise KeyError(f"No column named {key!r}") from None

    def __iter__(self) -> Iterator[str]:
        return iter(self._index)

    def __len__(self) -> int:
        return len(self._index)

    @property
    def columns(self) -> tuple[str, ...]:
        return self._columns

    def as_tuple(self) -> tuple[Any, ...]:
        return self._values

    def as_dict(self) -> dict[str, Any]:
        return {name: self._values[position] for name, position in self._index.items()}

    def __repr__(self) -> str:
        return f"Row({self.as_dict()!r})"


class ResultCursor:
    """
    Forward-only sequence of ``Row`` objects bound to one leased connection.

    Usage:
        with db.execute_query("SELECT id, name FROM players WHERE points > ?", 10) as cursor:
            for row in cursor:
                print(row["name"])
    """

    def __init__(
        self,
        statement: Statement,
        raw_cursor: Any,
        handle: ConnectionHandle,
        driver: Driver,
        release: Callable[[ConnectionHandle], None],
    ):
        self._statement = statement
        self._raw = raw_cursor
        self._handle = handle
        self._driver = driver
        self._release = release
        self._closed = False
        description = raw_cursor.description or ()
        self._columns = tuple(column[0] for column in description)
        self._index: dict[str, int] = {}
        for position, name in enumerate(self._columns):
            self._index.setdefault(name, position)

    @property
    def statement(self) -> Statement:
        return self._statement

    @property
    def columns(self) -> tuple[str, ...]:
        return self._columns

    @property
    def closed(self) -> bool:
        return self._closed

    def _check_open(self) -> None:
        if self._closed:
            raise QueryError(
                "Cursor is closed",
                context=statement_context(
                    self._statement.sql, self._statement.param_count, backend=self._driver.kind.value
                ),
            )

    def _row(self, values: Sequence[Any]) -> Row:
        return Row(self._columns, values, self._index)

    def _fetch(self, fetch: Callable[[], Any]) -> Any:
        self._check_open()
        if not self._columns:
            return None
        try:
            return fetch()
        except self._driver.error_types as e:
            if self._driver.is_disconnect(e):
                self._handle.mark_broken()
            raise self._driver.wrap_error(e, self._statement) from e

    def fetchone(self) -> Row | None:
        values = self._fetch(self._raw.fetchone)
        return None if values is None else self._row(values)

    def fetchmany(self, size: int) -> list[Row]:
        batch = self._fetch(lambda: self._raw.fetchmany(size))
        return [self._row(values) for values in batch or ()]

    def fetchall(self) -> list[Row]:
        batch = self._fetch(self._raw.fetchall)
        return [self._row(values) for values in batch or ()]

    def scalar(self) -> Any:
        """First column of the first row, or None when there are no rows."""
        row = self.fetchone()
        return None if row is None else row[0]

    def __iter__(self) -> Iterator[Row]:
        while True:
            row = self.fetchone()
            if row is None:
                return
            yield row

    def close(self) -> None:
        """Close the driver cursor and return the lease. Idempotent."""
        if self._closed:
            return
        self._closed = True
        try:
            self._raw.close()
        except self._driver.error_types as e:
            if self._driver.is_disconnect(e):
                self._handle.mark_broken()
            logger.warning("cursor_close_failed", backend=self._driver.kind.value, error=describe_cause(e))
        finally:
            self._release(self._handle)

    def __enter__(self) -> ResultCursor:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"ResultCursor({self._statement.sql!r}, {state})"


__all__ = [
    "ResultCursor",
    "Row",
]
