"""Backend driver base class.

Manifesto:
    Everything that differs between engines (opening a physical
    connection, placeholder style, value adaptation, transaction control,
    classifying driver exceptions) lives behind this class.  The provider
    and executor only ever talk to a ``Driver``, so the execution logic is
    written once for all four backend kinds.

Features:
    - Abstract ``open()`` returning a raw DB-API connection
    - ``prepare()`` binds and translates a ``Statement`` for the driver
    - Transaction hooks: ``begin()``, ``commit()``, ``rollback()``
    - Exception classification: ``is_disconnect()``, ``is_integrity_error()``

Tags:
    relstore, database, abstract-base, driver

Doc-Types:
    api-reference
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

from relstore.binding import Statement, translate_placeholders
from relstore.errors import ExecutionError, IntegrityError, describe_cause, statement_context

from .types import BackendDescriptor, BackendKind

if TYPE_CHECKING:
    from relstore.settings import StoreSettings


class Driver(ABC):
    """
    Abstract native-driver glue for one backend kind.

    Drivers are stateless apart from their settings; they never pool or
    cache connections (that is the provider's job).
    """

    #: Native placeholder marker that ``?`` is rewritten to.
    placeholder: str = "?"

    def __init__(self, settings: StoreSettings):
        self._settings = settings
        self._descriptor = settings.descriptor

    @property
    def descriptor(self) -> BackendDescriptor:
        return self._descriptor

    @property
    def kind(self) -> BackendKind:
        return self._descriptor.kind

    @property
    def settings(self) -> StoreSettings:
        return self._settings

    @property
    def shares_connection(self) -> bool:
        """True when one process-lifetime connection is shared through a mutex."""
        return self._descriptor.is_embedded

    @property
    def atomic_batches(self) -> bool:
        return self._settings.atomic_batches

    @property
    @abstractmethod
    def error_types(self) -> tuple[type[BaseException], ...]:
        """Driver exception classes that mean "the backend rejected this"."""
        ...

    @abstractmethod
    def open(self) -> Any:
        """Open one physical connection. Raises ``DatabaseConnectionError``."""
        ...

    def close(self, raw: Any) -> None:
        raw.close()

    def cursor(self, raw: Any) -> Any:
        return raw.cursor()

    def ping(self, raw: Any) -> bool:
        """Cheap liveness check used for idle handles past the keepalive window."""
        try:
            cursor = raw.cursor()
            try:
                cursor.execute("SELECT 1")
                cursor.fetchall()
            finally:
                cursor.close()
            return True
        except self.error_types:
            return False

    def adapt(self, value: Any) -> Any:
        """Convert a non-None bound value into what the driver accepts."""
        return value

    def prepare(self, statement: Statement) -> tuple[str, tuple[Any, ...]]:
        """Bind ``statement`` and translate its placeholders for this driver."""
        params = statement.bind(self.adapt)
        return translate_placeholders(statement.sql, self.placeholder), params

    def begin(self, raw: Any) -> None:
        cursor = raw.cursor()
        try:
            cursor.execute("BEGIN")
        finally:
            cursor.close()

    def commit(self, raw: Any) -> None:
        raw.commit()

    def rollback(self, raw: Any) -> None:
        raw.rollback()

    def last_insert_id(self, cursor: Any) -> int | None:
        value = getattr(cursor, "lastrowid", None)
        return int(value) if value else None

    def is_disconnect(self, error: BaseException) -> bool:
        """Whether ``error`` means the physical connection is gone."""
        return False

    def is_integrity_error(self, error: BaseException) -> bool:
        return False

    def wrap_error(self, error: BaseException, statement: Statement) -> ExecutionError:
        """Turn a driver exception into ``ExecutionError`` without parameter values.

        Driver text is redacted: servers quote offending values into it.
        """
        error_cls = IntegrityError if self.is_integrity_error(error) else ExecutionError
        return error_cls(
            f"{self._descriptor.engine} rejected statement: {describe_cause(error)}",
            context=statement_context(statement.sql, statement.param_count, backend=self.kind.value),
            cause=error,
        )

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(kind={self.kind.value!r})"


__all__ = [
    "Driver",
]
