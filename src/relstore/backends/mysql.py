"""MariaDB / MySQL driver for the two networked backends.

Uses ``mysql.connector`` from the ``mysql-connector-python`` package, which
speaks the MySQL wire protocol shared by MariaDB and MySQL. The driver uses
**format** (``%s``) placeholders, so ``?`` is rewritten before execution.

The driver module is imported at ``open()`` time: if it is missing a
:class:`~relstore.errors.DatabaseConnectionError` explains how to install it.
"""

from __future__ import annotations

from typing import Any

from relstore.errors import DatabaseConnectionError, redact_literals

from .base import Driver

# Client error codes meaning the server connection is gone:
# 2006 server has gone away, 2013 lost connection during query,
# 2055 lost connection at system error.
_DISCONNECT_ERRNOS = frozenset({2006, 2013, 2055})

# Server refusals worth retrying: 1040 too many connections,
# 1203 user has exceeded max_user_connections. Other server codes (access
# denied, unknown database) are permanent; client codes (2xxx) mean the
# endpoint could not be reached.
_TRANSIENT_SERVER_ERRNOS = frozenset({1040, 1203})


def _connector() -> Any:
    try:
        import mysql.connector
    except ImportError:
        raise DatabaseConnectionError(
            "mysql-connector-python is required for MariaDB/MySQL. "
            "Install with: pip install mysql-connector-python",
            retryable=False,
        ) from None
    return mysql.connector


def _is_transient(error: BaseException) -> bool:
    # mysql.connector reports -1 when no code is known.
    errno = getattr(error, "errno", None)
    if errno is None or errno < 1000:
        return True
    return errno >= 2000 or errno in _TRANSIENT_SERVER_ERRNOS


class MySQLDriver(Driver):
    """MariaDB / MySQL driver.

    Connections run in autocommit mode; batches use ``start_transaction()``
    when the backend is configured for atomic batches.
    """

    placeholder = "%s"

    @property
    def error_types(self) -> tuple[type[BaseException], ...]:
        return (_connector().Error,)

    def open(self) -> Any:
        """Open one MariaDB/MySQL connection."""
        connector = _connector()
        creds = self.settings.credentials()
        try:
            return connector.connect(
                host=creds.host,
                port=creds.port,
                database=creds.database,
                user=creds.username,
                password=creds.password,
                connection_timeout=int(self.settings.connect_timeout),
                autocommit=True,
                consume_results=True,
                charset="utf8mb4",
            )
        except connector.Error as e:
            raise DatabaseConnectionError(
                f"Failed to connect to {self.descriptor.engine} at {creds.host}:{creds.port}: "
                f"{redact_literals(str(e))}",
                retryable=_is_transient(e),
                cause=e,
            ).with_context(backend=self.kind.value) from e

    def ping(self, raw: Any) -> bool:
        try:
            return bool(raw.is_connected())
        except self.error_types:
            return False

    def adapt(self, value: Any) -> Any:
        if isinstance(value, bool):
            return int(value)
        if isinstance(value, bytearray):
            return bytes(value)
        return value

    def begin(self, raw: Any) -> None:
        raw.start_transaction()

    def is_disconnect(self, error: BaseException) -> bool:
        errors = _connector().errors
        if isinstance(error, errors.InterfaceError):
            return True
        return getattr(error, "errno", None) in _DISCONNECT_ERRNOS

    def is_integrity_error(self, error: BaseException) -> bool:
        return isinstance(error, _connector().errors.IntegrityError)


__all__ = [
    "MySQLDriver",
]
