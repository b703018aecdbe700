"""
relstore - shared relational storage for plugin suites.

One contract over four interchangeable backends (embedded SQLite file,
embedded SQLite memory, networked MariaDB, networked MySQL), with
blocking and non-blocking calling conventions over a single execution
path and a connection pool that always gets its leases back.

Quick start::

    from relstore import create_database

    db = create_database({"backend": "sqlite", "file_path": "plugins/points.db"})
    with db.execute_query("SELECT player, amount FROM points WHERE amount > ?", 10) as cursor:
        for row in cursor:
            ...
"""

__version__ = "0.1.0"

from relstore.async_executor import AsyncExecutor
from relstore.backends import BackendDescriptor, BackendKind, resolve
from relstore.binding import Statement
from relstore.cursor import ResultCursor, Row
from relstore.database import Database, create_database
from relstore.errors import (
    BatchError,
    BindingError,
    CancelledError,
    ConfigError,
    DatabaseConnectionError,
    ExecutionError,
    IntegrityError,
    PoolExhaustedError,
    QueryError,
    StoreError,
)
from relstore.executor import StatementExecutor
from relstore.operations import OperationState, PendingOperation
from relstore.provider import ConnectionHandle, ConnectionProvider, PoolStats
from relstore.settings import StoreSettings

__all__ = [
    "__version__",
    # Facade
    "Database",
    "create_database",
    "StoreSettings",
    # Backends
    "BackendKind",
    "BackendDescriptor",
    "resolve",
    # Execution
    "Statement",
    "StatementExecutor",
    "AsyncExecutor",
    "PendingOperation",
    "OperationState",
    "ResultCursor",
    "Row",
    # Connections
    "ConnectionProvider",
    "ConnectionHandle",
    "PoolStats",
    # Errors
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
]
