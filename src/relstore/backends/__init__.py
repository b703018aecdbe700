"""Backends -- one contract over four relational engines.

Manifesto:
    Feature modules must run identically on an embedded SQLite file
    (single server), an in-memory SQLite database (tests), and a shared
    MariaDB/MySQL server (networked deployments).  Engine differences are
    isolated in a ``Driver`` so the provider and executor are written once.

    Each networked driver is **import-guarded**: ``mysql.connector`` is only
    required at ``open()`` time, not at import time.

Architecture::

    BackendKind / BackendDescriptor (types.py)   closed enum + static metadata
    Driver (base.py)                             abstract native-driver glue
        |-- SQLiteDriver                         embedded file / memory
        |-- MySQLDriver                          networked primary / compatible
    DRIVERS / driver_for (registry.py)           fixed kind -> driver table

Modules
-------
types       BackendKind enum, BackendDescriptor, resolve()
base        Abstract Driver base class
sqlite      SQLite driver (stdlib, always available)
mysql       MariaDB / MySQL driver (requires mysql-connector-python)
registry    Closed kind -> driver table and driver_for() factory

Guardrails:
    ❌ ``conn.execute("SELECT * FROM t WHERE id=" + user_input)``
    ✅ ``db.execute_query("SELECT * FROM t WHERE id=?", user_input)``
    ❌ ``SQLiteDriver(settings)`` in feature code
    ✅ ``create_database(settings)``

Tags:
    relstore, database, backends, multi-backend, import-guarded,
    sqlite, mariadb, mysql

Doc-Types:
    package-overview, architecture-map, module-index
"""

from .base import Driver
from .mysql import MySQLDriver
from .registry import DRIVERS, driver_for
from .sqlite import SQLiteDriver
from .types import KIND_ALIASES, BackendDescriptor, BackendKind, parse_kind, resolve

__all__ = [
    # Types
    "BackendKind",
    "BackendDescriptor",
    "KIND_ALIASES",
    "resolve",
    "parse_kind",
    # Base class
    "Driver",
    # Implementations
    "SQLiteDriver",
    "MySQLDriver",
    # Registry
    "DRIVERS",
    "driver_for",
]
