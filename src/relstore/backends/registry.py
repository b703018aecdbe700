"""Backend kind -> driver table.

The table is closed: every ``BackendKind`` has exactly one driver class and
there is no runtime registration. Consumers never instantiate drivers
directly; they call ``driver_for(settings)`` (or let ``Database`` do it).
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from .base import Driver
from .mysql import MySQLDriver
from .sqlite import SQLiteDriver
from .types import BackendKind

if TYPE_CHECKING:
    from relstore.settings import StoreSettings

DRIVERS: dict[BackendKind, type[Driver]] = {
    BackendKind.EMBEDDED_FILE: SQLiteDriver,
    BackendKind.EMBEDDED_MEMORY: SQLiteDriver,
    BackendKind.NETWORKED_PRIMARY: MySQLDriver,
    BackendKind.NETWORKED_COMPATIBLE: MySQLDriver,
}


def driver_for(settings: StoreSettings) -> Driver:
    """
    Create the driver for a configured backend.

    Usage:
        driver = driver_for(StoreSettings(backend="sqlite", file_path="data.db"))
    """
    return DRIVERS[settings.backend](settings)


__all__ = [
    "DRIVERS",
    "driver_for",
]
