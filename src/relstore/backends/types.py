"""Backend kinds and their static descriptors."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class BackendKind(str, Enum):
    """Supported backend kinds. Closed set: adding one means adding a descriptor and a driver."""

    EMBEDDED_FILE = "embedded_file"
    EMBEDDED_MEMORY = "embedded_memory"
    NETWORKED_PRIMARY = "networked_primary"
    NETWORKED_COMPATIBLE = "networked_compatible"


@dataclass(frozen=True)
class BackendDescriptor:
    """
    Static metadata for one backend kind.

    ``atomic_batches`` is the default batch mode: True means a failing
    statement rolls the whole batch back, False means statements already
    applied stay applied.
    """

    kind: BackendKind
    driver_id: str
    url_prefix: str
    is_embedded: bool
    engine: str
    atomic_batches: bool
    default_port: int | None = None

    @property
    def is_networked(self) -> bool:
        return not self.is_embedded


_DESCRIPTORS: dict[BackendKind, BackendDescriptor] = {
    BackendKind.EMBEDDED_FILE: BackendDescriptor(
        kind=BackendKind.EMBEDDED_FILE,
        driver_id="sqlite3",
        url_prefix="sqlite:///",
        is_embedded=True,
        engine="sqlite",
        atomic_batches=True,
    ),
    BackendKind.EMBEDDED_MEMORY: BackendDescriptor(
        kind=BackendKind.EMBEDDED_MEMORY,
        driver_id="sqlite3",
        url_prefix="sqlite://:memory:",
        is_embedded=True,
        engine="sqlite",
        atomic_batches=True,
    ),
    BackendKind.NETWORKED_PRIMARY: BackendDescriptor(
        kind=BackendKind.NETWORKED_PRIMARY,
        driver_id="mysql.connector",
        url_prefix="mariadb://",
        is_embedded=False,
        engine="mariadb",
        atomic_batches=True,
        default_port=3306,
    ),
    BackendKind.NETWORKED_COMPATIBLE: BackendDescriptor(
        kind=BackendKind.NETWORKED_COMPATIBLE,
        driver_id="mysql.connector",
        url_prefix="mysql://",
        is_embedded=False,
        engine="mysql",
        atomic_batches=False,
        default_port=3306,
    ),
}

# Spellings accepted from configuration files, including the engine names
# used by older deployments.
KIND_ALIASES: dict[str, BackendKind] = {
    "sqlite": BackendKind.EMBEDDED_FILE,
    "h2": BackendKind.EMBEDDED_FILE,
    "file": BackendKind.EMBEDDED_FILE,
    "memory": BackendKind.EMBEDDED_MEMORY,
    ":memory:": BackendKind.EMBEDDED_MEMORY,
    "mariadb": BackendKind.NETWORKED_PRIMARY,
    "mysql": BackendKind.NETWORKED_COMPATIBLE,
}


def resolve(kind: BackendKind | str) -> BackendDescriptor:
    """
    Return the descriptor for a backend kind.

    Total over ``BackendKind``. A string that is not a kind value raises
    ``ValueError``; that is a programming error, not a runtime condition.
    """
    return _DESCRIPTORS[BackendKind(kind)]


def parse_kind(value: BackendKind | str) -> BackendKind:
    """Parse a kind from its value or a configuration alias (case-insensitive)."""
    if isinstance(value, BackendKind):
        return value
    key = value.strip().lower()
    if key in KIND_ALIASES:
        return KIND_ALIASES[key]
    return BackendKind(key)


__all__ = [
    "BackendKind",
    "BackendDescriptor",
    "KIND_ALIASES",
    "resolve",
    "parse_kind",
]
