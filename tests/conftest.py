"""
Shared pytest fixtures for relstore tests.

This module provides:
- Environment isolation (no RELSTORE_* variables or .env leak into tests)
- Connected embedded databases (file and memory)
- A pooled SQLite driver so pool behaviour can be tested without a server

Usage:
    def test_something(file_db):
        file_db.execute_update("CREATE TABLE t (id INTEGER)")
"""

from __future__ import annotations

import os
from collections.abc import Callable, Generator
from pathlib import Path

import pytest

from relstore.backends.sqlite import SQLiteDriver
from relstore.database import Database
from relstore.settings import StoreSettings


class PooledSQLiteDriver(SQLiteDriver):
    """SQLite file driver that pools connections like a networked backend."""

    shares_connection = False


# =============================================================================
# Isolation
# =============================================================================


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Drop RELSTORE_* variables and run from an empty directory (no .env)."""
    for key in list(os.environ):
        if key.startswith("RELSTORE_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)


# =============================================================================
# Settings & databases
# =============================================================================


@pytest.fixture
def file_settings(tmp_path: Path) -> StoreSettings:
    return StoreSettings(
        backend="sqlite",
        file_path=tmp_path / "data" / "store.db",
        pool_lease_timeout_ms=2_000,
    )


@pytest.fixture
def memory_settings() -> StoreSettings:
    return StoreSettings(backend="memory", pool_lease_timeout_ms=2_000)


@pytest.fixture
def file_db(file_settings: StoreSettings) -> Generator[Database, None, None]:
    db = Database(file_settings).connect()
    yield db
    db.disconnect()


@pytest.fixture
def memory_db(memory_settings: StoreSettings) -> Generator[Database, None, None]:
    db = Database(memory_settings).connect()
    yield db
    db.disconnect()


@pytest.fixture(params=["file", "memory"])
def embedded_db(request: pytest.FixtureRequest, tmp_path: Path) -> Generator[Database, None, None]:
    """Both embedded backend kinds."""
    if request.param == "file":
        settings = StoreSettings(backend="file", file_path=tmp_path / "rt.db")
    else:
        settings = StoreSettings(backend="memory")
    db = Database(settings).connect()
    yield db
    db.disconnect()


@pytest.fixture
def make_pooled_db(tmp_path: Path) -> Generator[Callable[..., Database], None, None]:
    """Factory for file databases behind a real pool (default: at most two connections)."""
    opened: list[Database] = []

    def _make(**overrides) -> Database:
        values = {
            "backend": "sqlite",
            "file_path": tmp_path / "pooled.db",
            "pool_min_size": 1,
            "pool_max_size": 2,
            "pool_lease_timeout_ms": 2_000,
            **overrides,
        }
        db = Database(driver=PooledSQLiteDriver(StoreSettings(**values))).connect()
        opened.append(db)
        return db

    yield _make
    for db in opened:
        db.disconnect()


@pytest.fixture
def pooled_db(make_pooled_db: Callable[..., Database]) -> Database:
    return make_pooled_db(async_workers=10)


@pytest.fixture
def points_db(file_db: Database) -> Database:
    """File database with a small ``points`` table."""
    file_db.execute_update(
        "CREATE TABLE points (player TEXT PRIMARY KEY, amount INTEGER NOT NULL, note TEXT)"
    )
    file_db.execute_batch(
        [
            "INSERT INTO points (player, amount) VALUES ('alex', 5)",
            "INSERT INTO points (player, amount) VALUES ('steve', 10)",
            "INSERT INTO points (player, amount) VALUES ('notch', 15)",
        ]
    )
    return file_db
