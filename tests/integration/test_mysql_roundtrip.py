"""Round trips against a live MariaDB/MySQL server.

Set ``RELSTORE_TEST_MYSQL_HOST`` (plus ``_PORT``, ``_DATABASE``, ``_USER``,
``_PASSWORD`` as needed) to run these.
"""

from __future__ import annotations

import os
import uuid
from datetime import datetime

import pytest

from relstore.database import create_database
from relstore.errors import BatchError

pytestmark = pytest.mark.integration

_ENV = {key: os.environ.get(f"RELSTORE_TEST_MYSQL_{key.upper()}") for key in ("host", "port", "database", "user", "password")}

if not _ENV["host"]:
    pytest.skip("RELSTORE_TEST_MYSQL_HOST not set", allow_module_level=True)


@pytest.fixture(params=["mariadb", "mysql"])
def networked_db(request):
    db = create_database(
        {
            "backend": request.param,
            "host": _ENV["host"],
            "port": int(_ENV["port"] or 3306),
            "database": _ENV["database"] or "relstore_test",
            "username": _ENV["user"] or "root",
            "password": _ENV["password"],
            "pool_min_size": 1,
            "pool_max_size": 2,
        }
    )
    table = f"rt_{uuid.uuid4().hex[:8]}"
    db.execute_update(f"CREATE TABLE {table} (id INT PRIMARY KEY, n TEXT NULL, i INT, t VARCHAR(64), at DATETIME)")
    yield db, table
    db.execute_update(f"DROP TABLE {table}")
    db.disconnect()


class TestNetworkedRoundTrip:
    def test_null_integer_text_timestamp(self, networked_db):
        db, table = networked_db
        at = datetime(2024, 2, 29, 23, 59, 59)
        db.execute_update(f"INSERT INTO {table} VALUES (?, ?, ?, ?, ?)", 1, None, 42, "hello", at)
        row = db.query(f"SELECT n, i, t, at FROM {table}", lambda c: c.fetchone())
        assert row.as_tuple() == (None, 42, "hello", at)

    def test_batch_mode(self, networked_db):
        db, table = networked_db
        with pytest.raises(BatchError) as exc_info:
            db.execute_batch(
                [
                    f"INSERT INTO {table} (id) VALUES (1)",
                    f"INSERT INTO {table} (id) VALUES (1)",
                    f"INSERT INTO {table} (id) VALUES (2)",
                ]
            )
        assert exc_info.value.index == 1
        remaining = db.query(f"SELECT COUNT(*) FROM {table}", lambda c: c.scalar())
        assert remaining == (0 if exc_info.value.atomic else 1)
