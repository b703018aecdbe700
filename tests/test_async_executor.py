"""Tests for ``relstore.async_executor`` - worker-pool execution."""

from __future__ import annotations

import threading
import time

import pytest

from relstore.async_executor import AsyncExecutor
from relstore.errors import BindingError, CancelledError, IntegrityError
from relstore.operations import OperationState


@pytest.fixture
def single_worker(points_db):
    executor = AsyncExecutor(points_db.executor, max_workers=1)
    yield executor
    executor.shutdown(wait=True, cancel_pending=True)


class TestAsyncCalls:
    def test_update_and_query(self, points_db):
        op = points_db.execute_update_async("UPDATE points SET amount = ? WHERE player = ?", 99, "alex")
        assert op.result(timeout=5.0) == 1
        total = points_db.query_async("SELECT SUM(amount) FROM points", lambda c: c.scalar())
        assert total.result(timeout=5.0) == 124

    def test_runs_off_caller_thread(self, points_db):
        caller = threading.current_thread()
        op = points_db.submit(threading.current_thread)
        worker = op.result(timeout=5.0)
        assert worker is not caller
        assert worker.name.startswith("relstore-db")

    def test_query_async_returns_cursor(self, points_db):
        op = points_db.execute_query_async("SELECT player FROM points ORDER BY player")
        with op.result(timeout=5.0) as cursor:
            assert [row[0] for row in cursor] == ["alex", "notch", "steve"]
        assert points_db.stats().leased == 0

    def test_batch_async(self, points_db):
        op = points_db.execute_batch_async(
            iter(["DELETE FROM points WHERE player = 'alex'", "DELETE FROM points WHERE player = 'steve'"])
        )
        assert op.result(timeout=5.0) == [1, 1]

    def test_returning_key_async(self, file_db):
        file_db.execute_update("CREATE TABLE t (id INTEGER PRIMARY KEY, name TEXT)")
        assert file_db.execute_update_returning_key_async("INSERT INTO t (name) VALUES (?)", "a").result(5.0) == 1

    def test_errors_surface_through_failed(self, points_db):
        op = points_db.execute_update_async("INSERT INTO points (player, amount) VALUES (?, ?)", "steve", 1)
        assert op.wait(5.0)
        assert op.state is OperationState.FAILED
        assert isinstance(op.exception(), IntegrityError)

        op = points_db.execute_update_async("SELECT ?")
        assert isinstance(op.exception(timeout=5.0), BindingError)

    def test_consumer_runs_on_worker(self, points_db):
        threads = set()
        op = points_db.execute_query_async_with_consumer(
            "SELECT * FROM points WHERE amount > ?", lambda row: threads.add(threading.current_thread()), 0
        )
        assert op.result(timeout=5.0) == 3
        assert threading.current_thread() not in threads

    def test_then_chains(self, points_db):
        op = points_db.query_async("SELECT COUNT(*) FROM points", lambda c: c.scalar())
        assert op.then(lambda n: n * 10).result(timeout=5.0) == 30


class TestCancellation:
    def test_cancel_before_start(self, single_worker):
        gate = threading.Event()
        blocker = single_worker.submit(gate.wait, 5.0)
        queued = single_worker.execute_update_async("DELETE FROM points")
        assert queued.cancel() is True
        gate.set()
        assert blocker.result(timeout=5.0) is True
        assert queued.state is OperationState.CANCELLED
        with pytest.raises(CancelledError):
            queued.result(timeout=1.0)
        count = single_worker.query_async("SELECT COUNT(*) FROM points", lambda c: c.scalar())
        assert count.result(timeout=5.0) == 3

    def test_cancel_after_completion(self, single_worker):
        op = single_worker.execute_update_async("UPDATE points SET note = 'n'")
        assert op.result(timeout=5.0) == 3
        assert op.cancel() is False
        assert op.state is OperationState.COMPLETED

    def test_cancel_running_consumer_stops_between_rows(self, points_db, single_worker):
        first_row = threading.Event()
        proceed = threading.Event()
        seen = []

        def consumer(row):
            seen.append(row["player"])
            first_row.set()
            proceed.wait(5.0)

        op = single_worker.execute_query_async_with_consumer(
            "SELECT player FROM points ORDER BY amount", consumer
        )
        assert first_row.wait(5.0)
        assert op.cancel() is True
        proceed.set()
        assert isinstance(op.exception(timeout=5.0), CancelledError)
        assert op.state is OperationState.FAILED
        assert seen == ["alex"]
        assert points_db.stats().leased == 0

    def test_discarded_cursor_is_closed(self, points_db, single_worker):
        started = threading.Event()
        proceed = threading.Event()

        def slow_query():
            started.set()
            proceed.wait(5.0)
            return points_db.execute_query("SELECT * FROM points")

        op = single_worker.submit(slow_query)
        assert started.wait(5.0)
        op.cancel()
        proceed.set()
        assert isinstance(op.exception(timeout=5.0), CancelledError)
        assert points_db.stats().leased == 0


class TestConcurrency:
    def test_ten_queries_on_pool_of_two(self, pooled_db):
        pooled_db.execute_update("CREATE TABLE t (id INTEGER)")
        pooled_db.execute_batch([f"INSERT INTO t VALUES ({i})" for i in range(5)])

        def slow_count(cursor):
            time.sleep(0.05)
            return cursor.scalar()

        ops = [pooled_db.query_async("SELECT COUNT(*) FROM t", slow_count) for _ in range(10)]
        assert [op.result(timeout=10.0) for op in ops] == [5] * 10
        stats = pooled_db.stats()
        assert stats.peak_leased <= 2
        assert stats.lease_timeouts == 0
        assert stats.leased == 0


class TestLifecycle:
    def test_submit_after_shutdown(self, points_db):
        executor = AsyncExecutor(points_db.executor, max_workers=1)
        executor.shutdown()
        with pytest.raises(RuntimeError):
            executor.submit(lambda: 1)

    def test_shutdown_cancels_pending(self, points_db):
        executor = AsyncExecutor(points_db.executor, max_workers=1)
        gate = threading.Event()
        started = threading.Event()

        def hold():
            started.set()
            return gate.wait(5.0)

        running = executor.submit(hold)
        assert started.wait(5.0)
        queued = [executor.execute_update_async("DELETE FROM points") for _ in range(3)]
        threading.Timer(0.05, gate.set).start()
        executor.shutdown(wait=True, cancel_pending=True)
        assert running.result(timeout=1.0) is True
        assert all(op.state is OperationState.CANCELLED for op in queued)
        assert executor.pending_count == 0

    def test_context_manager(self, points_db):
        with AsyncExecutor(points_db.executor, max_workers=2) as executor:
            op = executor.submit(lambda: "ok")
        assert op.result(timeout=1.0) == "ok"

    def test_invalid_workers(self, points_db):
        with pytest.raises(ValueError):
            AsyncExecutor(points_db.executor, max_workers=0)
