"""
Connection provider - physical connections, the pool, and leases.

The provider is the only owner of physical connections and the only shared
mutable state in relstore. Every statement runs on a *leased*
``ConnectionHandle``; a lease is exclusive, so a handle never has more than
one statement in flight.

Manifesto:
    Database connections are expensive (TCP handshake, auth) and a physical
    connection serialises its own statements. Leasing makes both facts
    explicit: networked backends keep a bounded pool of warm connections,
    embedded backends share one process-lifetime connection behind a mutex.

Architecture:
    ::

        ┌──────────────────────────────────────────────────────────────┐
        │                    ConnectionProvider                         │
        ├──────────────────────────────────────────────────────────────┤
        │  embedded:   sqlalchemy StaticPool ── threading.Lock          │
        │              (one shared connection, lease timeout)           │
        │                                                               │
        │  networked:  sqlalchemy QueuePool(pool_size=max_size,         │
        │              max_overflow=0, timeout=lease_timeout)           │
        │              min_size warmed on connect()                     │
        │                                                               │
        │  pool events: connect/close -> size, checkout/checkin ->      │
        │               leased + high-water mark, checkout -> keepalive │
        └──────────────────────────────────────────────────────────────┘

    Every ``connect()`` builds a fresh pool. Handles leased from an older
    pool are closed when they come back, so a disconnect/connect cycle
    never grows the pool past ``max_size``.

Features:
    - ``connect()`` / ``disconnect()`` lifecycle, idempotent
    - ``acquire()`` / ``release()`` and the ``get_connection()`` guard
    - Lease timeout -> ``PoolExhaustedError``
    - Broken handles evicted on release; stale idle handles pinged
    - Bounded exponential backoff when opening physical connections
    - ``stats()`` with the leased high-water mark

Guardrails:
    ❌ DON'T: keep a handle after releasing it
    ✅ DO: ``with provider.get_connection() as handle: ...``

    ❌ DON'T: call ``acquire()`` from the host's designated thread
    ✅ DO: go through the async executor there

Tags:
    relstore, connection-pool, lease, concurrency, sqlalchemy
"""

from __future__ import annotations

import itertools
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import event
from sqlalchemy import exc as sa_exc
from sqlalchemy.pool import Pool, QueuePool, StaticPool

from relstore.backends.base import Driver
from relstore.backends.types import BackendKind
from relstore.errors import DatabaseConnectionError, PoolExhaustedError, describe_cause, is_retryable
from relstore.logging import get_logger
from relstore.retry import ExponentialBackoff, NoRetry, RetryStrategy, retry_call

logger = get_logger(__name__)

_handle_ids = itertools.count(1)

# Key under which a pool entry's ConnectionHandle lives in its ``info`` dict.
_HANDLE_KEY = "relstore.handle"


@dataclass(eq=False)
class ConnectionHandle:
    """One live physical connection, owned by a ``ConnectionProvider``."""

    kind: BackendKind
    raw: Any = field(repr=False)
    id: int = field(default_factory=lambda: next(_handle_ids))
    created_at: float = field(default_factory=time.monotonic)
    last_used: float = field(default_factory=time.monotonic)
    broken: bool = False
    _open: bool = field(default=True, repr=False)
    _leased: bool = field(default=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)
    # Pool checkout backing the current lease, and the pool it came from.
    _proxy: Any = field(default=None, repr=False)
    _pool: Pool | None = field(default=None, repr=False)

    @property
    def is_connected(self) -> bool:
        """Last-known liveness. No round trip to the backend."""
        return self._open and not self.broken

    @property
    def is_open(self) -> bool:
        return self._open

    @property
    def leased(self) -> bool:
        return self._leased

    @property
    def idle_seconds(self) -> float:
        return time.monotonic() - self.last_used

    def touch(self) -> None:
        self.last_used = time.monotonic()

    def mark_broken(self) -> None:
        self.broken = True

    def _mark_closed(self) -> bool:
        """Flip to closed; True only for the first caller."""
        with self._lock:
            if not self._open:
                return False
            self._open = False
            return True


@dataclass(frozen=True)
class PoolStats:
    """Point-in-time view of the provider."""

    backend: str
    connected: bool
    size: int
    idle: int
    leased: int
    peak_leased: int
    max_size: int
    lease_waits: int
    lease_timeouts: int


class ConnectionProvider:
    """
    Opens, leases and releases physical connections for one driver.

    Example:
        >>> provider = ConnectionProvider(driver_for(StoreSettings(backend="memory")))
        >>> provider.connect()
        >>> with provider.get_connection() as handle:
        ...     handle.raw.execute("SELECT 1")
        >>> provider.disconnect()
    """

    def __init__(
        self,
        driver: Driver,
        *,
        min_size: int | None = None,
        max_size: int | None = None,
        lease_timeout: float | None = None,
        keepalive: float | None = None,
        reconnect: RetryStrategy | None = None,
    ):
        settings = driver.settings
        self._driver = driver
        self._min_size = settings.pool_min_size if min_size is None else min_size
        self._max_size = settings.pool_max_size if max_size is None else max_size
        self._lease_timeout = settings.lease_timeout if lease_timeout is None else lease_timeout
        self._keepalive = settings.keepalive_seconds if keepalive is None else keepalive
        if reconnect is None:
            if settings.reconnect_attempts:
                reconnect = ExponentialBackoff(
                    max_retries=settings.reconnect_attempts,
                    base_delay=settings.reconnect_base_delay,
                    max_delay=settings.reconnect_max_delay,
                )
            else:
                reconnect = NoRetry()
        self._reconnect = reconnect
        if self._min_size > self._max_size:
            raise ValueError(f"min_size ({self._min_size}) exceeds max_size ({self._max_size})")

        self._lifecycle = threading.Lock()
        self._lock = threading.Lock()
        self._pool: Pool | None = None
        self._size = 0
        self._leased = 0
        self._peak_leased = 0
        self._waits = 0
        self._timeouts = 0
        self._shared_lock = threading.Lock()
        self._host_thread: threading.Thread | None = None

    # ── Properties ───────────────────────────────────────────────

    @property
    def driver(self) -> Driver:
        return self._driver

    @property
    def kind(self) -> BackendKind:
        return self._driver.kind

    @property
    def is_connected(self) -> bool:
        return self._pool is not None

    @property
    def lease_timeout(self) -> float:
        return self._lease_timeout

    @property
    def max_size(self) -> int:
        return 1 if self._driver.shares_connection else self._max_size

    # ── Lifecycle ────────────────────────────────────────────────

    def connect(self) -> None:
        """
        Open the provider. Idempotent.

        Embedded backends open their shared handle; networked backends
        warm ``min_size`` pooled handles.

        Raises:
            DatabaseConnectionError: the backend could not be reached; the
                provider stays disconnected and ``connect()`` may be retried.
        """
        with self._lifecycle:
            if self._pool is not None:
                return
            pool = self._build_pool()
            warm = 1 if self._driver.shares_connection else self._min_size
            with self._lock:
                peak = self._peak_leased
            proxies = []
            try:
                for _ in range(warm):
                    proxies.append(self._checkout_proxy(pool))
            except BaseException:
                for proxy in proxies:
                    proxy.close()
                pool.dispose()
                raise
            for proxy in proxies:
                proxy.close()
            with self._lock:
                # Warm-up checkouts are not leases.
                self._peak_leased = peak
                self._pool = pool
            logger.info(
                "provider_connected",
                backend=self.kind.value,
                size=self._size,
                max_size=self.max_size,
            )

    def disconnect(self) -> None:
        """Close every idle handle and the shared handle. Idempotent.

        Handles still leased are closed when they are released.
        """
        with self._lifecycle:
            with self._lock:
                pool, self._pool = self._pool, None
            if pool is None:
                return
            if self._driver.shares_connection:
                # Let an in-flight statement on the shared handle finish first.
                acquired = self._shared_lock.acquire(timeout=self._lease_timeout)
                try:
                    pool.dispose()
                finally:
                    if acquired:
                        self._shared_lock.release()
            else:
                pool.dispose()
            logger.info("provider_disconnected", backend=self.kind.value)

    def bind_host_thread(self, thread: threading.Thread | None) -> None:
        """Register the thread that must never block on a lease (None clears it)."""
        self._host_thread = thread

    # ── Pool construction & events ───────────────────────────────

    def _build_pool(self) -> Pool:
        # The executor ends its own transactions; no rollback on checkin.
        if self._driver.shares_connection:
            pool: Pool = StaticPool(self._open_raw, reset_on_return=None)
        else:
            pool = QueuePool(
                self._open_raw,
                pool_size=self._max_size,
                max_overflow=0,
                timeout=self._lease_timeout,
                reset_on_return=None,
            )
            # Registered before _on_checkout so a failed ping is never counted.
            event.listen(pool, "checkout", self._ping_stale)
        event.listen(pool, "connect", self._on_connect)
        event.listen(pool, "close", self._on_close)
        event.listen(pool, "checkout", self._on_checkout)
        event.listen(pool, "checkin", self._on_checkin)
        return pool

    def _on_connect(self, dbapi_connection: Any, connection_record: Any) -> None:
        with self._lock:
            self._size += 1

    def _on_close(self, dbapi_connection: Any, connection_record: Any) -> None:
        handle = connection_record.info.get(_HANDLE_KEY)
        if handle is not None and handle.raw is dbapi_connection:
            handle._mark_closed()
        with self._lock:
            self._size -= 1
        logger.debug("connection_closed", backend=self.kind.value)

    def _on_checkout(self, dbapi_connection: Any, connection_record: Any, connection_proxy: Any) -> None:
        with self._lock:
            self._leased += 1
            self._peak_leased = max(self._peak_leased, self._leased)

    def _on_checkin(self, dbapi_connection: Any, connection_record: Any) -> None:
        with self._lock:
            self._leased -= 1

    def _ping_stale(self, dbapi_connection: Any, connection_record: Any, connection_proxy: Any) -> None:
        """Ping an idle connection past the keepalive window; the pool replaces a dead one."""
        if not self._keepalive:
            return
        handle = connection_record.info.get(_HANDLE_KEY)
        if handle is None or handle.raw is not dbapi_connection:
            return
        if handle.idle_seconds <= self._keepalive or self._driver.ping(dbapi_connection):
            return
        handle._mark_closed()
        logger.info("connection_evicted", backend=self.kind.value, handle=handle.id, reason="ping_failed")
        raise sa_exc.DisconnectionError(f"Connection {handle.id} failed its keepalive ping")

    # ── Physical connections ─────────────────────────────────────

    def _open_raw(self) -> Any:
        """Pool creator: one raw driver connection, retried with backoff."""

        def _on_retry(attempt: int, error: Exception, delay: float) -> None:
            logger.warning(
                "connection_open_retry",
                backend=self.kind.value,
                attempt=attempt + 1,
                delay=round(delay, 3),
                error=describe_cause(error),
            )

        raw = retry_call(self._driver.open, self._reconnect, retry_if=is_retryable, on_retry=_on_retry)
        logger.debug("connection_opened", backend=self.kind.value)
        return raw

    def open_handle(self) -> ConnectionHandle:
        """
        Open one physical connection outside the pool, retrying with backoff.

        Raises:
            DatabaseConnectionError: once the reconnect policy gives up
        """
        return ConnectionHandle(kind=self.kind, raw=self._open_raw())

    def close_handle(self, handle: ConnectionHandle) -> None:
        """Close the physical connection exactly once. Idempotent.

        A leased pooled handle is invalidated, which frees its pool slot.
        """
        if not handle._mark_closed():
            return
        proxy, handle._proxy = handle._proxy, None
        if proxy is not None:
            proxy.invalidate()
            return
        try:
            self._driver.close(handle.raw)
        except self._driver.error_types as e:
            logger.warning(
                "connection_close_failed",
                backend=self.kind.value,
                handle=handle.id,
                error=describe_cause(e),
            )
        logger.debug("connection_closed", backend=self.kind.value, handle=handle.id)

    # ── Leasing ──────────────────────────────────────────────────

    def acquire(self) -> ConnectionHandle:
        """
        Lease a handle, waiting at most the lease timeout.

        Raises:
            DatabaseConnectionError: the provider is not connected
            PoolExhaustedError: no handle became free in time
        """
        if self._host_thread is not None and threading.current_thread() is self._host_thread:
            logger.warning("blocking_call_on_host_thread", backend=self.kind.value)
        if self._driver.shares_connection:
            return self._acquire_shared()
        return self._acquire_pooled()

    def release(self, handle: ConnectionHandle) -> None:
        """Return a leased handle. Releasing a handle that is not leased is a no-op."""
        if not handle._leased:
            return
        handle._leased = False
        handle.touch()
        proxy, handle._proxy = handle._proxy, None
        pool, handle._pool = handle._pool, None
        try:
            if proxy is not None:
                self._checkin(handle, proxy, pool)
        finally:
            if self._driver.shares_connection:
                self._shared_lock.release()

    @contextmanager
    def get_connection(self) -> Iterator[ConnectionHandle]:
        """Lease guard: the handle is released on every exit path."""
        handle = self.acquire()
        try:
            yield handle
        finally:
            self.release(handle)

    def _not_connected(self) -> DatabaseConnectionError:
        return DatabaseConnectionError(
            f"Database is not connected ({self.kind.value})"
        ).with_context(backend=self.kind.value)

    def _lease_timed_out(self) -> PoolExhaustedError:
        timeout = self._lease_timeout
        with self._lock:
            self._timeouts += 1
            leased = self._leased
        logger.warning(
            "lease_timeout",
            backend=self.kind.value,
            timeout=timeout,
            leased=leased,
            max_size=self.max_size,
        )
        return PoolExhaustedError(
            f"No connection available within {timeout:.3f}s (pool size {self.max_size})",
            timeout=timeout,
            pool_size=self.max_size,
        ).with_context(backend=self.kind.value)

    def _checkout_proxy(self, pool: Pool) -> Any:
        try:
            return pool.connect()
        except sa_exc.TimeoutError as e:
            raise self._lease_timed_out() from e
        except sa_exc.InvalidRequestError as e:
            # Raised once the pool gives up replacing dead connections on checkout.
            raise DatabaseConnectionError(
                f"Could not obtain a live connection ({self.kind.value})",
                cause=e,
            ).with_context(backend=self.kind.value) from e

    def _lease(self, pool: Pool) -> ConnectionHandle:
        proxy = self._checkout_proxy(pool)
        raw = proxy.dbapi_connection
        handle = proxy.info.get(_HANDLE_KEY)
        if handle is None or handle.raw is not raw:
            handle = ConnectionHandle(kind=self.kind, raw=raw)
            proxy.info[_HANDLE_KEY] = handle
        handle._proxy = proxy
        handle._pool = pool
        handle._leased = True
        handle.touch()
        return handle

    def _acquire_shared(self) -> ConnectionHandle:
        if self._pool is None:
            raise self._not_connected()
        if not self._shared_lock.acquire(blocking=False):
            with self._lock:
                self._waits += 1
            if not self._shared_lock.acquire(timeout=self._lease_timeout):
                raise self._lease_timed_out()
        try:
            pool = self._pool
            if pool is None:
                raise self._not_connected()
            return self._lease(pool)
        except BaseException:
            self._shared_lock.release()
            raise

    def _acquire_pooled(self) -> ConnectionHandle:
        with self._lock:
            pool = self._pool
            if pool is None:
                raise self._not_connected()
            if pool.checkedout() >= self._max_size:
                self._waits += 1
        return self._lease(pool)

    def _checkin(self, handle: ConnectionHandle, proxy: Any, pool: Pool | None) -> None:
        stale = pool is not self._pool
        if not handle.broken and not stale:
            proxy.close()
            return
        handle._mark_closed()
        proxy.invalidate()
        if not handle.broken:
            return
        logger.warning("connection_evicted", backend=self.kind.value, handle=handle.id, reason="broken")
        if self._driver.shares_connection:
            # A lost embedded connection leaves the provider disconnected;
            # the caller decides whether to connect() again.
            with self._lock:
                if self._pool is not pool:
                    return
                self._pool = None
            pool.dispose()

    # ── Introspection ────────────────────────────────────────────

    def stats(self) -> PoolStats:
        with self._lock:
            return PoolStats(
                backend=self.kind.value,
                connected=self._pool is not None,
                size=self._size,
                idle=max(self._size - self._leased, 0),
                leased=self._leased,
                peak_leased=self._peak_leased,
                max_size=self.max_size,
                lease_waits=self._waits,
                lease_timeouts=self._timeouts,
            )

    def __repr__(self) -> str:
        return f"ConnectionProvider(kind={self.kind.value!r}, connected={self.is_connected})"


__all__ = [
    "ConnectionHandle",
    "ConnectionProvider",
    "PoolStats",
]
