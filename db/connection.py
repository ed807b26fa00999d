"""
db/connection.py
----------------
Manages the PostgreSQL connection pools.

One administrative pool (no search_path restriction) is used for
provisioning; every tenant schema gets its own small pool whose
connections have `search_path` set to that schema. Pools are psycopg2
ThreadedConnectionPools wrapped in `SchemaPool`, which bounds the wait for
a free connection and counts leases so an idle-eviction pass never closes
a pool that a caller is still using.

Invariants:
    - At most one live SchemaPool per schema name.
    - A pool is only created for a validated, provisioned schema.
    - Only the PoolCache closes pools.
"""

import threading
import time
from contextlib import contextmanager
from typing import Callable, Iterator, Optional

import psycopg2
from psycopg2 import pool

from config import (
    ADMIN_POOL_MAX_CONN,
    DATABASE_URL,
    POOL_ACQUIRE_TIMEOUT_SECONDS,
    POOL_MIN_CONN,
    SCHEMA_POOL_MAX_CONN,
)
from db.errors import PoolClosed, PoolTimeout, UnknownSchema, normalize_error
from db.identifiers import search_path_option, validate_schema_name
from utils.logger import get_logger

logger = get_logger(__name__)

# (schema or None for the admin pool, minconn, maxconn) -> raw psycopg2 pool
PoolFactory = Callable[[Optional[str], int, int], pool.AbstractConnectionPool]


def default_pool_factory(dsn: str) -> PoolFactory:
    """Build ThreadedConnectionPools against `dsn`, routed by search_path."""

    def factory(schema: Optional[str], min_conn: int, max_conn: int) -> pool.AbstractConnectionPool:
        if schema is None:
            return pool.ThreadedConnectionPool(min_conn, max_conn, dsn)
        return pool.ThreadedConnectionPool(
            min_conn, max_conn, dsn, options=search_path_option(schema)
        )

    return factory


class SchemaPool:
    """
    A pool handle bound to one schema (or to none, for the admin pool).

    Callers share the handle concurrently through `connection()`; they
    never close it. Waiting for a free connection is bounded by
    `acquire_timeout` and fails with PoolTimeout.
    """

    def __init__(
        self,
        schema: Optional[str],
        raw_pool: pool.AbstractConnectionPool,
        max_conn: int,
        acquire_timeout: float = POOL_ACQUIRE_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.schema = schema
        self.max_conn = max_conn
        self.acquire_timeout = acquire_timeout
        self._pool = raw_pool
        self._clock = clock
        self._slots = threading.BoundedSemaphore(max_conn)
        self._lock = threading.Lock()
        self._leases = 0
        self._retired = False
        self._closed = False
        self.created_at = clock()
        self.last_used = self.created_at

    def __repr__(self) -> str:
        return f"SchemaPool({self.label!r}, in_use={self._leases}, retired={self._retired})"

    @property
    def label(self) -> str:
        return self.schema or "<admin>"

    @property
    def in_use(self) -> int:
        return self._leases

    @property
    def retired(self) -> bool:
        return self._retired

    @property
    def closed(self) -> bool:
        return self._closed

    def idle_for(self, now: Optional[float] = None) -> float:
        """Seconds since the last lease ended (0 while leased)."""
        if self._leases:
            return 0.0
        return (self._clock() if now is None else now) - self.last_used

    # ── Leasing ───────────────────────────────────────────

    def try_lease(self) -> bool:
        """Register a user of this pool; False once the pool is retired."""
        with self._lock:
            if self._retired:
                return False
            self._leases += 1
            self.last_used = self._clock()
            return True

    def release_lease(self) -> None:
        with self._lock:
            self._leases -= 1
            self.last_used = self._clock()
            close_now = self._retired and self._leases == 0 and not self._closed
            if close_now:
                self._closed = True
        if close_now:
            self._close_raw()

    @contextmanager
    def checkout(self) -> Iterator:
        """Borrow one raw connection; the caller must already hold a lease."""
        if not self._slots.acquire(timeout=self.acquire_timeout):
            raise PoolTimeout(
                f"No free connection for '{self.label}' within {self.acquire_timeout:g}s",
                details={"schema": self.schema, "max_conn": self.max_conn},
            )
        try:
            try:
                conn = self._pool.getconn()
            except psycopg2.Error as e:
                raise normalize_error(e, schema=self.schema, operation="connect") from e
            try:
                yield conn
            finally:
                self._give_back(conn)
        finally:
            self._slots.release()

    def _give_back(self, conn) -> None:
        # A pool closed under a leased connection no longer accepts it back
        if not self._closed:
            try:
                self._pool.putconn(conn, close=bool(conn.closed))
                return
            except pool.PoolError as e:
                logger.debug(f"Pool for '{self.label}' closed before putconn: {e}")
        if not conn.closed:
            conn.close()

    @contextmanager
    def connection(self) -> Iterator:
        """
        Borrow a connection for the duration of the `with` block.

        Raises:
            PoolClosed: The handle was evicted or shut down.
            PoolTimeout: All connections stayed busy past the timeout.
        """
        if not self.try_lease():
            raise PoolClosed(f"Pool for '{self.label}' is closed", details={"schema": self.schema})
        try:
            with self.checkout() as conn:
                yield conn
        finally:
            self.release_lease()

    # ── Shutdown ──────────────────────────────────────────

    def retire_if_idle(self, max_idle: float, now: float) -> bool:
        """Mark the pool retired if nobody holds it and it idled long enough."""
        with self._lock:
            if self._retired or self._leases or now - self.last_used < max_idle:
                return False
            self._retired = True
            return True

    def retire(self) -> None:
        """Refuse new leases; close once the last lease is released."""
        with self._lock:
            self._retired = True
            close_now = self._leases == 0 and not self._closed
            if close_now:
                self._closed = True
        if close_now:
            self._close_raw()

    def close(self) -> None:
        """
        Close every connection now, leased or not. Leased connections are
        closed rather than returned when their `with` block exits.
        """
        with self._lock:
            self._retired = True
            if self._closed:
                return
            self._closed = True
        self._close_raw()

    def _close_raw(self) -> None:
        try:
            self._pool.closeall()
        except pool.PoolError as e:
            logger.debug(f"Pool for '{self.label}' was already closed: {e}")
        logger.info(f"Closed connection pool for '{self.label}'.")


class PoolCache:
    """
    Owns the administrative pool and the per-schema pools.

    Schema pools are created lazily on first request, after the name is
    validated and `schema_exists` confirms the schema is provisioned.
    Concurrent first requests for the same schema serialize on a striped
    creation lock, so exactly one pool is built; requests for other
    schemas are not blocked by it.

    Example:
        >>> cache = PoolCache(DATABASE_URL, schema_exists=registry.exists)
        >>> with cache.connection("tenant_a") as conn:
        ...     with conn.cursor() as cur:
        ...         cur.execute("SELECT count(*) FROM users")
    """

    LOCK_STRIPES = 64

    def __init__(
        self,
        dsn: str = DATABASE_URL,
        schema_exists: Optional[Callable[[str], bool]] = None,
        pool_factory: Optional[PoolFactory] = None,
        min_conn: int = POOL_MIN_CONN,
        admin_max_conn: int = ADMIN_POOL_MAX_CONN,
        schema_max_conn: int = SCHEMA_POOL_MAX_CONN,
        acquire_timeout: float = POOL_ACQUIRE_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.schema_exists = schema_exists
        self.min_conn = min_conn
        self.admin_max_conn = admin_max_conn
        self.schema_max_conn = schema_max_conn
        self.acquire_timeout = acquire_timeout
        self._factory = pool_factory or default_pool_factory(dsn)
        self._clock = clock
        self._admin: Optional[SchemaPool] = None
        self._admin_lock = threading.Lock()
        self._pools: dict[str, SchemaPool] = {}
        self._map_lock = threading.Lock()
        self._creation_locks = tuple(threading.Lock() for _ in range(self.LOCK_STRIPES))

    def _build(self, schema: Optional[str], max_conn: int) -> SchemaPool:
        try:
            raw = self._factory(schema, self.min_conn, max_conn)
        except psycopg2.Error as e:
            logger.error(f"Failed to create connection pool for '{schema or '<admin>'}': {e}")
            raise normalize_error(e, schema=schema, operation="create_pool") from e
        return SchemaPool(schema, raw, max_conn, self.acquire_timeout, self._clock)

    # ── Administrative pool ───────────────────────────────

    def open(self) -> SchemaPool:
        """Create the administrative pool. Safe to call more than once."""
        with self._admin_lock:
            if self._admin is None or self._admin.closed:
                self._admin = self._build(None, self.admin_max_conn)
                logger.info("Administrative connection pool initialized successfully.")
            return self._admin

    def get_administrative_pool(self) -> SchemaPool:
        admin = self._admin
        if admin is None or admin.closed:
            return self.open()
        return admin

    # ── Schema pools ──────────────────────────────────────

    def _lookup(self, name: str) -> Optional[SchemaPool]:
        with self._map_lock:
            handle = self._pools.get(name)
            if handle is not None and handle.retired:
                del self._pools[name]
                return None
            return handle

    def get_pool_for(self, schema_name: str) -> SchemaPool:
        """
        Return the pool for a schema, creating it on first use.

        Raises:
            InvalidIdentifier: The name is unsafe.
            UnknownSchema: The schema is not provisioned; no pool is created.
        """
        name = validate_schema_name(schema_name)
        handle = self._lookup(name)
        if handle is not None:
            return handle

        with self._creation_locks[hash(name) % self.LOCK_STRIPES]:
            handle = self._lookup(name)
            if handle is not None:
                return handle
            if self.schema_exists is None:
                raise RuntimeError("PoolCache has no schema_exists check configured.")
            if not self.schema_exists(name):
                raise UnknownSchema(name)
            handle = self._build(name, self.schema_max_conn)
            with self._map_lock:
                self._pools[name] = handle

        logger.info(f"Created connection pool for schema '{name}' (max {self.schema_max_conn}).")
        return handle

    @contextmanager
    def connection(self, schema_name: str) -> Iterator:
        """
        Borrow a connection routed to `schema_name`.

        If the cached pool is retired between lookup and lease, a fresh
        pool is fetched instead of failing the caller.
        """
        while True:
            handle = self.get_pool_for(schema_name)
            if handle.try_lease():
                break
        try:
            with handle.checkout() as conn:
                yield conn
        finally:
            handle.release_lease()

    def cached_schemas(self) -> list[str]:
        with self._map_lock:
            return sorted(self._pools)

    def __len__(self) -> int:
        with self._map_lock:
            return len(self._pools)

    def __contains__(self, schema_name: str) -> bool:
        with self._map_lock:
            return schema_name in self._pools

    # ── Eviction and shutdown ─────────────────────────────

    def evict_idle(self, max_idle_seconds: float) -> list[str]:
        """
        Close and forget schema pools idle for at least `max_idle_seconds`.
        Pools with an active lease are kept. The admin pool is never evicted.

        Returns:
            Names of the evicted schemas.
        """
        now = self._clock()
        retired: list[SchemaPool] = []
        with self._map_lock:
            for name, handle in list(self._pools.items()):
                if handle.retire_if_idle(max_idle_seconds, now):
                    del self._pools[name]
                    retired.append(handle)
        for handle in retired:
            handle.close()
        if retired:
            logger.info(f"Evicted {len(retired)} idle pool(s): {', '.join(h.label for h in retired)}")
        return [h.schema for h in retired]

    def evict(self, schema_name: str) -> bool:
        """Drop a schema's pool from the cache; it closes once no caller holds it."""
        with self._map_lock:
            handle = self._pools.pop(schema_name, None)
        if handle is None:
            return False
        handle.retire()
        return True

    def shutdown_all(self) -> None:
        """Close every pool, including the administrative one."""
        with self._map_lock:
            handles = list(self._pools.values())
            self._pools.clear()
        with self._admin_lock:
            if self._admin is not None:
                handles.append(self._admin)
            self._admin = None
        for handle in handles:
            handle.close()
        logger.info("All connection pools closed.")


_cache: Optional[PoolCache] = None


def init_pool(
    dsn: str = DATABASE_URL,
    schema_exists: Optional[Callable[[str], bool]] = None,
    **kwargs,
) -> PoolCache:
    """
    Initialize the process-wide pool cache and its administrative pool.

    Raises:
        StorageUnavailable: If the database is unreachable.
    """
    global _cache
    if _cache is not None:
        return _cache
    cache = PoolCache(dsn, schema_exists=schema_exists, **kwargs)
    cache.open()
    _cache = cache
    return _cache


def get_pool_cache() -> PoolCache:
    """
    Raises:
        RuntimeError: If the pool cache has not been initialized.
    """
    if _cache is None:
        raise RuntimeError("Database pool not initialized. Call init_pool() first.")
    return _cache


def close_pool() -> None:
    """Close all pools and forget the process-wide cache."""
    global _cache
    if _cache is not None:
        _cache.shutdown_all()
        _cache = None
