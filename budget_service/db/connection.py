"""
Budget Database Pool

One process-wide psycopg2 ThreadedConnectionPool shared by every
PostgresBudgetStore. Store calls run on worker threads (asyncio.to_thread),
so the threaded pool variant is required.

Lifecycle:
    initialize_pool() -> get_connection() ... -> close_all_connections()

Connections are liveness-checked on checkout; a dead connection is closed and
reported as ConnectionHealthError instead of being handed to a store.
"""

from __future__ import annotations

import logging
import os
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import psycopg2
from psycopg2 import pool
from psycopg2.extensions import connection
from psycopg2.extras import DictCursor

from budget_tracker.exceptions import ConnectionError

logger = logging.getLogger(__name__)

APPLICATION_NAME = "budget-tracker"


class PoolError(ConnectionError):
    """Pool missing, exhausted, or unable to open a connection."""


class ConnectionHealthError(ConnectionError):
    """A pooled connection failed its liveness check."""


_budget_pool: pool.ThreadedConnectionPool | None = None
_budget_pool_lock = threading.Lock()


def _check_alive(conn: connection) -> None:
    """Round-trip a trivial query; leaves the connection idle (not in a transaction)."""
    with conn.cursor() as cur:
        cur.execute("SELECT 1 AS alive")
        row = cur.fetchone()
    conn.rollback()
    if row is None or row["alive"] != 1:
        raise ConnectionHealthError("Budget database returned an unexpected liveness result")


def initialize_pool(
    min_connections: int = 1,
    max_connections: int = 10,
    connection_timeout: int = 5,
    database_url: str | None = None,
) -> None:
    """
    Open the shared budget pool and verify one connection.

    Calling it again while a pool is open is a no-op.

    Args:
        min_connections: Connections opened eagerly
        max_connections: Hard cap; checkouts beyond it raise PoolError
        connection_timeout: libpq connect_timeout in seconds
        database_url: DSN, defaults to $DATABASE_URL

    Raises:
        PoolError: If no DSN is available or the server can't be reached
        ConnectionHealthError: If the first connection fails its liveness check
    """
    global _budget_pool

    dsn = database_url or os.getenv("DATABASE_URL")
    if not dsn:
        raise PoolError("No budget database configured (DATABASE_URL is empty)")

    with _budget_pool_lock:
        if _budget_pool is not None:
            logger.warning("Budget pool already open; keeping existing pool")
            return
        try:
            _budget_pool = pool.ThreadedConnectionPool(
                min_connections,
                max_connections,
                dsn=dsn,
                cursor_factory=DictCursor,
                connect_timeout=connection_timeout,
                application_name=APPLICATION_NAME,
            )
        except psycopg2.Error as e:
            logger.error(f"Could not open budget pool: {e}")
            raise PoolError(f"Could not open budget database pool: {e}") from e

    logger.info(f"Budget pool open: min={min_connections}, max={max_connections}")

    with get_connection():
        pass  # checkout runs the liveness check


@contextmanager
def get_connection() -> Iterator[connection]:
    """
    Borrow a liveness-checked connection from the shared pool.

    The caller owns commit/rollback; the connection goes back to the pool on exit.

    Raises:
        PoolError: If the pool is not open or has no free connection
        ConnectionHealthError: If the borrowed connection is dead
    """
    active_pool = _budget_pool
    if active_pool is None:
        raise PoolError("Budget pool is not open. Call initialize_pool() first.")

    try:
        conn = active_pool.getconn()
    except pool.PoolError as e:
        logger.error(f"Budget pool exhausted (max={active_pool.maxconn})")
        raise PoolError("Budget pool exhausted") from e
    except psycopg2.Error as e:
        logger.error(f"Budget database unreachable: {e}")
        raise PoolError(f"Budget database unreachable: {e}") from e

    try:
        _check_alive(conn)
    except (psycopg2.Error, ConnectionHealthError) as e:
        logger.warning(f"Discarding dead budget connection: {e}")
        active_pool.putconn(conn, close=True)
        raise ConnectionHealthError(f"Budget connection failed liveness check: {e}") from e

    try:
        yield conn
    finally:
        # Connections broken mid-transaction are dropped rather than reused
        active_pool.putconn(conn, close=bool(conn.closed))


def close_all_connections(timeout: int = 10) -> None:
    """
    Close the shared pool. Safe to call when no pool is open.

    Args:
        timeout: Seconds after which a slow shutdown is logged as a warning
    """
    global _budget_pool

    with _budget_pool_lock:
        active_pool, _budget_pool = _budget_pool, None

    if active_pool is None:
        logger.debug("Budget pool already closed")
        return

    started = time.monotonic()
    try:
        active_pool.closeall()
    except psycopg2.Error as e:
        logger.error(f"Error while closing budget pool: {e}")
        return

    elapsed = time.monotonic() - started
    if elapsed > timeout:
        logger.warning(f"Budget pool shutdown took {elapsed:.2f}s (limit {timeout}s)")
    logger.info("Budget pool closed")


def get_pool_status() -> dict[str, Any]:
    """Snapshot of the shared pool: initialized flag, bounds, open connection count."""
    active_pool = _budget_pool
    if active_pool is None:
        return {"initialized": False, "min_connections": 0, "max_connections": 0, "open_connections": 0}

    return {
        "initialized": True,
        "min_connections": active_pool.minconn,
        "max_connections": active_pool.maxconn,
        "open_connections": len(active_pool._used) + len(active_pool._pool),
    }
