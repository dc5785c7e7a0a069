"""Oracle connection pool shared by every repository.

The pool is opened by the application lifespan. Sessions run in UTC so that
``TIMESTAMP`` columns round-trip the aware datetimes the services write.
"""

from __future__ import annotations

import logging
import time
from typing import Any

import oracledb

from rafflio.core.config import Settings

logger = logging.getLogger(__name__)

_pool: oracledb.ConnectionPool | None = None


def _init_session(conn: oracledb.Connection, requested_tag: str | None) -> None:
    with conn.cursor() as cur:
        cur.execute("ALTER SESSION SET TIME_ZONE = 'UTC'")
    # Shows up in V$SESSION.MODULE for DBAs
    conn.module = "rafflio"


async def init_pool(settings: Settings) -> oracledb.ConnectionPool:
    """Open the pool once; later calls return the existing one."""
    global _pool
    if _pool is not None:
        return _pool

    logger.info("Opening Oracle pool on %s as %s", settings.oracle_dsn, settings.oracle_user)
    _pool = oracledb.create_pool(
        user=settings.oracle_user,
        password=settings.oracle_password,
        dsn=settings.oracle_dsn,
        min=settings.oracle_pool_min,
        max=settings.oracle_pool_max,
        increment=settings.oracle_pool_increment,
        session_callback=_init_session,
    )
    logger.info(
        "Oracle pool open (min=%d, max=%d)",
        settings.oracle_pool_min,
        settings.oracle_pool_max,
    )
    return _pool


async def close_pool() -> None:
    global _pool
    if _pool is not None:
        _pool.close(force=True)
        _pool = None
        logger.info("Oracle pool closed")


def get_pool() -> oracledb.ConnectionPool:
    """The open pool. Raises if the lifespan has not opened it."""
    if _pool is None:
        raise RuntimeError("Database pool not initialized. Call init_pool() first.")
    return _pool


def ping(pool: Any) -> float:
    """Round-trip ``SELECT 1 FROM DUAL`` on *pool*; returns elapsed milliseconds."""
    start = time.perf_counter()
    conn = pool.acquire()
    try:
        with conn.cursor() as cur:
            cur.execute("SELECT 1 FROM DUAL")
            cur.fetchone()
    finally:
        conn.close()
    return round((time.perf_counter() - start) * 1000, 1)
