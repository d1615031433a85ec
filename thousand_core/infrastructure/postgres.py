"""
PostgreSQL connection pool helper for thousand-words.

Uses psycopg 3 and its async connection pool. The pool is opened eagerly
so a bad DSN or unreachable server fails at startup, not on first use.
"""

from __future__ import annotations

import psycopg
from loguru import logger
from psycopg_pool import AsyncConnectionPool, PoolTimeout

from thousand_core.runtime.errors import BackendUnavailable, ErrorCode


async def open_pool(
    dsn: str,
    min_size: int = 1,
    max_size: int = 10,
    timeout: float = 10.0,
) -> AsyncConnectionPool:
    """
    Open an async PostgreSQL connection pool.

    Usage:
        pool = await open_pool(settings.POSTGRES_DSN)
        async with pool.connection() as conn:
            await conn.execute("SELECT 1")
        await pool.close()

    Args:
        dsn: libpq connection string or URL.
        min_size: Connections kept open.
        max_size: Upper bound on connections.
        timeout: Seconds to wait for the first connection.

    Returns:
        AsyncConnectionPool: An open pool.

    Raises:
        BackendUnavailable: If no connection could be established.
    """
    pool = AsyncConnectionPool(
        conninfo=dsn,
        min_size=min_size,
        max_size=max_size,
        timeout=timeout,
        open=False,
    )
    try:
        await pool.open(wait=True, timeout=timeout)
    except (PoolTimeout, psycopg.OperationalError) as e:
        logger.error(f"Failed to connect to PostgreSQL: {e}")
        await pool.close()
        raise BackendUnavailable(
            "PostgreSQL is unavailable",
            message_debug=str(e),
            cause=e,
            code=ErrorCode.CONNECTION_ERROR,
        ) from e

    logger.debug(f"Opened PostgreSQL pool (min={min_size}, max={max_size})")
    return pool
