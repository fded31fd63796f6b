# notifier/infra/db_async.py
"""
asyncpg connection pool shared by the repositories and the readiness probe.
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

import asyncpg

from notifier.config import settings
from notifier.infra.logging_config import get_logger

logger = get_logger(__name__)

_pool: asyncpg.Pool | None = None


async def init_pool(dsn: str | None = None) -> asyncpg.Pool:
    """Create the global pool (idempotent)"""
    global _pool

    if _pool is not None:
        return _pool

    logger.info("Initializing asyncpg connection pool")
    _pool = await asyncpg.create_pool(
        dsn=dsn or settings.database_dsn,
        min_size=settings.pg_pool_min,
        max_size=settings.pg_pool_max,
        timeout=settings.pg_connect_timeout,
        command_timeout=60,
        server_settings={"application_name": "notifier"},
    )
    logger.info(f"Connection pool created: min={settings.pg_pool_min}, max={settings.pg_pool_max}")
    return _pool


async def close_pool() -> None:
    """Close the global pool on shutdown"""
    global _pool

    if _pool is None:
        return

    logger.info("Closing connection pool")
    await _pool.close()
    _pool = None


def get_pool() -> asyncpg.Pool:
    if _pool is None:
        raise RuntimeError("Connection pool not initialized. Call init_pool() first.")
    return _pool


def is_initialized() -> bool:
    return _pool is not None


@asynccontextmanager
async def db_conn(autocommit: bool = True) -> AsyncIterator[asyncpg.Connection]:
    """
    Borrow a connection from the pool.

    With ``autocommit=False`` the block runs inside a transaction that commits
    on normal exit and rolls back if the block raises.

    Usage:
        async with db_conn() as conn:
            row = await conn.fetchrow("SELECT * FROM subscriptions WHERE id = $1", sub_id)
    """
    pool = get_pool()
    async with pool.acquire() as conn:
        if autocommit:
            yield conn
        else:
            async with conn.transaction():
                yield conn


async def check_connection() -> bool:
    """Readiness probe: True if a trivial query succeeds"""
    if _pool is None:
        return False
    try:
        async with _pool.acquire() as conn:
            return await conn.fetchval("SELECT 1") == 1
    except Exception as exc:
        logger.warning(f"Database probe failed: {exc}")
        return False
