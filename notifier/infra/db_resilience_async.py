# notifier/infra/db_resilience_async.py
"""
Retry helpers for transient asyncpg failures.
"""
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from functools import wraps
from typing import AsyncIterator, Callable

import asyncpg

from notifier.infra import db_async
from notifier.infra.logging_config import get_logger

logger = get_logger(__name__)

_TRANSIENT_PATTERNS = (
    "connection reset",
    "connection refused",
    "server closed",
    "too many connections",
    "timeout",
    "deadlock",
)


def is_transient_error(exc: BaseException) -> bool:
    """
    True for errors worth retrying: lost connections, pool or server overload,
    deadlocks and timeouts.
    """
    if isinstance(
        exc,
        (
            asyncpg.PostgresConnectionError,
            asyncpg.TooManyConnectionsError,
            asyncpg.DeadlockDetectedError,
            asyncpg.InterfaceError,
            ConnectionError,
            asyncio.TimeoutError,
        ),
    ):
        return True
    if isinstance(exc, asyncpg.PostgresError):
        # Constraint violations, syntax errors and friends never heal by retrying
        return False
    message = str(exc).lower()
    return any(pattern in message for pattern in _TRANSIENT_PATTERNS)


def retry_on_transient_error(
    max_retries: int = 3,
    initial_delay: float = 0.1,
    backoff_factor: float = 2.0,
    max_delay: float = 5.0,
):
    """
    Decorator retrying an async callable on transient database errors.

    Example:
        @retry_on_transient_error(max_retries=3)
        async def count_subscriptions():
            async with db_conn() as conn:
                return await conn.fetchval("SELECT count(*) FROM subscriptions")
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(*args, **kwargs):
            delay = initial_delay
            for attempt in range(max_retries + 1):
                try:
                    return await func(*args, **kwargs)
                except Exception as exc:
                    if not is_transient_error(exc) or attempt >= max_retries:
                        raise
                    logger.warning(
                        f"Transient error in {func.__name__} (attempt {attempt + 1}/{max_retries}): {exc}. "
                        f"Retrying in {delay:.2f}s..."
                    )
                    await asyncio.sleep(delay)
                    delay = min(delay * backoff_factor, max_delay)

        return wrapper
    return decorator


@retry_on_transient_error(max_retries=3)
async def _acquire() -> asyncpg.Connection:
    return await db_async.get_pool().acquire()


@asynccontextmanager
async def safe_db_conn(autocommit: bool = True) -> AsyncIterator[asyncpg.Connection]:
    """
    Pool connection whose acquisition is retried on transient errors.

    Only acquisition is retried: once the block has started, its statements
    are not replayed, so a failure inside the block propagates to the caller.

    Usage:
        async with safe_db_conn(autocommit=False) as conn:
            await conn.execute(...)
    """
    conn = await _acquire()
    try:
        if autocommit:
            yield conn
        else:
            async with conn.transaction():
                yield conn
    finally:
        await db_async.get_pool().release(conn)
