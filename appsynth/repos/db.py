"""Database connection pool management.

Wraps an asyncpg pool so the shorthand query methods retry on a dropped
connection (idle reapers on hosted Postgres, server restarts) instead of
failing the calling request or build.
"""

import asyncio
import logging
from typing import Any

import asyncpg

from appsynth.config import settings

logger = logging.getLogger(__name__)

# "The connection died, retry with a fresh one"
_RETRY_EXCEPTIONS = (
    asyncpg.ConnectionDoesNotExistError,
    asyncpg.InterfaceError,
    ConnectionResetError,
    OSError,
)

_MAX_RETRIES = 3


class _ResilientPool:
    """Proxy for :class:`asyncpg.Pool` with retrying ``fetch*`` / ``execute``.

    Anything else (``acquire``, ``close``) passes straight through.
    """

    __slots__ = ("_pool",)

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def fetch(self, query: str, *args: Any) -> list:
        return await self._retry(self._pool.fetch, query, *args)

    async def fetchrow(self, query: str, *args: Any):
        return await self._retry(self._pool.fetchrow, query, *args)

    async def fetchval(self, query: str, *args: Any):
        return await self._retry(self._pool.fetchval, query, *args)

    async def execute(self, query: str, *args: Any) -> str:
        return await self._retry(self._pool.execute, query, *args)

    @staticmethod
    async def _retry(func, *args: Any):
        for attempt in range(_MAX_RETRIES + 1):
            try:
                return await func(*args)
            except _RETRY_EXCEPTIONS as exc:
                if attempt == _MAX_RETRIES:
                    # Poisoned pool: make the next get_pool() build a new one
                    _reset()
                    raise
                wait = min(0.5 * (2 ** attempt), 5.0)
                logger.warning(
                    "DB connection lost (attempt %d/%d): %s, retrying in %.1fs",
                    attempt + 1, _MAX_RETRIES + 1, exc, wait,
                )
                await asyncio.sleep(wait)

    def __getattr__(self, name: str):
        return getattr(self._pool, name)


_pool: asyncpg.Pool | None = None
_pool_loop: asyncio.AbstractEventLoop | None = None
_wrapper: _ResilientPool | None = None


def _reset() -> None:
    global _pool, _pool_loop, _wrapper
    _pool = None
    _pool_loop = None
    _wrapper = None


async def get_pool() -> _ResilientPool:
    """Get or create the database connection pool.

    A pool bound to a different event loop (common in test suites) is
    discarded and recreated.
    """
    global _pool, _pool_loop, _wrapper
    loop = asyncio.get_running_loop()
    if _pool is not None and _pool_loop is not loop:
        _pool.terminate()
        _reset()
    if _pool is None:
        _pool = await asyncio.wait_for(
            asyncpg.create_pool(
                dsn=settings.DATABASE_URL,
                min_size=1,
                max_size=10,
                command_timeout=60,
                max_inactive_connection_lifetime=300.0,
            ),
            timeout=20,
        )
        _pool_loop = loop
        _wrapper = _ResilientPool(_pool)
    return _wrapper  # type: ignore[return-value]


async def close_pool() -> None:
    """Close the database connection pool."""
    if _pool is not None:
        await _pool.close()
    _reset()
