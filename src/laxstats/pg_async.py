"""
Async PostgreSQL connection manager for the canonical store.

Wraps psycopg's AsyncConnectionPool with dict rows and a health check, and
exposes a ``transaction()`` context for writes that must land together
(a batch and its checkpoint).
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

from dotenv import load_dotenv

load_dotenv()

import psycopg
from psycopg import sql
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

logger = logging.getLogger(__name__)


async def _async_check_connection(conn: psycopg.AsyncConnection) -> None:
    """Validate a pooled connection is still alive before handing it out."""
    await conn.execute(sql.SQL("SELECT 1"))


class AsyncPostgresDB:
    """
    Async PostgreSQL database connection manager.

    The pool is created closed; call ``open()`` before first use (the store
    does this on ``initialize()``).
    """

    def __init__(
        self,
        connection_string: Optional[str] = None,
        min_pool_size: int = 1,
        max_pool_size: Optional[int] = None,
    ):
        """
        Args:
            connection_string: PostgreSQL connection URL. Defaults to DATABASE_URL env var.
            min_pool_size: Minimum connections to keep in pool.
            max_pool_size: Maximum connections in pool. Defaults to DATABASE_POOL_SIZE or 10.
        """
        self.connection_string = connection_string or os.environ.get("DATABASE_URL")
        if not self.connection_string:
            raise ValueError("DATABASE_URL environment variable required or connection_string must be provided")

        self._max_pool_size = max_pool_size or int(os.environ.get("DATABASE_POOL_SIZE", 10))
        self._min_pool_size = min(min_pool_size, self._max_pool_size)
        self._pool = AsyncConnectionPool(
            self.connection_string,
            min_size=self._min_pool_size,
            max_size=self._max_pool_size,
            kwargs={"row_factory": dict_row},
            check=_async_check_connection,
            max_idle=300,
            max_lifetime=3600,
            reconnect_timeout=60,
            open=False,
        )
        self._opened = False

    async def open(self) -> None:
        """Open the pool, establishing min_size connections."""
        if self._opened:
            return
        await self._pool.open()
        self._opened = True
        logger.info(f"Async DB pool opened (min={self._min_pool_size}, max={self._max_pool_size})")

    async def close(self) -> None:
        """Close the pool."""
        if not self._opened:
            return
        await self._pool.close()
        self._opened = False
        logger.info("Async DB pool closed")

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[psycopg.AsyncConnection]:
        """Borrow a connection from the pool."""
        if not self._opened:
            await self.open()
        async with self._pool.connection() as conn:
            yield conn

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[psycopg.AsyncCursor]:
        """
        Cursor inside one transaction.

        Commits when the block exits normally and rolls back if it raises.
        """
        async with self.connection() as conn:
            async with conn.transaction():
                async with conn.cursor() as cur:
                    yield cur

    async def fetchone(self, query: str | sql.Composed, params: tuple = ()) -> Optional[dict[str, Any]]:
        """Execute a query and fetch one result as a dict."""
        async with self.connection() as conn:
            async with conn.cursor() as cur:
                await cur.execute(query, params)
                row = await cur.fetchone()
                return dict(row) if row else None

    async def fetchall(self, query: str | sql.Composed, params: tuple = ()) -> list[dict[str, Any]]:
        """Execute a query and fetch all results as dicts."""
        async with self.connection() as conn:
            async with conn.cursor() as cur:
                await cur.execute(query, params)
                return [dict(row) for row in await cur.fetchall()]

    async def execute(self, query: str | sql.Composed, params: tuple = ()) -> None:
        """Execute a single query without returning results."""
        async with self.connection() as conn:
            async with conn.cursor() as cur:
                await cur.execute(query, params)
            await conn.commit()
