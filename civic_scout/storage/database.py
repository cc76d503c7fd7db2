"""
asyncpg pool behind the graph store.

Graph writes are single statements, apart from the reaper, which removes
expired signals and the actors they orphan in one transaction. Nothing
holds a connection across run phases, so a small pool serves a run.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from types import TracebackType
from typing import Any

import asyncpg

from civic_scout.config.settings import get_settings

logger = logging.getLogger(__name__)


class Database:
    """
    Owns the pool for one CLI command or one scout run.

    Usage:
        async with Database() as db:
            await GraphStore(db).create_tables()

    ``execute``/``fetch``/``fetchrow``/``fetchval`` mirror asyncpg's
    connection methods, each on a pooled connection of its own.
    """

    def __init__(
        self,
        database_url: str | None = None,
        *,
        min_size: int | None = None,
        max_size: int | None = None,
        command_timeout: float = 60.0,
    ):
        settings = get_settings()
        self._dsn = database_url or str(settings.database_url)
        self._pool_bounds = (
            min_size or settings.db_pool_min_size,
            max_size or settings.db_pool_max_size,
        )
        self._command_timeout = command_timeout
        self._pool: asyncpg.Pool | None = None

    async def connect(self) -> None:
        low, high = self._pool_bounds
        try:
            self._pool = await asyncpg.create_pool(
                self._dsn,
                min_size=low,
                max_size=high,
                command_timeout=self._command_timeout,
                server_settings={"application_name": "civic-scout"},
            )
        except (OSError, asyncpg.PostgresError) as e:
            logger.error("Graph database unreachable: %s", e)
            raise
        logger.info("Graph database pool open (%d-%d connections)", low, high)

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def __aenter__(self) -> "Database":
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    @property
    def pool(self) -> asyncpg.Pool:
        if self._pool is None:
            raise RuntimeError("Graph database pool is not open; use 'async with Database()'")
        return self._pool

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[asyncpg.Connection]:
        """Connection whose statements commit together or not at all."""
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                yield conn

    async def execute(self, query: str, *args: Any) -> str:
        """Run a statement; returns the status tag, e.g. ``UPDATE 1``."""
        async with self.pool.acquire() as conn:
            return await conn.execute(query, *args)

    async def fetch(self, query: str, *args: Any) -> list[asyncpg.Record]:
        async with self.pool.acquire() as conn:
            return await conn.fetch(query, *args)

    async def fetchrow(self, query: str, *args: Any) -> asyncpg.Record | None:
        async with self.pool.acquire() as conn:
            return await conn.fetchrow(query, *args)

    async def fetchval(self, query: str, *args: Any) -> Any:
        async with self.pool.acquire() as conn:
            return await conn.fetchval(query, *args)

    async def health_check(self) -> bool:
        """True if the graph database answers; used by ``civic-scout health``."""
        try:
            return await self.fetchval("SELECT 1") == 1
        except (OSError, RuntimeError, asyncpg.PostgresError) as e:
            logger.warning("Graph database health check failed: %s", e)
            return False
