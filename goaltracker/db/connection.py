"""PostgreSQL connection pool for the gamification store"""
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator, Optional, Union
import psycopg
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool
from goaltracker.config import DATABASE_URL

logger = logging.getLogger(__name__)

SCHEMA_PATH = Path(__file__).with_name("schema.sql")


class Database:
    """
    Owns one AsyncConnectionPool.

    Connections are handed out with dict rows; callers commit explicitly and
    the pool rolls back anything left uncommitted when a block raises.
    """

    def __init__(self, connection_string: str = DATABASE_URL, min_size: int = 2, max_size: int = 10):
        self.connection_string = connection_string
        self.min_size = min_size
        self.max_size = max_size
        self._pool: Optional[AsyncConnectionPool] = None

    @property
    def is_initialized(self) -> bool:
        return self._pool is not None

    async def init_pool(self) -> None:
        """Open the pool and wait for min_size connections"""
        logger.info(f"Opening gamification database pool (min={self.min_size}, max={self.max_size})")
        self._pool = AsyncConnectionPool(
            self.connection_string,
            min_size=self.min_size,
            max_size=self.max_size,
            open=False
        )
        await self._pool.open(wait=True)

    async def close_pool(self) -> None:
        """Close the pool (safe to call twice)"""
        if self._pool:
            logger.info("Closing gamification database pool")
            await self._pool.close()
            self._pool = None

    @asynccontextmanager
    async def connection(self) -> AsyncGenerator[psycopg.AsyncConnection, None]:
        """Borrow a connection from the pool"""
        if not self._pool:
            raise RuntimeError("Database pool not initialized")

        async with self._pool.connection() as conn:
            conn.row_factory = dict_row
            yield conn

    async def apply_schema(self, path: Union[str, Path] = SCHEMA_PATH) -> None:
        """Run the DDL script (idempotent: every statement is IF NOT EXISTS)"""
        ddl = Path(path).read_text(encoding="utf-8")
        async with self.connection() as conn:
            await conn.execute(ddl)
            await conn.commit()
        logger.info(f"Applied schema from {path}")


# Global database instance
db = Database()
