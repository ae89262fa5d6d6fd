"""Database connection management"""
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional
import psycopg
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool
from journal_insights.config import DATABASE_URL

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS journal_entries (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    category TEXT NOT NULL DEFAULT 'personal',
    text TEXT NOT NULL DEFAULT '',
    created_at TIMESTAMPTZ NOT NULL,
    effective_at TIMESTAMPTZ,
    utc_offset_minutes INTEGER,
    mood_score DOUBLE PRECISION,
    entry_type TEXT,
    health JSONB,
    environment JSONB,
    tags JSONB NOT NULL DEFAULT '[]'::jsonb
);
CREATE INDEX IF NOT EXISTS idx_journal_entries_user_created
    ON journal_entries (user_id, created_at DESC);
ALTER TABLE journal_entries ADD COLUMN IF NOT EXISTS utc_offset_minutes INTEGER;

CREATE TABLE IF NOT EXISTS biometric_days (
    user_id TEXT NOT NULL,
    day DATE NOT NULL,
    resting_heart_rate DOUBLE PRECISION,
    hrv DOUBLE PRECISION,
    strain DOUBLE PRECISION,
    recovery_score DOUBLE PRECISION,
    sleep_hours DOUBLE PRECISION,
    PRIMARY KEY (user_id, day)
);

CREATE TABLE IF NOT EXISTS user_documents (
    user_id TEXT NOT NULL,
    name TEXT NOT NULL,
    data JSONB NOT NULL DEFAULT '{}'::jsonb,
    updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    PRIMARY KEY (user_id, name)
);
"""


class Database:
    """Database connection pool manager"""

    def __init__(self, connection_string: str = DATABASE_URL):
        self.connection_string = connection_string
        self._pool: Optional[AsyncConnectionPool] = None

    async def init_pool(self) -> None:
        """Initialize connection pool"""
        logger.info("Initializing database connection pool")
        self._pool = AsyncConnectionPool(
            self.connection_string,
            min_size=2,
            max_size=10,
            open=False
        )
        await self._pool.open()

    async def close_pool(self) -> None:
        """Close connection pool"""
        if self._pool:
            logger.info("Closing database connection pool")
            await self._pool.close()
            self._pool = None

    @property
    def is_initialized(self) -> bool:
        return self._pool is not None

    @asynccontextmanager
    async def connection(self) -> AsyncGenerator[psycopg.AsyncConnection, None]:
        """Get database connection from pool"""
        if not self._pool:
            raise RuntimeError("Database pool not initialized")

        async with self._pool.connection() as conn:
            conn.row_factory = dict_row
            yield conn

    async def ensure_schema(self) -> None:
        """Create tables used by the engine if they do not exist"""
        async with self.connection() as conn:
            async with conn.cursor() as cur:
                await cur.execute(SCHEMA_SQL)
            await conn.commit()
        logger.info("Database schema verified")


# Global database instance
db = Database()
