"""
Database connection pooling for the remote problem store.

Uses asyncpg for async PostgreSQL operations with plain SQL.
"""

from typing import Optional

import asyncpg

from .config import get_settings
from .errors import StorageUnavailableError
from .logging_config import get_logger

logger = get_logger("repeet.database")

# Global connection pool
_pool: Optional[asyncpg.Pool] = None


async def get_db_pool() -> asyncpg.Pool:
    """
    Get or create the database connection pool.

    Raises:
        StorageUnavailableError: DATABASE_URL is not configured.
    """
    global _pool

    if _pool is None:
        settings = get_settings()
        if not settings.database_url:
            raise StorageUnavailableError("DATABASE_URL environment variable is not set")

        _pool = await asyncpg.create_pool(
            settings.database_url,
            min_size=settings.db_pool_min_size,
            max_size=settings.db_pool_max_size,
            command_timeout=settings.db_command_timeout,
        )
        logger.info(
            "Database pool created",
            min_size=settings.db_pool_min_size,
            max_size=settings.db_pool_max_size,
        )

    return _pool


async def close_db_pool():
    """Close the database connection pool."""
    global _pool

    if _pool is not None:
        await _pool.close()
        _pool = None
        logger.info("Database pool closed")
