"""
PostgreSQL Async Database Client

Raw asyncpg pool used by the store and the scheduler lease table. Schema is
owned by the SQLAlchemy models and Alembic migrations.
"""

import asyncpg
import structlog

from activity_sync.config import get_settings

logger = structlog.get_logger()

_pool: asyncpg.Pool | None = None


async def init_db_pool() -> asyncpg.Pool:
    """Create the pool eagerly so startup fails fast on a bad DATABASE_URL."""
    pool = await get_db_pool()
    logger.info(
        "Database connection pool initialized",
        url=get_settings().database_url.split("@")[-1],
    )
    return pool


async def get_db_pool() -> asyncpg.Pool:
    """
    Get the asyncpg connection pool for raw SQL queries.

    Usage:
        pool = await get_db_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(...)
    """
    global _pool
    if _pool is None:
        settings = get_settings()
        # Accept SQLAlchemy-style URLs so one DATABASE_URL serves Alembic too.
        db_url = str(settings.database_url).replace("postgresql+asyncpg://", "postgresql://")
        min_size = max(1, int(settings.db_raw_pool_min_size))
        _pool = await asyncpg.create_pool(
            db_url,
            min_size=min_size,
            max_size=max(min_size, int(settings.db_raw_pool_max_size)),
        )
    return _pool


async def close_db_pool() -> None:
    """Close the asyncpg connection pool."""
    global _pool
    if _pool is not None:
        await _pool.close()
        _pool = None
        logger.info("Database connection pool closed")
