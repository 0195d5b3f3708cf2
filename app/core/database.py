"""
Database configuration and session management

The dropship integration holds sessions briefly: one per request for the
catalog lookups, and one per token load/save or stock sync batch. Both paths
go through get_db_session so they share commit/rollback rules.
"""
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict

from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base

from app.core.config import Settings, settings

DEV_POOL_SIZE = 2
DEV_MAX_OVERFLOW = 5


def engine_options(config: Settings = settings) -> Dict[str, Any]:
    """Pool options: configured sizes in production, a small capped pool elsewhere."""
    options: Dict[str, Any] = {
        "echo": config.DEBUG,
        "pool_pre_ping": True,
    }
    if config.is_production:
        options.update(
            pool_size=config.DB_POOL_SIZE,
            max_overflow=config.DB_MAX_OVERFLOW,
            pool_recycle=config.DB_POOL_RECYCLE,
        )
    else:
        options.update(
            pool_size=min(config.DB_POOL_SIZE, DEV_POOL_SIZE),
            max_overflow=min(config.DB_MAX_OVERFLOW, DEV_MAX_OVERFLOW),
        )
    return options


engine = create_async_engine(settings.DATABASE_URL, **engine_options())

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)

Base = declarative_base()


@asynccontextmanager
async def get_db_session() -> AsyncIterator[AsyncSession]:
    """
    Session that commits on success and rolls back on error.

    Usage:
        async with get_db_session() as db:
            result = await db.execute(...)
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_db() -> AsyncIterator[AsyncSession]:
    """FastAPI dependency wrapping get_db_session."""
    async with get_db_session() as session:
        yield session
