"""Async SQLAlchemy engine and session factory.

One engine with connection pooling; HTTP routes get a session per request
via get_db(), socket handlers open one per command from
async_session_factory.
"""

from collections.abc import AsyncIterator

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from busnotify.config import settings

# Connection pool: min 5, max 20 connections.
# echo=True in dev to see SQL queries.
engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    pool_size=5,
    max_overflow=15,
)

# Session factory — each request (or socket command) gets its own session.
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_db() -> AsyncIterator[AsyncSession]:
    """FastAPI dependency — yields a session per request, auto-closes."""
    async with async_session_factory() as session:
        try:
            yield session
        finally:
            await session.close()


async def init_db() -> None:
    """Create all tables (development convenience; used by `busnotify init-db`)."""
    from busnotify.db.models import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
