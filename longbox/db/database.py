"""
Database engine and session management.

One async engine per process. The API opens a session per request; the sync
job opens its own around load and save.
"""

from collections.abc import AsyncGenerator

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from longbox.config import settings
from longbox.models.db import Base
from longbox.models.failure import KnownError

engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    pool_pre_ping=True,
)

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Request-scoped session, committed when the route returns.

    A route that fails with a known error after flushing graph changes rolls
    them back with the rest of the request.
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except (SQLAlchemyError, KnownError):
            await session.rollback()
            raise


async def init_db() -> None:
    """Create the series, issues, editions and ownership tables if missing."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
