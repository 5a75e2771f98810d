"""Database engine and session handling.

The hosted store owns the schema; init_db() only fills in missing mirror
tables for local development databases.
"""

from collections.abc import AsyncGenerator, AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from employer_dedup.config import settings
from employer_dedup.models import Base

engine = create_async_engine(
    settings.database_url,
    echo=settings.database_echo,
    pool_pre_ping=True,
)

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: one session per request, never committed."""
    async with async_session_factory() as session:
        yield session


@asynccontextmanager
async def unit_of_work() -> AsyncIterator[AsyncSession]:
    """Session that commits when the block completes and rolls back if it raises.

    Per-item savepoints opened inside the block (SqlCanonicalStore.item_scope)
    are released into this outer transaction.
    """
    async with async_session_factory() as session:
        try:
            yield session
        except BaseException:
            await session.rollback()
            raise
        await session.commit()


async def init_db() -> None:
    """Create any missing tables mirrored from the hosted store."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
