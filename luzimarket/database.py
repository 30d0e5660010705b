"""
database.py: async engine, session factory and the per-request session.

Request handlers never see an AsyncSession directly; they get a Store from
luzimarket.dependencies.get_store, which wraps the session yielded by
get_db(). Startup code (catalog seeding) opens its own session from
AsyncSessionLocal and commits it explicitly.
"""
from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from luzimarket.config import settings


class Base(DeclarativeBase):
    """Metadata root for every table in luzimarket/models/ and alembic/env.py."""


async_engine = create_async_engine(
    settings.database_url,
    # Debug only: bound params include password and token digests
    echo=settings.debug,
    pool_size=5,
    max_overflow=10,
    pool_pre_ping=True,
)

AsyncSessionLocal = async_sessionmaker(
    bind=async_engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """One transaction per request: committed when the handler returns, rolled back if it raises."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def dispose_engine() -> None:
    await async_engine.dispose()
