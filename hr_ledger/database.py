"""Async SQLAlchemy engine, declarative base and session dependencies.

Reads go through ``get_db`` (one session per request). Ledger writes take
the factory from ``get_session_factory`` because ``run_ledger_write`` opens
a fresh session for every retry attempt.
"""

from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from hr_ledger.config import settings

# READ COMMITTED plus explicit row locks (FOR UPDATE, atomic balance UPDATE)
# is what the ledger's write paths are written against.
engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.DB_ECHO,
    pool_size=settings.DB_POOL_SIZE,
    max_overflow=settings.DB_MAX_OVERFLOW,
    pool_pre_ping=True,
    isolation_level="READ COMMITTED",
)

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    pass


async def get_db() -> AsyncIterator[AsyncSession]:
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def get_session_factory() -> async_sessionmaker:
    return async_session_factory
