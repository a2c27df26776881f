"""Async engine, session factory and the per-request session dependency."""
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from raktdaan.config import get_settings

settings = get_settings()


class Base(DeclarativeBase):
    pass


def build_engine(pool_size: int, max_overflow: int) -> tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    """Engine plus a session factory that keeps loaded rows usable after commit."""
    eng = create_async_engine(
        settings.DATABASE_URL,
        echo=settings.DEBUG,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_pre_ping=True,
    )
    return eng, async_sessionmaker(eng, class_=AsyncSession, expire_on_commit=False)


engine, async_session = build_engine(settings.DB_POOL_SIZE, settings.DB_MAX_OVERFLOW)


async def get_db() -> AsyncIterator[AsyncSession]:
    """One transaction per request: commit on success, roll back on any error."""
    async with async_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
