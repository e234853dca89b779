"""
Async engine and session management.

The engine is created lazily from settings so tests and tools can point the
whole application (routes, sweeper, WebSocket snapshots) at another database
with init_engine().
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, AsyncIterator, Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from app.core.config import get_settings

_engine: Optional[AsyncEngine] = None
_sessionmaker: Optional[async_sessionmaker] = None


def _build_engine(url: str) -> AsyncEngine:
    settings = get_settings()
    if url.startswith("sqlite"):
        # SQLite serializes writers; wait for the write lock instead of failing fast
        return create_async_engine(url, echo=False, connect_args={"timeout": 30})

    return create_async_engine(
        url,
        echo=settings.DEBUG,
        pool_pre_ping=True,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_timeout=settings.DB_POOL_TIMEOUT,
        pool_recycle=settings.DB_POOL_RECYCLE,
    )


def init_engine(url: Optional[str] = None) -> AsyncEngine:
    global _engine, _sessionmaker
    _engine = _build_engine(url or get_settings().DATABASE_URL)
    _sessionmaker = async_sessionmaker(
        _engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    return _engine


def get_engine() -> AsyncEngine:
    if _engine is None:
        init_engine()
    return _engine


def get_sessionmaker() -> async_sessionmaker:
    if _sessionmaker is None:
        init_engine()
    return _sessionmaker


async def dispose_engine() -> None:
    global _engine, _sessionmaker
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _sessionmaker = None


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: one session per request, rolled back if left open."""
    async with get_sessionmaker()() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


@asynccontextmanager
async def unit_of_work(db: AsyncSession) -> AsyncIterator[AsyncSession]:
    """
    Atomic boundary for a seat transition.

    Commits when the block exits cleanly. Any exception (a failed CAS
    included) rolls back every statement issued inside the block, so a
    rejected batch never leaves a partially applied state behind.
    """
    try:
        yield db
        await db.commit()
    except BaseException:
        await db.rollback()
        raise
