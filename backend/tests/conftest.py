"""
Pytest fixtures for test database, client, and authentication.

Each test gets a freshly created schema. By default this is a file-backed
SQLite database in the test's tmp dir; set TEST_DATABASE_URL to run the
suite (including the multi-connection race tests) against PostgreSQL.
"""

import os

# Must be set before app settings are first read
os.environ.setdefault("REDIS_ENABLED", "false")
os.environ.setdefault("SWEEPER_ENABLED", "false")

from typing import AsyncGenerator

import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession

from app.main import app
from app.db.base import Base
from app.db.session import dispose_engine, get_sessionmaker, init_engine
from app.models.event import Event
from tests.helpers import TEST_DATABASE_URL, create_event, event_seat_ids, make_headers


@pytest_asyncio.fixture(scope="function")
async def engine(tmp_path):
    """Point the application at a fresh schema for this test."""
    url = TEST_DATABASE_URL or f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"
    engine = init_engine(url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await dispose_engine()


@pytest_asyncio.fixture(scope="function")
async def db_session(engine) -> AsyncGenerator[AsyncSession, None]:
    async with get_sessionmaker()() as session:
        yield session


@pytest_asyncio.fixture(scope="function")
async def client(engine) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client; requests use their own sessions against the test database."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest_asyncio.fixture
async def auth_headers() -> dict:
    return make_headers("user-1")


@pytest_asyncio.fixture
async def other_headers() -> dict:
    return make_headers("user-2")


@pytest_asyncio.fixture
async def admin_headers() -> dict:
    return make_headers("admin-1", role="admin")


@pytest_asyncio.fixture
async def test_event(db_session: AsyncSession) -> Event:
    """Event with sections A (10 x 50.00) and B (10 x 80.00)."""
    return await create_event(db_session)


@pytest_asyncio.fixture
async def seat_ids(db_session: AsyncSession, test_event: Event) -> list[int]:
    return await event_seat_ids(db_session, test_event.id)
