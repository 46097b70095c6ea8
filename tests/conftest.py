"""Shared test fixtures - settings, a fixed clock, in-memory and SQLite stores, test client."""

import os

# Set env vars BEFORE importing engagement modules (config reads at import time)
os.environ.setdefault("ENGAGEMENT_DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ENGAGEMENT_TIMEZONE", "UTC")

from datetime import datetime, timezone

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from engagement.core.config import Settings
from engagement.core.database import get_db  # noqa: E402
from engagement.main import app  # noqa: E402
from engagement.models import Base
from engagement.services.engine import EngagementEngine
from engagement.services.sql_store import SQLAlchemyActivityStore
from engagement.services.store import InMemoryActivityStore

# Async SQLite engine for tests (in-memory, fast)
test_engine = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False)
TestSession = async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)

# Wednesday; the week containing it starts on Sunday 2025-01-12
NOW = datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def settings():
    """Settings pinned to UTC so calendar days match the fixed clock."""
    return Settings(timezone="UTC")


@pytest.fixture
def store():
    store = InMemoryActivityStore()
    store.add_student(1, "Asha")
    store.add_student(2, "Ben")
    store.add_student(3, "Chen")
    return store


@pytest.fixture
def engine(store, settings):
    return EngagementEngine(store, settings=settings)


@pytest.fixture
async def setup_db():
    """Create all tables before the test, drop after."""
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
async def db(setup_db):
    async with TestSession() as session:
        yield session


@pytest.fixture
def sql_store(db):
    return SQLAlchemyActivityStore(db)


async def _override_get_db():
    async with TestSession() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


@pytest.fixture
async def client(setup_db):
    """Async HTTP test client backed by the test SQLite database."""
    app.dependency_overrides[get_db] = _override_get_db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def seed(setup_db):
    """Commit a two-student roster plus any activity records, outside a request."""
    async def _seed(*records):
        async with TestSession() as session:
            store = SQLAlchemyActivityStore(session)
            await store.add_student(1, "Asha")
            await store.add_student(2, "Ben")
            if records:
                await store.add_activity(*records)
            await session.commit()
    return _seed
