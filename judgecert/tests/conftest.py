"""
Shared fixtures for the certification workflow tests.

Each test gets its own in-memory SQLite database and a notifier that records
what it publishes.
"""
from types import SimpleNamespace
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from judgecert.config.feature_flags import FeatureFlags
from judgecert.orm import Base
from judgecert.realtime.broadcast_adapter import BroadcastAdapter
from judgecert.realtime.notifier import CertificationNotifier, set_notifier
from judgecert.tests.factories import seed_world


TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


# ============================================================================
# Database
# ============================================================================

@pytest_asyncio.fixture
async def engine():
    """Fresh in-memory database per test."""
    engine = create_async_engine(TEST_DATABASE_URL, poolclass=StaticPool, echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def db(engine) -> AsyncGenerator[AsyncSession, None]:
    session_factory = async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )
    async with session_factory() as session:
        yield session
        await session.rollback()


# ============================================================================
# Notifications and flags
# ============================================================================

class RecordingAdapter(BroadcastAdapter):
    """Keeps every published message for assertions."""

    def __init__(self):
        self.published = []

    async def publish(self, channel, message):
        self.validate_message(message)
        self.published.append((channel, message))

    async def subscribe(self, channel):
        for published_channel, message in list(self.published):
            if published_channel == channel:
                yield message

    async def close(self):
        self.published.clear()


@pytest.fixture
def recorder() -> RecordingAdapter:
    return RecordingAdapter()


@pytest.fixture(autouse=True)
def notifier(recorder):
    """Route every notification in the test through the recording adapter."""
    notifier = CertificationNotifier(recorder)
    set_notifier(notifier)
    yield notifier
    set_notifier(None)


@pytest.fixture(autouse=True)
def default_flags(monkeypatch):
    monkeypatch.setattr(FeatureFlags, "FEATURE_CERTIFICATION_EVENTS", True)
    monkeypatch.setattr(FeatureFlags, "FEATURE_RESET_UNLOCKS_SCORES", True)


# ============================================================================
# Seeded competition
# ============================================================================

@pytest_asyncio.fixture
async def world(db) -> SimpleNamespace:
    """The seeded competition from ``seed_world``, committed."""
    world = await seed_world(db)
    await db.commit()
    return world


# ============================================================================
# Concurrent sessions
# ============================================================================

@pytest_asyncio.fixture
async def shared_sessions(tmp_path) -> AsyncGenerator[async_sessionmaker, None]:
    """
    Session factory over a file-backed database, so independent sessions run
    on their own connections and contend for the same rows.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'shared.db'}",
        connect_args={"timeout": 30.0},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )

    await engine.dispose()
