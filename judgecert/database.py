"""
judgecert/database.py
Database configuration and the transaction scope used by every ledger write
"""
import os
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from dotenv import load_dotenv

# Import Base from orm.base to avoid circular imports
from judgecert.orm.base import Base
import judgecert.orm  # noqa: F401  ensures all models are registered
from judgecert.config.feature_flags import FeatureFlags

load_dotenv()

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./judgecert.db")

if not DATABASE_URL:
    raise ValueError("DATABASE_URL environment variable is not set")

# SQLite has different pool needs than PostgreSQL
if "sqlite" in DATABASE_URL.lower():
    engine = create_async_engine(
        DATABASE_URL,
        echo=FeatureFlags.DB_ECHO,
        pool_pre_ping=True,
        connect_args={
            "timeout": 30.0,   # SQLite busy timeout in seconds
        }
    )
else:
    engine = create_async_engine(
        DATABASE_URL,
        echo=FeatureFlags.DB_ECHO,
        pool_pre_ping=True,
        pool_size=20,
        max_overflow=30,
        pool_timeout=30,
        pool_recycle=3600,
    )

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def get_db():
    """Dependency for getting async database session"""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


@asynccontextmanager
async def atomic(db: AsyncSession) -> AsyncIterator[AsyncSession]:
    """
    Run a block of writes as one unit.

    Everything executed on ``db`` since its transaction began (reads included)
    commits together when the block exits cleanly. Any exception rolls the
    whole transaction back and propagates unchanged to the caller.
    """
    try:
        yield db
        await db.commit()
    except Exception:
        await db.rollback()
        raise


async def init_db():
    """Create all tables that do not exist yet."""
    logger.info("Initializing database...")
    try:
        logger.info(f"Database dialect: {engine.url.get_backend_name()}")
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database initialization complete")
    except Exception as e:
        logger.error(f"Database initialization failed: {str(e)}")
        raise


async def close_db():
    """Close database connection"""
    await engine.dispose()
    logger.info("Database connection closed")
