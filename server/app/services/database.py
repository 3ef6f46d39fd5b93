"""Database connection and session management."""

import logging
from typing import AsyncIterator, Optional

from app.config import settings
from app.models.base import Base
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

logger = logging.getLogger(__name__)

engine: Optional[AsyncEngine] = None
async_session_maker: Optional[async_sessionmaker] = None


async def init_db(database_url: Optional[str] = None, **engine_kwargs):
    """Initialize database engine and create tables."""
    global engine, async_session_maker

    url = database_url or settings.DATABASE_URL
    options = {"echo": settings.DEBUG, "future": True}
    if not url.startswith("sqlite"):
        options["pool_pre_ping"] = True
    options.update(engine_kwargs)

    engine = create_async_engine(url, **options)

    async_session_maker = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    # Create tables if they don't exist
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    logger.info(f"Database initialized ({engine.dialect.name})")


async def close_db():
    """Close database engine."""
    global engine
    if engine:
        await engine.dispose()
        engine = None


def get_session_maker() -> async_sessionmaker:
    """Session factory for code running outside a request (worker jobs, scripts)."""
    if async_session_maker is None:
        raise RuntimeError("Database not initialized - call init_db() first")
    return async_session_maker


async def get_db() -> AsyncIterator[AsyncSession]:
    """Get database session."""
    async with get_session_maker()() as session:
        yield session


async def check_db_health(db: AsyncSession) -> bool:
    try:
        await db.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return False
