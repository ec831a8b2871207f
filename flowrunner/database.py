"""
Database Connection Management

SQLAlchemy async engine and session factory for the SQL execution store.
"""

from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool, StaticPool

from flowrunner.config import settings
from flowrunner.logging_config import get_logger
from flowrunner.models import Base

logger = get_logger(__name__)

# Initialized in the FastAPI lifespan when STORE_BACKEND=database
engine: Optional[AsyncEngine] = None
AsyncSessionLocal: Optional[async_sessionmaker] = None


def create_engine(url: str, debug: bool = False) -> AsyncEngine:
    """
    Create an async engine for ``url``

    In-memory SQLite (tests) shares a single connection; everything else
    uses connection pooling, except in debug mode.
    """
    engine_kwargs = {
        "echo": debug,  # Log SQL queries in debug mode
    }

    if url.startswith("sqlite"):
        engine_kwargs["poolclass"] = StaticPool
        engine_kwargs["connect_args"] = {"check_same_thread": False}
    elif debug:
        # No connection pooling for development
        engine_kwargs["poolclass"] = NullPool
        engine_kwargs["pool_pre_ping"] = True
    else:
        engine_kwargs["pool_size"] = 20
        engine_kwargs["max_overflow"] = 40
        engine_kwargs["pool_pre_ping"] = True

    return create_async_engine(url, **engine_kwargs)


def create_session_factory(db_engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,  # Don't expire objects after commit
        autoflush=False,
    )


async def create_tables(db_engine: AsyncEngine) -> None:
    """Create all tables that do not exist yet."""
    async with db_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def init_db(url: Optional[str] = None) -> async_sessionmaker:
    """
    Initialize database connection and schema

    Called on application startup.

    Returns:
        Session factory bound to the new engine
    """
    global engine, AsyncSessionLocal

    url = url or settings.DATABASE_URL
    engine = create_engine(url, debug=settings.DEBUG)

    try:
        await create_tables(engine)
        logger.info("Database connection established", url=url.split("@")[-1])
    except Exception as e:
        logger.error("Failed to connect to database", error=str(e))
        await engine.dispose()
        engine = None
        raise

    AsyncSessionLocal = create_session_factory(engine)
    return AsyncSessionLocal


async def close_db() -> None:
    """
    Close database connection

    Called on application shutdown.
    """
    global engine, AsyncSessionLocal

    if engine is not None:
        await engine.dispose()
        logger.info("Database connection closed")
    engine = None
    AsyncSessionLocal = None
