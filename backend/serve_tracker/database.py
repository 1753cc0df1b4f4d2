"""
Serve Tracker Backend — Local Cache Database
==============================================

What:  Async SQLAlchemy engine and session factory for the local durable cache.
How:   `create_engine_and_sessions()` builds an engine plus a session factory
       from a URL; the container owns both and disposes the engine on shutdown.
Who:   Used by LocalCache (services/local_cache.py) and the app lifespan.

The local cache is the only database this process owns. The remote
document store is reached through clients/, never through SQLAlchemy.
Default driver is aiosqlite so the cache survives restarts without any
server to run.
"""

from typing import Tuple

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy ORM models (shared metadata)."""
    pass


def create_engine_and_sessions(
    database_url: str,
    echo: bool = False,
) -> Tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    """
    Create the async engine and a session factory bound to it.

    expire_on_commit=False keeps loaded rows readable after commit,
    outside the session context.
    """
    engine = create_async_engine(database_url, echo=echo)
    session_factory = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    return engine, session_factory


async def create_tables(engine: AsyncEngine) -> None:
    """
    What:  Creates the cache tables if they do not exist yet.
    When:  Application startup and test fixtures.
    """
    # Import models so they register with Base.metadata
    from serve_tracker.models import cache_entry  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def dispose_engine(engine: AsyncEngine) -> None:
    """Gracefully closes all pooled connections (application shutdown)."""
    await engine.dispose()
