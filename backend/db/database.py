"""Async engine and session factories.

The API process uses the module-level ``engine`` and ``AsyncSessionLocal``.
Celery tasks run each job in a fresh event loop and must not touch that
pool, so they open their own engine with ``worker_session_factory``.
"""

from contextlib import asynccontextmanager
from typing import Optional

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine

from app.config import get_settings

settings = get_settings()


def _sqlite_foreign_keys(dbapi_connection, connection_record):
    # ON DELETE CASCADE for schedules and continuations needs this per connection
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_db_engine(database_url: Optional[str] = None) -> AsyncEngine:
    """Engine for ``database_url`` (default ``DATABASE_URL``)."""
    url = database_url or settings.DATABASE_URL
    if url.startswith("sqlite"):
        db_engine = create_async_engine(url, echo=settings.SQLALCHEMY_ECHO)
        event.listen(db_engine.sync_engine, "connect", _sqlite_foreign_keys)
        return db_engine

    return create_async_engine(
        url,
        echo=settings.SQLALCHEMY_ECHO,
        pool_pre_ping=True,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
    )


def create_session_factory(db_engine: AsyncEngine) -> async_sessionmaker:
    # Services return instances after commit, so they must not expire
    return async_sessionmaker(db_engine, expire_on_commit=False, autoflush=False)


engine = create_db_engine()
AsyncSessionLocal = create_session_factory(engine)


async def init_db(target_engine: Optional[AsyncEngine] = None) -> None:
    """Create any missing tables."""
    from db.base import Base
    import db.models  # noqa: F401

    async with (target_engine or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    await engine.dispose()


@asynccontextmanager
async def worker_session_factory(database_url: Optional[str] = None):
    """Yield a session factory bound to a throwaway engine."""
    worker_engine = create_db_engine(database_url)
    try:
        yield create_session_factory(worker_engine)
    finally:
        await worker_engine.dispose()
