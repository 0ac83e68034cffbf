# src/educrm/db/session.py
from __future__ import annotations

import os
from contextlib import asynccontextmanager
from typing import AsyncGenerator, AsyncIterator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from educrm.core.config import settings

# ---------------------------------------------------------------------------
# Engine configuration
# ---------------------------------------------------------------------------

DATABASE_URL: str = settings.DATABASE_URL or ""

# NullPool in tests (or when asked) so connections are never shared across loops
USE_NULLPOOL = (
    os.getenv("SQLALCHEMY_NULLPOOL", "0") == "1"
    or bool(settings.TESTING)
    or settings.is_sqlite
)

_engine_kwargs: dict = {
    "echo": bool(settings.DB_ECHO),
    "pool_pre_ping": True,  # protects against stale connections
}

if USE_NULLPOOL:
    _engine_kwargs["poolclass"] = NullPool
else:
    _engine_kwargs.update(
        pool_size=settings.DB_MAX_IDLE_CONNS,
        max_overflow=max(settings.DB_MAX_OPEN_CONNS - settings.DB_MAX_IDLE_CONNS, 0),
        pool_recycle=settings.DB_CONN_MAX_LIFETIME,
    )

engine: AsyncEngine = create_async_engine(DATABASE_URL, **_engine_kwargs)

AsyncSessionLocal: async_sessionmaker[AsyncSession] = async_sessionmaker(
    bind=engine,
    expire_on_commit=False,
    class_=AsyncSession,
)


def get_engine() -> AsyncEngine:
    """Expose the engine (e.g., for health checks / pings)."""
    return engine


def get_sessionmaker() -> async_sessionmaker[AsyncSession]:
    """Return the app-wide async sessionmaker."""
    return AsyncSessionLocal


# ---------------------------------------------------------------------------
# Session helpers
#   - session_scope: async context manager (background jobs, CLI)
#   - get_db: async generator (use with `Depends(get_db)`)
# ---------------------------------------------------------------------------

@asynccontextmanager
async def session_scope() -> AsyncIterator[AsyncSession]:
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except BaseException:
            await session.rollback()
            raise


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except BaseException:
            # covers request cancellation: an aborted request never commits
            await session.rollback()
            raise
