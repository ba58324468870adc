"""
Database engine and session management.

Lifecycle:
  1. The first call to get_engine() creates the process-wide AsyncEngine
     under a lock; later calls return the same instance.
  2. Pool discipline is explicit: pool_size + max_overflow caps concurrent
     connections, pool_timeout bounds the wait for a free one, pool_recycle
     caps connection lifetime and pool_pre_ping drops dead connections.
  3. dispose_engine() closes every pooled connection; called from the
     FastAPI lifespan shutdown and after each Celery task's event loop.

Nothing in the application imports the engine ambiently: services receive
the session factory (or repositories built on it) by injection.
"""

from __future__ import annotations

import logging
import threading
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from docuquery.core.config import settings

logger = logging.getLogger(__name__)

_engine_lock = threading.Lock()
_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

def get_engine() -> AsyncEngine:
    """Return the process-wide engine, creating it on first use."""
    global _engine, _session_factory
    if _engine is not None:
        return _engine

    with _engine_lock:
        if _engine is None:
            _engine = create_async_engine(
                settings.database_url,
                pool_size=settings.db_pool_size,
                max_overflow=settings.db_max_overflow,
                pool_timeout=settings.db_pool_timeout,
                pool_recycle=settings.db_pool_recycle,
                pool_pre_ping=True,
                echo=settings.db_echo_sql,
                connect_args={"timeout": settings.db_connect_timeout},
            )
            # expire_on_commit=False keeps ORM objects usable after commit
            _session_factory = async_sessionmaker(
                bind=_engine,
                class_=AsyncSession,
                expire_on_commit=False,
                autoflush=False,
            )
            logger.info(
                "DB engine created | pool_size=%d max_overflow=%d recycle=%ds",
                settings.db_pool_size, settings.db_max_overflow, settings.db_pool_recycle,
            )
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    get_engine()
    assert _session_factory is not None
    return _session_factory


async def dispose_engine() -> None:
    """Close all pooled connections and forget the engine."""
    global _engine, _session_factory
    with _engine_lock:
        engine, _engine, _session_factory = _engine, None, None
    if engine is not None:
        await engine.dispose()
        logger.info("DB engine disposed")


@asynccontextmanager
async def session_scope() -> AsyncGenerator[AsyncSession, None]:
    """One transaction: commits on success, rolls back on error."""
    async with get_session_factory()() as session:
        async with session.begin():
            yield session


# ---------------------------------------------------------------------------
# Health check helper
# ---------------------------------------------------------------------------

async def check_db_health() -> dict:
    """Ping the database; used by /health endpoint."""
    try:
        async with get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
        return {"status": "ok"}
    except Exception as exc:
        logger.error("DB health check failed: %s", exc)
        return {"status": "error", "detail": str(exc)}
