"""
Async engine and session management.

The engine is created on first use rather than at import, so tests and Celery
workers can swap ``DATABASE_URL`` (or dispose the engine per event loop)
before anything connects.
"""
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import AsyncAdaptedQueuePool, NullPool

from csi_portal.core.config import settings
from csi_portal.core.logging_config import logger
from csi_portal.db.tables import metadata

ASYNC_DRIVERS = {
    "postgresql://": "postgresql+asyncpg://",
    "sqlite:///": "sqlite+aiosqlite:///",
}

_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def get_database_url() -> str:
    """DATABASE_URL with a plain scheme swapped for its async driver"""
    url = settings.DATABASE_URL
    for plain, driver in ASYNC_DRIVERS.items():
        if url.startswith(plain):
            return driver + url[len(plain):]
    return url


def engine_options(url: str) -> Dict[str, Any]:
    """
    SQLite and development runs use NullPool (no connection shared across
    event loops); production servers get a pre-pinged queue pool.
    """
    options: Dict[str, Any] = {"echo": settings.DB_ECHO}
    if url.startswith("sqlite"):
        options.update(poolclass=NullPool, connect_args={"check_same_thread": False})
    elif settings.is_dev_mode():
        options.update(poolclass=NullPool)
    else:
        options.update(
            poolclass=AsyncAdaptedQueuePool,
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
            pool_timeout=settings.DB_POOL_TIMEOUT,
            pool_recycle=settings.DB_POOL_RECYCLE,
            pool_pre_ping=True,
        )
    return options


def get_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        url = get_database_url()
        _engine = create_async_engine(url, **engine_options(url))
        logger.info(f"[Database] Engine created ({url.split('://')[0]})")
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(
            get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
    return _session_factory


def AsyncSessionLocal() -> AsyncSession:
    """New session from the process-wide factory"""
    return get_session_factory()()


@asynccontextmanager
async def session_scope() -> AsyncGenerator[AsyncSession, None]:
    """Session committed on success and rolled back on error, for background work"""
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Request-scoped session.

    Repositories write through Core statements, so the whole request is one
    unit of work: committed when the handler returns, rolled back when it
    raises.
    """
    async with session_scope() as session:
        yield session


async def init_db() -> None:
    """Create every table that does not exist yet"""
    async with get_engine().begin() as conn:
        await conn.run_sync(metadata.create_all)


async def close_db() -> None:
    """Dispose the engine; the next use creates a fresh one"""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None
