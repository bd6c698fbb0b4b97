"""
Async SQLAlchemy engine and session management (asyncpg in production).

One session per webhook request: handlers stage every write on it, and the
dependency commits once the response is built. Multi-step lead persistence
uses SAVEPOINTs inside that session, so a failed step never discards the
staging row or the audit log written alongside it.
CRITICAL: expire_on_commit=False prevents lazy-loading issues in async contexts.
"""
import logging
from typing import AsyncGenerator, Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

logger = logging.getLogger(__name__)

_engine: Optional[AsyncEngine] = None
_async_session_factory: Optional[async_sessionmaker] = None


class Base(DeclarativeBase):
    pass


def _get_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        from src.config import get_settings
        settings = get_settings()
        engine_kwargs = {"echo": settings.app_env == "development"}
        # SQLite (local dev) does not accept pool sizing arguments
        if not settings.database_url.startswith("sqlite"):
            engine_kwargs["pool_size"] = settings.database_pool_size
            engine_kwargs["max_overflow"] = settings.database_max_overflow
            engine_kwargs["pool_pre_ping"] = True
        _engine = create_async_engine(settings.database_url, **engine_kwargs)
    return _engine


def _get_session_factory() -> async_sessionmaker:
    global _async_session_factory
    if _async_session_factory is None:
        _async_session_factory = async_sessionmaker(
            _get_engine(), class_=AsyncSession, expire_on_commit=False
        )
    return _async_session_factory


def async_session_factory() -> AsyncSession:
    """Standalone session for scripts and maintenance tasks (non-FastAPI context)."""
    return _get_session_factory()()


async def create_all_tables() -> None:
    """Create every mapped table. Local development only - production uses Alembic."""
    import src.models  # noqa: F401  (registers mappers on Base.metadata)

    async with _get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def dispose_engine() -> None:
    """Close pooled connections on shutdown."""
    global _engine, _async_session_factory
    if _engine is not None:
        await _engine.dispose()
        logger.info("Database engine disposed")
    _engine = None
    _async_session_factory = None


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency that yields an async database session."""
    session_factory = _get_session_factory()
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception as e:
            logger.debug("Database session error, rolling back: %s", str(e))
            await session.rollback()
            raise
        finally:
            await session.close()
