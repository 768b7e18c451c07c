"""
Database engine and sessions for FormSync.

Three kinds of callers open sessions:
- request handlers, through the get_db() dependency (commit on success, rollback on error)
- detached ingestion runs and the poller, through async_session_factory()
- the ingestion orchestrator, which takes any SessionFactory so tests can hand it an
  in-memory sessionmaker

expire_on_commit=False everywhere: ingestion commits per record and keeps reading the
objects it just committed.
"""
import logging
from typing import AsyncGenerator, Callable, Optional, Union

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

logger = logging.getLogger(__name__)

SessionFactory = Union[async_sessionmaker[AsyncSession], Callable[[], AsyncSession]]

_engine: Optional[AsyncEngine] = None
_sessionmaker: Optional[async_sessionmaker[AsyncSession]] = None


class Base(DeclarativeBase):
    pass


def get_engine() -> AsyncEngine:
    """Engine for DATABASE_URL, created on first use."""
    global _engine
    if _engine is None:
        from formsync.config import get_settings
        settings = get_settings()
        _engine = create_async_engine(
            settings.database_url,
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
            # the poller holds connections across long idle gaps
            pool_pre_ping=True,
            echo=settings.app_env == "development",
        )
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    global _sessionmaker
    if _sessionmaker is None:
        _sessionmaker = async_sessionmaker(
            get_engine(), class_=AsyncSession, expire_on_commit=False
        )
    return _sessionmaker


def async_session_factory() -> AsyncSession:
    """New session for work outside a request (ingestion runs, poller, scripts)."""
    return get_session_factory()()


async def dispose_engine() -> None:
    """Close pooled connections on shutdown. No-op if the engine was never created."""
    global _engine, _sessionmaker
    if _engine is None:
        return
    await _engine.dispose()
    _engine = None
    _sessionmaker = None
    logger.info("Database engine disposed")


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: one session per request, committed when the handler returns."""
    async with get_session_factory()() as session:
        try:
            yield session
            await session.commit()
        except Exception as e:
            logger.debug("Request transaction rolled back: %s", str(e))
            await session.rollback()
            raise
