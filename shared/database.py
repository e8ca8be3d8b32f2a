"""Async SQLAlchemy engine and session factory for the user store."""

from __future__ import annotations

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from shared.config import get_settings


def create_engine(database_url: str | None = None) -> AsyncEngine:
    """Create an async engine sized for one tick's bookkeeping writes."""
    url = database_url or get_settings().database_url
    return create_async_engine(
        url,
        echo=False,
        pool_size=10,
        max_overflow=10,
        pool_pre_ping=True,
        # Stale pooled connections are recycled before a tick can hit them
        pool_recycle=1800,
    )


def create_session_factory(engine: AsyncEngine | None = None) -> async_sessionmaker[AsyncSession]:
    if engine is None:
        engine = create_engine()
    # Profiles are read as plain dataclasses after commit
    return async_sessionmaker(engine, expire_on_commit=False)


# Default instances (lazy)
_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def get_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        _engine = create_engine()
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    global _session_factory
    if _session_factory is None:
        _session_factory = create_session_factory(get_engine())
    return _session_factory


async def dispose_engine() -> None:
    """Release pooled connections. Used on service shutdown and by the CLI."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None
