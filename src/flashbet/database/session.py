"""Async database session management."""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from flashbet.config import get_settings

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def create_engine(dsn: str | None = None, *, echo: bool | None = None) -> AsyncEngine:
    """Build a new engine, defaulting to the configured DSN."""

    settings = get_settings().database
    return create_async_engine(
        dsn or settings.dsn,
        echo=settings.echo if echo is None else echo,
        future=True,
    )


def get_engine() -> AsyncEngine:
    """Return a cached async SQLAlchemy engine."""

    global _engine, _session_factory
    if _engine is None:
        _engine = create_engine()
        _session_factory = async_sessionmaker(_engine, expire_on_commit=False)
    return _engine


def async_session_factory() -> async_sessionmaker[AsyncSession]:
    """Return cached session factory."""

    global _session_factory
    if _session_factory is None:
        get_engine()
    assert _session_factory is not None
    return _session_factory


async def dispose_engine() -> None:
    """Dispose the cached engine so the next call reconnects."""

    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None


__all__ = ["async_session_factory", "create_engine", "dispose_engine", "get_engine"]
