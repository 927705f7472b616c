"""Async database engine and session management.

This module provides the async SQLAlchemy 2.0 engine configuration and the
session factory used by SqlTaskRegistry. The engine is created lazily so that
importing the package never requires DATABASE_URL (tests run entirely on the
in-memory registry or an in-memory SQLite engine).

Usage:
    from shortforge.database import get_session_factory

    session_factory = get_session_factory()
    registry = SqlTaskRegistry(session_factory)
"""

import os
from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from shortforge.config import get_database_url
from shortforge.models import Base

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def get_engine() -> AsyncEngine:
    """Return the process-wide engine, creating it on first use.

    Raises:
        ValueError: If DATABASE_URL is not set.
    """
    global _engine
    if _engine is None:
        url = get_database_url()
        kwargs: dict = {"echo": os.getenv("DATABASE_ECHO", "").lower() == "true"}
        if not url.startswith("sqlite"):
            kwargs.update(pool_size=10, max_overflow=5, pool_pre_ping=True)
        _engine = create_async_engine(url, **kwargs)
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Return the process-wide session factory bound to get_engine()."""
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(
            bind=get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,  # CRITICAL: prevents attribute expiration after commit
        )
    return _session_factory


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield a session with commit on success and rollback on exception.

    Yields:
        AsyncSession: Database session.
    """
    async with get_session_factory()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def dispose_engine() -> None:
    """Close all pooled connections (worker shutdown)."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None


def create_test_engine(
    database_url: str = "sqlite+aiosqlite:///:memory:",
) -> tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    """Create an async engine for testing.

    Args:
        database_url: Test database URL (defaults to in-memory SQLite).

    Returns:
        Tuple of (engine, async_session_factory) for testing.
    """
    # A single shared connection keeps one in-memory database across sessions
    test_engine = create_async_engine(
        database_url,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    test_session_factory = async_sessionmaker(
        bind=test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    return test_engine, test_session_factory


async def create_all(engine: AsyncEngine) -> None:
    """Create every table of Base.metadata (tests and local development)."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
