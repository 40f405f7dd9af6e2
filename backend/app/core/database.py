"""Async engine and session handling for the ledger store.

Services receive an ``AsyncSession`` and own their commit boundaries. The API
gets one session per request through ``get_db``; ARQ jobs open their own
through ``get_session_factory()``.
"""

from typing import AsyncGenerator, Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import NullPool

# Models import this without touching the engine
Base = declarative_base()

_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def get_engine() -> AsyncEngine:
    """Create the engine on first use."""
    global _engine
    if _engine is None:
        from app.core.config import settings

        options = {"echo": settings.DATABASE_ECHO, "pool_pre_ping": True}
        if settings.ENVIRONMENT == "test":
            options["poolclass"] = NullPool
        else:
            options["pool_size"] = settings.DATABASE_POOL_SIZE

        _engine = create_async_engine(settings.DATABASE_URL, **options)
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Session factory shared by the API and the worker.

    Objects stay readable after commit, and nothing is flushed until a
    service asks for it.
    """
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(
            get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
    return _session_factory


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped session; anything still pending on error is rolled back."""
    async with get_session_factory()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def close_db() -> None:
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None


def enum_values(enum_cls) -> list[str]:
    """Persist str-enums by value (``"pending"``) instead of member name."""
    return [member.value for member in enum_cls]
