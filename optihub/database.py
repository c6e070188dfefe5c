"""Database configuration and session management."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from optihub.config.settings import settings

# Import models so they are attached to Base.metadata before table creation
from optihub.models import Base  # noqa: F401 - ensures metadata is registered

logger = logging.getLogger(__name__)


def build_engine(url: str | None = None) -> AsyncEngine:
    """Create an async engine with environment-appropriate pooling."""

    target_url = url or settings.database.url
    engine_options: dict[str, Any] = {
        "echo": settings.debug,
        "future": True,
        "pool_pre_ping": True,
    }

    if settings.database.serverless or settings.debug or target_url.startswith("sqlite"):
        # Disable pooling when working with serverless databases (or in debug).
        engine_options["poolclass"] = NullPool

    return create_async_engine(target_url, **engine_options)


def build_session_factory(target: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        target,
        expire_on_commit=False,
        class_=AsyncSession,
    )


engine: AsyncEngine = build_engine()

SessionFactory = build_session_factory(engine)


@asynccontextmanager
async def session_scope() -> AsyncIterator[AsyncSession]:
    """Async context manager that yields a configured SQLAlchemy session."""

    async with SessionFactory() as session:
        yield session


async def get_session() -> AsyncIterator[AsyncSession]:
    """FastAPI dependency-compatible generator yielding a configured session."""

    async with session_scope() as session:
        yield session


async def init_models(target: AsyncEngine | None = None) -> None:
    """Create database tables if they do not exist."""

    async with (target or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    logger.info("Ensured database tables in default schema.")


async def dispose_engine() -> None:
    """Dispose of the engine and release pooled connections."""

    await engine.dispose()
