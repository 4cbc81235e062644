"""
Database engine and sessions for Tollgate.

PostgreSQL (asyncpg) in production; SQLite (aiosqlite) is accepted for
local use and tests. Mutating engine operations commit their own unit of
work through ``audited_mutation``, so request sessions never commit on
their own: whatever a request leaves open is rolled back on close.
"""

from collections.abc import AsyncGenerator
from typing import Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from tollgate.config import settings
from tollgate.logging_config import get_logger

logger = get_logger(__name__)

# Created in init_db() during application startup
_engine: AsyncEngine | None = None
_async_session_factory: async_sessionmaker[AsyncSession] | None = None


def normalize_database_url(url: str) -> str:
    """Select the async driver for plain ``postgresql://`` URLs."""
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return url


def build_engine(url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine; pooling options only apply to PostgreSQL."""
    url = normalize_database_url(url)
    engine_kwargs: dict[str, Any] = {"echo": echo, "pool_pre_ping": True}
    if not url.startswith("sqlite"):
        engine_kwargs.update(
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
        )
    return create_async_engine(url, **engine_kwargs)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # Engine operations read objects back after their own commit
    return async_sessionmaker(engine, expire_on_commit=False, autoflush=False)


async def init_db() -> None:
    global _engine, _async_session_factory  # noqa: PLW0603
    _engine = build_engine(settings.database_url, echo=settings.debug)
    _async_session_factory = build_session_factory(_engine)

    async with _engine.connect() as conn:
        await conn.execute(text("SELECT 1"))
    logger.info("Database connection established", dialect=_engine.dialect.name)


async def close_db() -> None:
    global _engine, _async_session_factory  # noqa: PLW0603
    if _engine is not None:
        logger.info("Closing database connection pool")
        await _engine.dispose()
        _engine = None
        _async_session_factory = None


async def get_db() -> AsyncGenerator[AsyncSession]:
    """
    Dependency that provides a request-scoped session.

    Usage:
        @router.get("/workspaces/{workspace_id}/roles")
        async def list_roles(db: AsyncSession = Depends(get_db)):
            ...
    """
    if _async_session_factory is None:
        raise RuntimeError("Database not initialized, call init_db() first")

    async with _async_session_factory() as session:
        yield session


async def get_db_health() -> bool:
    """Check database health for the readiness check."""
    if _engine is None:
        return False
    try:
        async with _engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        logger.error("Database health check failed", error=str(e))
        return False
    return True
