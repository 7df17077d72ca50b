"""
Database Connection Management
==============================

Async engine and session factory using SQLAlchemy AsyncIO (asyncpg in
production, aiosqlite in tests).

Repositories take the session factory rather than a session so that
concurrent operations never share one AsyncSession.
"""

import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from estimate_match.config.settings import Settings, get_settings
from estimate_match.db.models import Base
from estimate_match.utils.errors import DatabaseError
from estimate_match.utils.logger import get_logger

logger = get_logger(__name__)


def create_engine(database_url: str, settings: Settings | None = None) -> AsyncEngine:
    """
    Create an async engine for the given URL.

    Pool sizing applies to server databases only; SQLite uses the
    driver's default pool.
    """
    if database_url.startswith("sqlite"):
        return create_async_engine(database_url, echo=False)

    settings = settings or get_settings()
    return create_async_engine(
        database_url,
        echo=False,
        pool_size=settings.db_pool_min,
        max_overflow=max(0, settings.db_pool_max - settings.db_pool_min),
        pool_recycle=3600,
        pool_pre_ping=True,
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory with the repository defaults."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def create_tables(engine: AsyncEngine) -> None:
    """Create the engine-owned tables if they do not exist."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


class DatabaseManager:
    """
    Owns the engine and session factory for the application lifetime.

    Usage:
        db = await DatabaseManager.initialize(settings)
        repo = SqlPatternRepository(db.session_factory)
        ...
        await db.close()
    """

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine
        self._session_factory = create_session_factory(engine)

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        return self._session_factory

    @classmethod
    async def initialize(
        cls,
        settings: Settings | None = None,
        database_url: str | None = None,
    ) -> "DatabaseManager":
        """
        Create the engine and make sure the pattern tables exist.

        Raises:
            DatabaseError: If no URL is configured or initialization fails
        """
        settings = settings or get_settings()
        url = database_url or settings.database_url
        if not url:
            raise DatabaseError(
                message="Database URL not configured",
                details={"setting": "DATABASE_URL"},
            )

        try:
            logger.info("Initializing database", pool_min=settings.db_pool_min, pool_max=settings.db_pool_max)
            engine = create_engine(url, settings)
            await create_tables(engine)
            logger.info("Database initialized successfully")
            return cls(engine)
        except Exception as e:
            logger.error("Failed to initialize database", error=str(e))
            raise DatabaseError(
                message="Database initialization failed",
                details={"error": str(e)},
            ) from e

    async def close(self) -> None:
        """Dispose of the connection pool."""
        logger.info("Closing database connection pool")
        await self._engine.dispose()

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Session that commits on success and rolls back on error.

        Usage:
            async with db.session() as session:
                await session.execute(...)
        """
        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception as e:
                await session.rollback()
                logger.error("Database session error, rolled back", error=str(e))
                raise

    async def health_check(self) -> dict:
        """
        Check database connectivity.

        Returns:
            {"status": "healthy", "latency_ms": ...} or {"status": "unhealthy", "error": ...}
        """
        start = time.perf_counter()
        try:
            async with self._engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except Exception as e:
            return {"status": "unhealthy", "error": str(e)}

        return {
            "status": "healthy",
            "latency_ms": round((time.perf_counter() - start) * 1000, 2),
        }
