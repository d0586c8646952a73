"""
Database connection management with SQLAlchemy async engine.

This module provides async database connection management using SQLAlchemy 2.0
with connection pooling, health checks, and proper error handling. The engine
is built from an explicit Settings instance at application start-up and then
shared through the session factory.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool, StaticPool

from gigmarket.core.config import Settings
from gigmarket.core.logging import get_logger
from gigmarket.database.base import Base

logger = get_logger(__name__)

_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def _convert_database_url_to_async(url: str) -> str:
    """
    Convert PostgreSQL URL to async format.

    Args:
        url: Database connection URL

    Returns:
        Async-compatible database URL
    """
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return url


def create_engine(settings: Settings) -> AsyncEngine:
    """
    Create async SQLAlchemy engine with connection pooling.

    SQLite in-memory databases share a single connection so every session
    sees the same data.

    Args:
        settings: Application settings

    Returns:
        Configured async SQLAlchemy engine
    """
    database_url = _convert_database_url_to_async(settings.database_url)

    if settings.uses_sqlite:
        in_memory = ":memory:" in database_url
        engine = create_async_engine(
            database_url,
            echo=settings.debug,
            poolclass=StaticPool if in_memory else NullPool,
            connect_args={"check_same_thread": False},
        )
    elif settings.is_test:
        engine = create_async_engine(
            database_url,
            echo=settings.debug,
            poolclass=NullPool,
        )
    else:
        engine = create_async_engine(
            database_url,
            echo=settings.debug,
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_pre_ping=True,
            pool_recycle=3600,
            connect_args={
                "server_settings": {
                    "application_name": settings.app_name,
                },
                "command_timeout": 60,
                "timeout": 10,
            },
        )

    logger.info(
        "Database engine created",
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        environment=settings.environment,
        dialect=engine.dialect.name,
    )

    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create a session factory bound to ``engine``."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


def init_database(settings: Settings) -> async_sessionmaker[AsyncSession]:
    """
    Initialize the shared engine and session factory.

    Safe to call more than once; the first call wins.

    Args:
        settings: Application settings

    Returns:
        Shared async session factory

    Raises:
        RuntimeError: If engine initialization fails
    """
    global _engine, _session_factory

    if _session_factory is None:
        try:
            _engine = create_engine(settings)
            _session_factory = create_session_factory(_engine)
            logger.info("Database session factory created")
        except Exception as e:
            logger.error(
                "Failed to create database engine",
                error=str(e),
                error_type=type(e).__name__,
            )
            raise RuntimeError(f"Database engine initialization failed: {e}") from e

    return _session_factory


def get_engine() -> AsyncEngine:
    """
    Get the shared async database engine.

    Raises:
        RuntimeError: If init_database has not been called
    """
    if _engine is None:
        raise RuntimeError("Database engine is not initialized")
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """
    Get the shared session factory.

    Raises:
        RuntimeError: If init_database has not been called
    """
    if _session_factory is None:
        raise RuntimeError("Database session factory is not initialized")
    return _session_factory


@asynccontextmanager
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Create async database session with automatic commit/rollback.

    Yields:
        Async database session
    """
    session = get_session_factory()()

    try:
        logger.debug("Database session created")
        yield session
        await session.commit()
        logger.debug("Database session committed")
    except Exception as e:
        await session.rollback()
        logger.error(
            "Database session rolled back",
            error=str(e),
            error_type=type(e).__name__,
        )
        raise
    finally:
        await session.close()
        logger.debug("Database session closed")


async def init_models(engine: Optional[AsyncEngine] = None) -> None:
    """
    Create all tables registered on the metadata.

    Used for development and test databases; production schemas are
    managed by Alembic.
    """
    # Register every model with the metadata
    import gigmarket.database.models  # noqa: F401

    engine = engine or get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables created", tables=sorted(Base.metadata.tables))


async def check_database_health(max_retries: int = 3, retry_delay: float = 1.0) -> bool:
    """
    Check database connectivity with retry logic.

    Args:
        max_retries: Maximum number of connection attempts
        retry_delay: Delay between retries in seconds

    Returns:
        True if database is healthy, False otherwise
    """
    for attempt in range(max_retries):
        try:
            engine = get_engine()
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
                logger.debug("Database health check passed", attempt=attempt + 1)
                return True
        except (OperationalError, DBAPIError) as e:
            logger.warning(
                "Database health check failed - connection error",
                attempt=attempt + 1,
                max_retries=max_retries,
                error=str(e),
            )
        except SQLAlchemyError as e:
            logger.error(
                "Database health check failed - SQLAlchemy error",
                attempt=attempt + 1,
                max_retries=max_retries,
                error=str(e),
                error_type=type(e).__name__,
            )
        except RuntimeError as e:
            logger.error("Database health check failed", error=str(e))
            return False

        if attempt < max_retries - 1:
            await asyncio.sleep(retry_delay * (2**attempt))

    logger.error("Database health check failed after all retries", max_retries=max_retries)
    return False


async def close_database_connections() -> None:
    """
    Close all database connections and dispose of the engine.

    Called during application shutdown.
    """
    global _engine, _session_factory

    if _engine is not None:
        try:
            await _engine.dispose()
            logger.info("Database connections closed and engine disposed")
        finally:
            _engine = None
            _session_factory = None
