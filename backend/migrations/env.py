"""
Alembic environment configuration for async database migrations.

This module configures the Alembic migration environment with async support,
model registration, and migration context for both offline and online modes.
The database URL always comes from application settings, so alembic.ini
only carries script location and logging configuration.
"""

import asyncio
from logging.config import fileConfig

from alembic import context
from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import async_engine_from_config

from gigmarket.core.config import get_settings
from gigmarket.core.logging import get_logger
from gigmarket.database.base import Base

# Register every model with the metadata
import gigmarket.database.models  # noqa: F401,E402

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

settings = get_settings()
logger = get_logger(__name__)

target_metadata = Base.metadata

DATABASE_URL = settings.database_url
config.set_main_option("sqlalchemy.url", DATABASE_URL)


def _driver(url: str) -> str:
    return url.split("://", 1)[0]


def run_migrations_offline() -> None:
    """
    Run migrations in 'offline' mode.

    Configures the context with just a URL and emits SQL to the script
    output instead of executing it.
    """
    logger.info("Running migrations in offline mode", driver=_driver(DATABASE_URL))

    context.configure(
        url=DATABASE_URL,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
    )

    with context.begin_transaction():
        context.run_migrations()
    logger.info("Offline migrations completed")


def do_run_migrations(connection: Connection) -> None:
    """Execute migrations on an open connection."""
    context.configure(
        connection=connection,
        target_metadata=target_metadata,
        compare_type=True,
        render_as_batch=connection.dialect.name == "sqlite",
        transaction_per_migration=True,
    )

    with context.begin_transaction():
        context.run_migrations()


async def run_async_migrations() -> None:
    """
    Run migrations in 'online' mode with an async engine.

    The engine uses NullPool so no connection outlives the migration run.
    """
    configuration = config.get_section(config.config_ini_section, {})
    configuration["sqlalchemy.url"] = DATABASE_URL

    connectable = async_engine_from_config(
        configuration,
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    try:
        async with connectable.connect() as connection:
            logger.info(
                "Database connection established for migrations",
                driver=_driver(DATABASE_URL),
            )
            await connection.run_sync(do_run_migrations)
    except Exception as e:
        logger.error(
            "Async migration failed",
            error=str(e),
            error_type=type(e).__name__,
        )
        raise
    finally:
        await connectable.dispose()

    logger.info("Online migrations completed")


def run_migrations_online() -> None:
    asyncio.run(run_async_migrations())


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
