"""Alembic environment for async SQLAlchemy migrations of the aggregate tables."""

import asyncio
from logging.config import fileConfig

from alembic import context
from sqlalchemy import pool, text
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import async_engine_from_config

from poll_geo_api.core.config import get_settings
from poll_geo_api.models import Base

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def _configure_kwargs(url: str) -> dict[str, object]:
    """Options shared by offline and online runs."""
    settings = get_settings()
    kwargs: dict[str, object] = {
        "target_metadata": target_metadata,
        "compare_type": True,
        # SQLite can only alter tables by copy-and-move
        "render_as_batch": url.startswith("sqlite"),
    }
    if settings.database_schema is not None:
        kwargs["version_table_schema"] = settings.database_schema
    return kwargs


def run_migrations_offline() -> None:
    """Emit migration SQL without a database connection."""
    url = get_settings().database_url
    context.configure(
        url=url,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **_configure_kwargs(url),
    )

    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection: Connection) -> None:
    """Run migrations synchronously within a connection."""
    schema = get_settings().database_schema
    if schema is not None:
        connection.execute(text(f'SET search_path TO "{schema}", public'))
    context.configure(connection=connection, **_configure_kwargs(str(connection.engine.url)))

    with context.begin_transaction():
        context.run_migrations()


async def run_async_migrations() -> None:
    """Open an async engine from settings and migrate through it."""
    settings = get_settings()
    configuration = config.get_section(config.config_ini_section, {})
    configuration["sqlalchemy.url"] = settings.database_url

    connectable = async_engine_from_config(configuration, prefix="sqlalchemy.", poolclass=pool.NullPool)

    async with connectable.connect() as connection:
        if settings.database_schema is not None:
            await connection.execute(text(f'CREATE SCHEMA IF NOT EXISTS "{settings.database_schema}"'))
            await connection.commit()
        await connection.run_sync(do_run_migrations)

    await connectable.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_async_migrations())
