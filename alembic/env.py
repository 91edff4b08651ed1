"""Alembic migration environment running on the application's async engine settings."""

import asyncio
from logging.config import fileConfig
from typing import Any

from alembic import context
from sqlalchemy import pool, text
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import async_engine_from_config

import clinic_security.models  # noqa: F401
from clinic_security.core.config import get_settings
from clinic_security.models.base import Base

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

settings = get_settings()
target_metadata = Base.metadata


def _configure_and_run(*, schema: str | None, **options: Any) -> None:
    if schema is not None:
        options["version_table_schema"] = schema
    context.configure(target_metadata=target_metadata, compare_type=True, **options)
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_offline() -> None:
    """Emit SQL for the pending revisions without connecting."""
    _configure_and_run(
        schema=settings.database_schema,
        url=settings.database_url,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )


def _run_on_connection(connection: Connection) -> None:
    dialect = connection.dialect.name
    schema = settings.database_schema if dialect == "postgresql" else None
    if schema is not None:
        connection.execute(text(f'SET search_path TO "{schema}", public'))
    # SQLite cannot ALTER most constraints in place
    _configure_and_run(schema=schema, connection=connection, render_as_batch=dialect == "sqlite")


async def run_migrations_online() -> None:
    """Apply pending revisions over a throwaway async engine."""
    section = config.get_section(config.config_ini_section, {})
    section["sqlalchemy.url"] = settings.database_url
    engine = async_engine_from_config(section, prefix="sqlalchemy.", poolclass=pool.NullPool)

    try:
        async with engine.connect() as connection:
            if connection.dialect.name == "postgresql" and settings.database_schema is not None:
                await connection.execute(text(f'CREATE SCHEMA IF NOT EXISTS "{settings.database_schema}"'))
                await connection.commit()
            await connection.run_sync(_run_on_connection)
    finally:
        await engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
