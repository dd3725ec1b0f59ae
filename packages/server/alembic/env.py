"""Alembic environment configuration.

URL resolution: TEAMUP_DATABASE_URL_MIGRATIONS > TEAMUP_DATABASE_URL > alembic.ini.
Online migrations run through the application's async engine builder.
"""

import asyncio
import os
from logging.config import fileConfig

from alembic import context
from sqlmodel import SQLModel

import teamup.models  # noqa: F401
from teamup.core.database import build_engine

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = SQLModel.metadata

database_url = (
    os.getenv("TEAMUP_DATABASE_URL_MIGRATIONS")
    or os.getenv("TEAMUP_DATABASE_URL")
    or config.get_main_option("sqlalchemy.url")
)

if not database_url:
    raise ValueError(
        "Database URL not configured. "
        "Set TEAMUP_DATABASE_URL_MIGRATIONS or TEAMUP_DATABASE_URL, "
        "or configure sqlalchemy.url in alembic.ini."
    )

config.set_main_option("sqlalchemy.url", database_url)


def run_migrations_offline() -> None:
    """Emit SQL without connecting."""
    context.configure(
        url=config.get_main_option("sqlalchemy.url"),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def _run_sync_migrations(connection) -> None:
    context.configure(connection=connection, target_metadata=target_metadata)

    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online() -> None:
    connectable = build_engine(database_url)

    async with connectable.connect() as connection:
        await connection.run_sync(_run_sync_migrations)

    await connectable.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
