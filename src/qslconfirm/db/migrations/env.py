"""Alembic environment for the QSL Confirm schema.

The database URL comes from DatabaseSettings (QSLCONFIRM_DATABASE__URL)
when it is set and from alembic.ini otherwise. Either way it is pointed at
the psycopg driver the application uses, and online migrations run on the
same async engine type as the app.
"""

import asyncio
from logging.config import fileConfig

from alembic import context
from pydantic import ValidationError
from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import create_async_engine

from qslconfirm.core.config import DatabaseSettings
from qslconfirm.db import async_driver_url
from qslconfirm.db.models import Base

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def migration_url() -> str:
    try:
        url = str(DatabaseSettings().url)
    except ValidationError:
        url = config.get_main_option("sqlalchemy.url", "")
    return async_driver_url(url)


def _configure(**kwargs) -> None:
    context.configure(
        target_metadata=target_metadata,
        compare_type=True,
        compare_server_default=True,
        **kwargs,
    )


def run_migrations_offline() -> None:
    """Emit the migration SQL as a script instead of running it."""
    _configure(
        url=migration_url(),
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def _run_on(connection: Connection) -> None:
    _configure(connection=connection)
    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online() -> None:
    engine = create_async_engine(migration_url(), poolclass=pool.NullPool)
    try:
        async with engine.connect() as connection:
            await connection.run_sync(_run_on)
    finally:
        await engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
