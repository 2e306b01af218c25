"""Alembic environment for the KPI trigger engine.

Migrations run through the application's async engine factory, so the same
revision applies to PostgreSQL (asyncpg) and to a local SQLite file
(aiosqlite). The database URL comes from settings unless overridden with
``alembic -x database_url=... upgrade head``.
"""

import asyncio
from logging.config import fileConfig

from sqlalchemy.engine import Connection

from alembic import context
from src.config import settings
from src.db import models  # noqa: F401
from src.db.base import Base
from src.db.session import create_engine_for_url

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def _database_url() -> str:
    return context.get_x_argument(as_dictionary=True).get("database_url", settings.DATABASE_URL)


def _configure(**kwargs) -> None:
    # SQLite cannot ALTER most constraints in place.
    url = _database_url()
    context.configure(
        target_metadata=target_metadata,
        compare_type=True,
        render_as_batch=url.startswith("sqlite"),
        **kwargs,
    )


def run_migrations_offline() -> None:
    """Emit the migration SQL without connecting to a database."""
    _configure(url=_database_url(), literal_binds=True, dialect_opts={"paramstyle": "named"})
    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection: Connection) -> None:
    _configure(connection=connection)
    with context.begin_transaction():
        context.run_migrations()


async def run_async_migrations() -> None:
    """Run migrations over a single connection from the async engine."""
    connectable = create_engine_for_url(_database_url())
    try:
        async with connectable.connect() as connection:
            await connection.run_sync(do_run_migrations)
    finally:
        await connectable.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_async_migrations())
