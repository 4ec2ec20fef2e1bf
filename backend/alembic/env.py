"""
Alembic Environment Configuration for ContractEar

Customized for:
- Async SQLAlchemy/SQLModel
- DATABASE_URL taken from the application settings
- Exclude Supabase system tables from autogenerate
"""

import asyncio
import os
import sys
from logging.config import fileConfig

from sqlalchemy import pool
from sqlalchemy.ext.asyncio import create_async_engine
from alembic import context

# Add the backend directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.config.settings import get_settings
from sqlmodel import SQLModel

# Register every table with SQLModel.metadata
import app.infrastructure.db.models  # noqa: F401,E402

# Alembic Config object
config = context.config

# Interpret the config file for Python logging
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# SQLModel metadata for autogenerate
target_metadata = SQLModel.metadata

# Supabase-managed schemas never belong to this service
EXCLUDED_SCHEMAS = ("auth", "storage", "realtime", "extensions", "graphql", "graphql_public")


def include_object(object, name, type_, reflected, compare_to):
    """Filter objects for autogenerate."""
    if type_ == "table":
        if getattr(object, "schema", None) in EXCLUDED_SCHEMAS:
            return False
        # Only tables this service declares
        if reflected and name not in target_metadata.tables:
            return False
    return True


def get_url() -> str:
    """Database URL (already normalized to an async driver by Settings)."""
    return get_settings().database_url


def run_migrations_offline() -> None:
    """
    Run migrations in 'offline' mode.

    Generates SQL script without database connection.
    """
    context.configure(
        url=get_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        include_object=include_object,
        compare_type=True,
    )

    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection):
    """Run migrations with connection."""
    context.configure(
        connection=connection,
        target_metadata=target_metadata,
        include_object=include_object,
        compare_type=True,
        render_as_batch=connection.dialect.name == "sqlite",
    )

    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online() -> None:
    """
    Run migrations in 'online' mode with async engine.
    """
    connectable = create_async_engine(
        get_url(),
        poolclass=pool.NullPool,
    )

    async with connectable.connect() as connection:
        await connection.run_sync(do_run_migrations)

    await connectable.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
