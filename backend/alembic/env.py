"""
Alembic environment configuration for database migrations

This module configures Alembic to work with our application models.
It uses the DATABASE_URL from voterpulse.config and supports both SQLite and PostgreSQL.

Note: Alembic runs synchronously, so async driver URLs are converted to sync ones.
"""
from logging.config import fileConfig

from sqlalchemy import pool, create_engine

from alembic import context

# Import Base and all models for autogenerate support
from voterpulse.db.database import Base
from voterpulse.db.database import (  # noqa: F401
    Organization,
    User,
    OrganizationMember,
    Voter,
    ElectionHistory,
    VoterList,
    VoterListMember,
    Script,
    Interaction,
    ImportJob
)

from voterpulse.config import config

alembic_config = context.config

# Interpret the config file for Python logging.
if alembic_config.config_file_name is not None:
    fileConfig(alembic_config.config_file_name)

target_metadata = Base.metadata

database_url = config.DATABASE_URL
sync_url = database_url.replace("sqlite+aiosqlite://", "sqlite://")
sync_url = sync_url.replace("postgresql+asyncpg://", "postgresql://")
alembic_config.set_main_option("sqlalchemy.url", sync_url)


def run_migrations_offline() -> None:
    """Run migrations in 'offline' mode (emit SQL without a connection)."""
    url = alembic_config.get_main_option("sqlalchemy.url")
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        render_as_batch=url.startswith("sqlite"),
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations in 'online' mode with a synchronous engine."""
    connectable = create_engine(
        sync_url,
        poolclass=pool.NullPool,
        echo=False,
    )

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
            compare_server_default=True,
            # SQLite cannot ALTER most constraints in place
            render_as_batch=connection.dialect.name == "sqlite",
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
