"""Alembic environment for the event_log and user_trust tables.

The URL comes from Settings (DATABASE_URL or .env), with the async driver
swapped for its sync counterpart since Alembic runs synchronously:
    postgresql+asyncpg://...  →  postgresql://...   (psycopg2)
    sqlite+aiosqlite://...    →  sqlite://...

`alembic upgrade head --sql` renders the DDL without a connection.
"""
from logging.config import fileConfig

from sqlalchemy import engine_from_config, pool
from alembic import context

from app.core.config import get_settings
from app.models.database import Base
import app.models.event_log  # noqa: F401  registers the tables on Base.metadata

SYNC_DRIVERS = {
    "postgresql+asyncpg://": "postgresql://",
    "sqlite+aiosqlite://": "sqlite://",
}

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)


def sync_url(url: str) -> str:
    for async_prefix, sync_prefix in SYNC_DRIVERS.items():
        if url.startswith(async_prefix):
            return sync_prefix + url[len(async_prefix):]
    return url


config.set_main_option("sqlalchemy.url", sync_url(get_settings().database_url))
target_metadata = Base.metadata


def run_migrations_offline() -> None:
    context.configure(
        url=config.get_main_option("sqlalchemy.url"),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with connectable.connect() as connection:
        # event_log.payload is JSON on both backends; compare_type catches
        # a column drifting to TEXT
        context.configure(connection=connection, target_metadata=target_metadata, compare_type=True)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
