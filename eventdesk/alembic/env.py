from __future__ import annotations

from logging.config import fileConfig

from alembic import context
from sqlalchemy import create_engine

from eventdesk import database
from eventdesk.models import Base

config = context.config

# storage._alembic_config() points sqlalchemy.url at the live engine; fall back
# to the configured database for bare `alembic` invocations.
if not config.get_main_option("sqlalchemy.url"):
    config.set_main_option("sqlalchemy.url", str(database.DATABASE_URL))

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def _connectable():
    url = config.get_main_option("sqlalchemy.url")
    if str(database.engine.url) == url:
        return database.engine
    return create_engine(url, future=True)


def run_migrations_offline() -> None:
    """Run migrations in 'offline' mode."""
    url = config.get_main_option("sqlalchemy.url")
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        compare_type=True,
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations in 'online' mode."""
    connectable = _connectable()

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
            render_as_batch=connection.dialect.name == "sqlite",
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
