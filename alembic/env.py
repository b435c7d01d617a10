"""Alembic environment for the lab-report schema.

Migrations run synchronously through psycopg2; the DSN comes from the same
resolver the service uses (labreport_service.db.DatabaseConfig).
"""

from logging.config import fileConfig

from sqlalchemy import engine_from_config, pool

from alembic import context
from labreport_service.db import DatabaseConfig

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

_URL = DatabaseConfig.get_connection_string(scheme="postgresql+psycopg2")


def run_migrations_offline() -> None:
    """Emit SQL to stdout without connecting."""
    context.configure(
        url=_URL,
        target_metadata=None,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    section = config.get_section(config.config_ini_section, {})
    section["sqlalchemy.url"] = _URL
    engine = engine_from_config(section, prefix="sqlalchemy.", poolclass=pool.NullPool)
    with engine.connect() as conn:
        context.configure(connection=conn, target_metadata=None)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
