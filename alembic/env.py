"""Alembic environment for the provisioning schema.

No SQLAlchemy models: migrations are hand-written op.* calls, so
target_metadata stays None.
"""

import logging

from alembic import context
from sqlalchemy import engine_from_config, pool

logger = logging.getLogger("alembic.env")

config = context.config
target_metadata = None


def _database_url() -> str:
    """sqlalchemy.url from alembic.ini / caller, else the app settings."""
    url = config.get_main_option("sqlalchemy.url")
    if url:
        return url

    from config.settings import get_settings
    db = get_settings().database
    if db.database_url:
        return db.database_url
    db.database_path.parent.mkdir(parents=True, exist_ok=True)
    return f"sqlite:///{db.database_path}"


def run_migrations_offline() -> None:
    context.configure(
        url=_database_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    section = config.get_section(config.config_ini_section, {})
    section["sqlalchemy.url"] = _database_url()
    connectable = engine_from_config(section, prefix="sqlalchemy.", poolclass=pool.NullPool)

    with connectable.connect() as connection:
        context.configure(connection=connection, target_metadata=target_metadata)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
