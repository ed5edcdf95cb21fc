"""Alembic env: migrates the studybot tables over the sync sqlite driver."""
from logging.config import fileConfig
import os

from alembic import context
from sqlalchemy import engine_from_config, pool

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

from studybot.db.base import Base  # noqa: E402
from studybot.core.config import get_settings  # noqa: E402

target_metadata = Base.metadata


def _to_sync_url(url: str) -> str:
    # the app runs on aiosqlite; migrations use the stdlib sqlite3 driver
    return url.replace("sqlite+aiosqlite://", "sqlite://", 1)


def get_url() -> str:
    # ALEMBIC_DATABASE_URL wins, then the app's own database_url
    return os.getenv("ALEMBIC_DATABASE_URL") or _to_sync_url(get_settings().database_url)


def _configure(**kwargs) -> None:
    # sqlite cannot ALTER most columns in place; batch mode rebuilds the table
    context.configure(
        target_metadata=target_metadata,
        compare_type=True,
        render_as_batch=get_url().startswith("sqlite"),
        **kwargs,
    )


def run_migrations_offline() -> None:
    _configure(url=get_url(), literal_binds=True, dialect_opts={"paramstyle": "named"})
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    configuration = config.get_section(config.config_ini_section) or {}
    configuration["sqlalchemy.url"] = get_url()
    connectable = engine_from_config(configuration, prefix="sqlalchemy.", poolclass=pool.NullPool)

    with connectable.connect() as connection:
        _configure(connection=connection)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
