"""Alembic environment for the discovery, prospect, feedback and run tables."""

from __future__ import annotations

import logging
import os
from logging.config import fileConfig

from alembic import context
from sqlalchemy import create_engine, pool
from sqlalchemy.engine.url import make_url
from sqlmodel import SQLModel

from app.config import settings
from app.core.database import coerce_sync_database_url
from app.models import records

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

logger = logging.getLogger("warm_signal.alembic")
target_metadata = SQLModel.metadata

MANAGED_TABLES = frozenset(
    model.__tablename__
    for model in (records.DiscoveryRecord, records.ProspectRecord, records.FeedbackRecord, records.ListenerRunRecord)
)


def _include_object(obj, name, type_, reflected, compare_to) -> bool:
    # Tables owned by other services in the same database are left alone.
    if type_ == "table":
        return name in MANAGED_TABLES
    return True


def _database_url() -> tuple[str, dict, str]:
    """First configured URL wins: DATABASE_URL, then alembic.ini, then app settings."""
    for source, value in (
        ("environment", os.environ.get("DATABASE_URL")),
        ("alembic.ini", config.get_main_option("sqlalchemy.url")),
        ("settings", settings.database_url),
    ):
        if value:
            url, connect_args, drivername = coerce_sync_database_url(make_url(value))
            logger.info(
                "migrations.database_url",
                extra={"source": source, "url": make_url(url).render_as_string(hide_password=True)},
            )
            return url, connect_args, drivername
    raise RuntimeError("DATABASE_URL must be set to run migrations.")


def _configure(**kwargs) -> None:
    context.configure(
        target_metadata=target_metadata,
        compare_type=True,
        include_object=_include_object,
        **kwargs,
    )


def run_migrations_offline() -> None:
    url, _, drivername = _database_url()
    _configure(
        url=url,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        render_as_batch=drivername.startswith("sqlite"),
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    url, connect_args, drivername = _database_url()
    connectable = create_engine(url, connect_args=connect_args, poolclass=pool.NullPool)
    try:
        with connectable.connect() as connection:
            _configure(connection=connection, render_as_batch=drivername.startswith("sqlite"))
            with context.begin_transaction():
                context.run_migrations()
    finally:
        connectable.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
