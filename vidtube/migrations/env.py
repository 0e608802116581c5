"""
vidtube/migrations/env.py — Alembic environment for the VidTube schema.

The database URL comes from DATABASE_URL, or TEST_DATABASE_URL when TEST_RUN
is set, after loading the project-root .env.
"""

from __future__ import annotations

import os
from logging.config import fileConfig
from pathlib import Path

from alembic import context
from dotenv import load_dotenv
from sqlalchemy import engine_from_config, pool

load_dotenv(Path(__file__).resolve().parents[2] / ".env")

# Model imports register the users and subscriptions tables on db.metadata.
from vidtube.app.extensions import db  # noqa: E402
from vidtube.app.models import subscription, user  # noqa: E402,F401

target_metadata = db.metadata

db_url = os.environ["TEST_DATABASE_URL" if os.getenv("TEST_RUN") else "DATABASE_URL"]

config = context.config
config.set_main_option("sqlalchemy.url", db_url)
if config.config_file_name is not None:
    fileConfig(config.config_file_name)


def run_migrations_offline() -> None:
    """Emits SQL to stdout instead of connecting (alembic upgrade --sql)."""
    context.configure(
        url=db_url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    engine = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with engine.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
        )
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
