from __future__ import annotations

import os
from logging.config import fileConfig

from alembic import context
from sqlalchemy import engine_from_config, pool
from sqlmodel import SQLModel

from board_attachments import models  # noqa: F401  # registers the attachments table
from board_attachments.config import settings
from board_attachments.db_urls import ensure_sqlite_parent_dir, normalize_database_url_for_alembic

config = context.config
if config.config_file_name is not None:
    # Migrations also run in-process from tests; keep the app loggers alive.
    fileConfig(config.config_file_name, disable_existing_loggers=False)

target_metadata = SQLModel.metadata


def _database_url() -> str:
    # DATABASE_URL from the process environment wins over .env.
    raw = os.getenv("DATABASE_URL") or settings.database_url
    ensure_sqlite_parent_dir(raw)
    return normalize_database_url_for_alembic(raw)


def _context_options(url: str) -> dict[str, object]:
    return {
        "target_metadata": target_metadata,
        "compare_type": True,
        # SQLite cannot ALTER most columns in place.
        "render_as_batch": url.startswith("sqlite"),
    }


def run_offline(url: str) -> None:
    context.configure(
        url=url,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **_context_options(url),
    )
    with context.begin_transaction():
        context.run_migrations()


def run_online(url: str) -> None:
    section = config.get_section(config.config_ini_section) or {}
    section["sqlalchemy.url"] = url
    engine = engine_from_config(section, prefix="sqlalchemy.", poolclass=pool.NullPool)

    with engine.connect() as connection:
        context.configure(connection=connection, **_context_options(url))
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_offline(_database_url())
else:
    run_online(_database_url())
