"""Alembic environment.

URL: DATABASE_URL_MIGRATIONS (direct, non-pooled connection for DDL) first,
then the API's own DATABASE_URL resolution. Online runs go through the same
build_engine() as the API, so pool and SQLite settings match.
"""

import os
import sys
from logging.config import fileConfig
from pathlib import Path

from alembic import context

# apps/api holds the bndy_api package
sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "apps" / "api"))

from bndy_api.config.env import get_database_url  # noqa: E402
from bndy_api.db.engine import build_engine  # noqa: E402
from bndy_api.db.models import Base  # noqa: E402

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata

database_url = (
    os.getenv("DATABASE_URL_MIGRATIONS")
    or config.get_main_option("sqlalchemy.url")
    or get_database_url()
)
config.set_main_option("sqlalchemy.url", database_url)

# SQLite cannot ALTER constraints in place
_render_as_batch = database_url.startswith("sqlite")


def run_migrations_offline() -> None:
    """Emit SQL to stdout without connecting."""
    context.configure(
        url=database_url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
        render_as_batch=_render_as_batch,
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connectable = build_engine(database_url)

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
            render_as_batch=_render_as_batch,
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
