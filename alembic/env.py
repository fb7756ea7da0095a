"""
Migration environment for the lab equipment schema.

The database URL comes from app.config settings, never from alembic.ini. Every
model is imported through app.models so autogenerate sees the full metadata.
The reservation overlap exclusion constraint is PostgreSQL-only and is written
by hand in the revision files; autogenerate does not manage it.
"""

import os
import sys
from logging.config import fileConfig

from sqlalchemy import engine_from_config, pool
from alembic import context

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from app.config import settings
from app.database import Base, UTCDateTime
import app.models  # noqa: F401  registers every table on Base.metadata

config = context.config
config.set_main_option("sqlalchemy.url", settings.DATABASE_URL)

if config.config_file_name is not None:
    fileConfig(config.config_file_name)


def render_item(type_, obj, autogen_context):
    """Render UTCDateTime columns as plain timezone-aware timestamps in revision files."""
    if type_ == "type" and isinstance(obj, UTCDateTime):
        return "sa.TIMESTAMP(timezone=True)"
    return False


# Shared by offline and online runs
CONFIGURE_OPTIONS = {
    "target_metadata":        Base.metadata,
    "compare_type":           True,
    "compare_server_default": True,
    "render_item":            render_item,
}


def run_migrations_offline() -> None:
    """Emit the SQL script for review without touching the database."""
    context.configure(
        url=config.get_main_option("sqlalchemy.url"),
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **CONFIGURE_OPTIONS,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Apply migrations over a single unpooled connection."""
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with connectable.connect() as connection:
        context.configure(connection=connection, **CONFIGURE_OPTIONS)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
