from __future__ import annotations
from logging.config import fileConfig
from sqlalchemy import engine_from_config, pool
from alembic import context
import os, sys

# Allow importing tenantgate models when run from a checkout
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from tenantgate.models.tenant import Base  # noqa: E402

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)


def get_url():
    # An explicitly configured URL (e.g. from a test harness) wins over the environment
    return config.get_main_option('sqlalchemy.url') or os.getenv('DATABASE_URL', 'sqlite:///dev.db')


config.set_main_option('sqlalchemy.url', get_url())

# Only the master registry is managed here; tenant schemas use tenantgate.services.migrations
target_metadata = Base.metadata


def include_name(name, type_, parent_names):
    if type_ == 'schema':
        return name in (None, 'public', 'main')
    return True


def run_migrations_offline():
    url = config.get_main_option("sqlalchemy.url")
    context.configure(url=url, target_metadata=target_metadata, literal_binds=True, include_name=include_name)
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online():
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix='sqlalchemy.',
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        context.configure(connection=connection, target_metadata=target_metadata, include_name=include_name)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
