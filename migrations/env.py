"""Alembic environment configuration.

Uses psycopg v3 sync engine for migrations.
Database URL is loaded from application settings (config.py).

Only the shared registry (``Base.metadata``) is managed here. Tables inside
tenant schemas are created per tenant by ``scripts/manage_tenant.py`` and
by the offline schema-copy tool.
"""

from logging.config import fileConfig

from alembic import context
from sqlalchemy import engine_from_config, pool

from schema_tenancy.config import get_settings
from schema_tenancy.storage.orm import REGISTRY_SCHEMA, Base

# this is the Alembic Config object, which provides
# access to the values within the .ini file in use.
config = context.config

# Set the database URL programmatically from application settings.
config.set_main_option("sqlalchemy.url", get_settings().database_url)

# Interpret the config file for Python logging.
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# Autogenerate support: point at the shared ORM metadata.
target_metadata = Base.metadata


def include_name(
    name: str | None, type_: str, parent_names: dict[str, str | None]
) -> bool:
    """Restrict autogenerate to the registry schema; tenant schemas are not ours."""
    if type_ == "schema":
        return name in (None, REGISTRY_SCHEMA)
    return True


def run_migrations_offline() -> None:
    """Run migrations in 'offline' mode.

    Configures the context with just a URL so that
    calls to context.execute() emit SQL to the script output.
    """
    url = config.get_main_option("sqlalchemy.url")
    context.configure(
        url=url,
        target_metadata=target_metadata,
        include_schemas=True,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations in 'online' mode.

    Creates a sync engine via psycopg v3 and runs migrations
    within a transaction.
    """
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            include_schemas=True,
            include_name=include_name,
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
