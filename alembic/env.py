"""Alembic migrations against the async engine configuration."""
import asyncio
import os
from logging.config import fileConfig

from alembic import context
from sqlalchemy import pool
from sqlalchemy.ext.asyncio import async_engine_from_config

from vaultdrop.core.config import settings
from vaultdrop.core.db import Base

# Register every table on Base.metadata
from vaultdrop.modules.auth import models as auth_models  # noqa: F401
from vaultdrop.modules.products import models as product_models  # noqa: F401
from vaultdrop.modules.uploads import models as upload_models  # noqa: F401
from vaultdrop.modules.transfers import models as transfer_models  # noqa: F401
from vaultdrop.modules.payments import models as payment_models  # noqa: F401
from vaultdrop.modules.keys import models as key_models  # noqa: F401
from vaultdrop.modules.notifications import models as notification_models  # noqa: F401
from vaultdrop.modules.audit import models as audit_models  # noqa: F401

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

config.set_main_option("sqlalchemy.url", os.getenv("ALEMBIC_URL") or settings.async_database_url)

target_metadata = Base.metadata

def include_object(obj, name, type_, reflected, compare_to):
    return not (type_ == "table" and name == "alembic_version")

def run_migrations_offline() -> None:
    context.configure(
        url=config.get_main_option("sqlalchemy.url"),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        include_object=include_object,
    )

    with context.begin_transaction():
        context.run_migrations()

def do_run_migrations(connection) -> None:
    context.configure(connection=connection, target_metadata=target_metadata, include_object=include_object)

    with context.begin_transaction():
        context.run_migrations()

async def run_migrations_online() -> None:
    connectable = async_engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    async with connectable.connect() as connection:
        await connection.run_sync(do_run_migrations)

    await connectable.dispose()

if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
