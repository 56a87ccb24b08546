from __future__ import annotations

from alembic import context
from sqlalchemy import engine_from_config, pool

from lms_telemetry.core.config import settings
from lms_telemetry.db.session import Base
from lms_telemetry import models  # noqa: F401  registers the mappings on Base.metadata

config = context.config
config.set_main_option('sqlalchemy.url', settings.database_url)

# Domain tables belong to the content service and are mapped read-only.


def _include_object(obj, name, type_, reflected, compare_to):
    if type_ == 'table':
        return name in models.TELEMETRY_TABLES
    return True


target_metadata = Base.metadata


def run_migrations_offline() -> None:
    context.configure(
        url=config.get_main_option('sqlalchemy.url'),
        target_metadata=target_metadata,
        include_object=_include_object,
        literal_binds=True,
        dialect_opts={'paramstyle': 'named'},
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix='sqlalchemy.',
        poolclass=pool.NullPool,
    )
    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            include_object=_include_object,
            render_as_batch=connection.dialect.name == 'sqlite',
        )
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
