from logging.config import fileConfig
from sqlalchemy import pool, create_engine
from alembic import context

from quartier.config import settings
from quartier.db.session import Base
# Enregistre la table users dans la MetaData
from quartier.auth.models import User  # noqa: F401

target_metadata = Base.metadata

# Chargement config Alembic
config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)


def _sync_url() -> str:
    # POSTGRES_URL prime sur alembic.ini ; Alembic travaille en synchrone
    url = settings.POSTGRES_URL or config.get_main_option("sqlalchemy.url")
    return url.replace("postgresql+asyncpg://", "postgresql://")


def run_migrations_offline() -> None:
    context.configure(
        url=_sync_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connectable = create_engine(
        _sync_url(),
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
