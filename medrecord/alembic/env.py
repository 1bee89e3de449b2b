import os
from logging.config import fileConfig
from pathlib import Path

from dotenv import load_dotenv
from sqlalchemy import engine_from_config, pool
from alembic import context

PACKAGE_DIR = Path(__file__).resolve().parents[1]
ENV_PATH = PACKAGE_DIR / ".env"
load_dotenv(ENV_PATH, override=True)

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# Grab models metadata
from medrecord.db.session import DATABASE_URL  # noqa: E402
from medrecord.models import user, patient, document, lab_report  # noqa: F401, E402
from medrecord.db.session import Base  # noqa: E402

target_metadata = Base.metadata


def _current_db_url() -> str:
    env_url = os.getenv("DATABASE_URL")
    return env_url if env_url else DATABASE_URL


def run_migrations_offline():
    context.configure(
        url=_current_db_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        compare_type=True,
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online():
    config_section = config.get_section(config.config_ini_section) or {}
    config_section["sqlalchemy.url"] = _current_db_url()

    connectable = engine_from_config(
        config_section,
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
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
