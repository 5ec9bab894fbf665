import os
from logging.config import fileConfig

from alembic import context
from sqlalchemy import pool, create_engine

from rentflow.core.config import settings
from rentflow.db.session import Base

# Import all models so Alembic sees them in metadata
from rentflow.models.machine import Machine  # noqa: F401
from rentflow.models.booking import Booking, BookingItem  # noqa: F401
from rentflow.models.company_discount import CompanyDiscount  # noqa: F401
from rentflow.models.processed_payment_event import ProcessedPaymentEvent  # noqa: F401
from rentflow.models.audit_log import AuditLog  # noqa: F401


config = context.config

db_url = getattr(settings, "DATABASE_URL", None) or os.getenv("DATABASE_URL")
if not db_url:
    raise RuntimeError("DATABASE_URL is not set (check .env / rentflow.core.config.settings)")

config.set_main_option("sqlalchemy.url", db_url)

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def run_migrations_offline() -> None:
    """Run migrations in 'offline' mode."""
    url = config.get_main_option("sqlalchemy.url")
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations in 'online' mode."""
    url = config.get_main_option("sqlalchemy.url")

    # alembic.ini leaves sqlalchemy.url empty; the runtime DATABASE_URL is the only source.
    connectable = create_engine(url, poolclass=pool.NullPool)

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
