#!/usr/bin/env python3
"""
Run migrations (same process, same DATABASE_URL), then seed, then uvicorn.
"""
import os
import sys

import wait_for_db  # noqa: F401

from rentflow.core.config import settings
from rentflow.core.logging import configure_logging
from alembic.config import Config
from alembic import command

configure_logging()

alembic_cfg = Config(os.path.join(os.path.dirname(__file__), "alembic.ini"))
alembic_cfg.set_main_option("sqlalchemy.url", settings.DATABASE_URL)
command.upgrade(alembic_cfg, "head")

# Seed with an engine created after migrations, not the one Alembic's env load touched.
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

seed_engine = create_engine(settings.DATABASE_URL, pool_pre_ping=True)
SeedSession = sessionmaker(autocommit=False, autoflush=False, bind=seed_engine)
seed_db = SeedSession()
from rentflow.seed import run as run_seed

try:
    run_seed(seed_db)
finally:
    seed_db.close()
    seed_engine.dispose()

os.execv(
    sys.executable,
    [sys.executable, "-m", "uvicorn", "rentflow.main:app", "--host", "0.0.0.0", "--port", "8000"],
)
