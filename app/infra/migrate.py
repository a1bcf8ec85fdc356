from __future__ import annotations

import logging
from pathlib import Path

from alembic import command
from alembic.config import Config

from app.infra.db import DATABASE_URL

ROOT = Path(__file__).resolve().parents[2]
MIGRATIONS_DIR = ROOT / "infra" / "migrations"

logger = logging.getLogger(__name__)


def build_alembic_config(database_url: str | None = None) -> Config:
    config = Config()
    config.set_main_option("script_location", str(MIGRATIONS_DIR))
    config.set_main_option("sqlalchemy.url", database_url or DATABASE_URL)
    return config


def run_upgrade_head(database_url: str | None = None) -> None:
    logger.info("running farm hierarchy migrations")
    command.upgrade(build_alembic_config(database_url), "head")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    run_upgrade_head()
