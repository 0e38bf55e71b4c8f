"""Programmatic Alembic upgrades for the dispatch database."""

from __future__ import annotations

import logging
from pathlib import Path

from alembic import command
from alembic.config import Config

logger = logging.getLogger(__name__)

# Migration scripts ship inside the package.
MIGRATIONS_DIR = Path(__file__).resolve().parent / "migrations"


def upgrade_head(db_path: Path) -> None:
    """Bring the dispatch schema at ``db_path`` to the newest revision."""

    config = Config()
    config.set_main_option("script_location", str(MIGRATIONS_DIR))
    config.set_main_option("sqlalchemy.url", f"sqlite:///{Path(db_path).resolve()}")
    logger.debug("Upgrading dispatch schema at %s", db_path)
    command.upgrade(config, "head")
