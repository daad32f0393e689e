# src/laundry_sync/scripts/migrate.py
from __future__ import annotations

import os

from alembic import command
from alembic.config import Config

from laundry_sync.core.settings import settings


def run_upgrade_head() -> None:
    cfg = Config()
    cfg.set_main_option("sqlalchemy.url", settings.database_url_sync)
    # Script location relative to the project root
    script_location = os.path.join(os.path.dirname(__file__), "..", "..", "..", "migrations")
    cfg.set_main_option("script_location", os.path.abspath(script_location))
    command.upgrade(cfg, "head")


if __name__ == "__main__":
    run_upgrade_head()
