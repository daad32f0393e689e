# src/laundry_sync/scripts/seed.py
"""Seed the database with the default set of appliances.

Existing appliances are left untouched; only missing names are inserted, so
the script can run on every deploy.
"""
from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from laundry_sync.core.clock import Clock, system_clock
from laundry_sync.db.session import SessionLocal
from laundry_sync.repositories.appliance_repo import ApplianceRepository
from laundry_sync.repositories.shared_store import DEFAULT_APPLIANCE_NAMES

logger = logging.getLogger(__name__)


def seed_default_appliances(db: Session, clock: Clock = system_clock) -> int:
    """Insert any default appliance that does not exist yet.

    Returns:
        Number of appliances created.
    """
    repo = ApplianceRepository(db)
    created = 0
    now = clock.now()
    for name in DEFAULT_APPLIANCE_NAMES:
        if repo.get_by_name(name) is None:
            repo.create(name, now)
            created += 1
    if created:
        logger.info("Seeded %d default appliance(s)", created)
    return created


def main() -> None:
    with SessionLocal() as db:
        created = seed_default_appliances(db)
    print(f"[laundry-seed] created {created} appliance(s)")


if __name__ == "__main__":
    main()
