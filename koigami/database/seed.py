"""
koigami.database.seed — Badge Catalogue Seeder
===============================================

Idempotent — only inserts badges whose id doesn't exist yet.  Edits made
to existing catalogue rows are never overwritten.
"""

from __future__ import annotations

import logging

from sqlalchemy import Engine, select
from sqlalchemy.orm import Session

from koigami.database.models import Badge

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Default badge catalogue: id → (name, icon, description)
# ---------------------------------------------------------------------------
DEFAULT_BADGES: dict[str, tuple[str, str, str]] = {
    "early-bird": ("Early Bird", "🐣", "Joined during the first season"),
    "first-post": ("First Post", "📝", "Published a first post"),
    "streak-7": ("Week Streak", "🔥", "Checked in seven days in a row"),
    "golden-koi": ("Golden Koi", "🐟", "Reached level 2"),
    "dragon": ("Dragon", "🐉", "Reached level 3"),
}


def seed_badges(engine: Engine) -> int:
    """Insert missing catalogue badges.  Returns the number inserted."""
    with Session(engine) as session:
        existing = set(session.scalars(select(Badge.id)).all())
        inserted = 0
        for badge_id, (name, icon, description) in DEFAULT_BADGES.items():
            if badge_id in existing:
                continue
            session.add(Badge(id=badge_id, name=name, icon=icon, description=description))
            inserted += 1
        session.commit()

    if inserted:
        logger.info("Seeded %d badges", inserted)
    return inserted
