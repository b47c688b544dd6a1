"""
koigami.services.badge_loader — Awarded-badge loader
=====================================================

Fetches the badges a member has been awarded and swaps them into a
snapshot.  A load always replaces the snapshot's badge list; loading the
same unchanged set twice leaves exactly one copy of each badge.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from koigami.services.backend import Badge, GamificationBackend

if TYPE_CHECKING:
    from koigami.engine.store import GamificationSnapshot

logger = logging.getLogger(__name__)


class BadgeLoader:
    def __init__(self, backend: GamificationBackend) -> None:
        self._backend = backend

    async def fetch(self, identity_id: str) -> list[Badge] | None:
        """Return the member's badges, or None if the read failed."""
        try:
            badges = await self._backend.fetch_awarded_badges(identity_id)
        except Exception:
            logger.warning(
                "Badge fetch failed for %s — keeping current badges",
                identity_id, exc_info=True,
            )
            return None
        return _unique_by_id(badges or [])

    async def load(self, snapshot: GamificationSnapshot, identity_id: str) -> bool:
        """Fetch and replace ``snapshot.badges``.  Returns True on success."""
        badges = await self.fetch(identity_id)
        if badges is None:
            return False
        replace_badges(snapshot, badges)
        logger.debug("Loaded %d badges for %s", len(badges), identity_id)
        return True


def replace_badges(snapshot: GamificationSnapshot, badges: list[Badge]) -> None:
    snapshot.badges = _unique_by_id(badges)


def _unique_by_id(badges: list[Badge]) -> list[Badge]:
    seen: set[str] = set()
    unique: list[Badge] = []
    for badge in badges:
        if badge.id in seen:
            continue
        seen.add(badge.id)
        unique.append(badge)
    return unique
