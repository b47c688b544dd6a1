"""
koigami.services.sql_backend — SQLAlchemy Gamification Backend
===============================================================

Implements :class:`~koigami.services.backend.GamificationBackend` on top of
the ``profiles`` / ``user_badges`` / ``daily_checkins`` tables.  Reads and
writes run through :func:`run_db`; change subscriptions are served by a
shared :class:`ProfileChangeListener`.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import date, datetime
from zoneinfo import ZoneInfo

from sqlalchemy import Engine, select
from sqlalchemy.orm import Session

from koigami.database.engine import run_db, supports_notify
from koigami.database.models import Badge as BadgeRow
from koigami.database.models import Profile, UserBadge
from koigami.engine.actions import XpAction
from koigami.engine.listener import ProfileChangeListener
from koigami.engine.ranks import rank_by_level
from koigami.services import xp_service
from koigami.services.backend import Badge, CheckinResult, ProfileRecord, Unsubscribe

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Sync query helpers (run via run_db)
# ---------------------------------------------------------------------------
def load_profile(engine: Engine, user_id: str) -> ProfileRecord | None:
    with Session(engine) as session:
        profile = session.get(Profile, user_id)
        if profile is None:
            return None
        return xp_service.profile_record(profile)


def load_awarded_badges(engine: Engine, user_id: str) -> list[Badge]:
    with Session(engine) as session:
        rows = session.execute(
            select(UserBadge.awarded_at, BadgeRow)
            .join(BadgeRow, BadgeRow.id == UserBadge.badge_id)
            .where(UserBadge.user_id == user_id)
            .order_by(UserBadge.awarded_at, BadgeRow.id)
        ).all()
        return [
            Badge(
                id=badge.id,
                name=badge.name,
                icon=badge.icon,
                description=badge.description,
                awarded_at=awarded_at,
            )
            for awarded_at, badge in rows
        ]


def award_badge(engine: Engine, user_id: str, badge_id: str) -> bool:
    """Award *badge_id* to *user_id*.  Returns False if already held."""
    with Session(engine) as session:
        if session.get(UserBadge, (user_id, badge_id)) is not None:
            return False
        session.add(UserBadge(user_id=user_id, badge_id=badge_id))
        session.commit()
    logger.info("Badge %s awarded to %s", badge_id, user_id)
    return True


def load_leaderboard(engine: Engine, limit: int) -> list[dict]:
    with Session(engine) as session:
        rows = session.scalars(
            select(Profile).order_by(Profile.xp.desc(), Profile.id).limit(limit)
        ).all()
        leaders = []
        for position, profile in enumerate(rows, start=1):
            rank = rank_by_level(profile.level or 1)
            leaders.append({
                "position": position,
                "id": profile.id,
                "full_name": profile.full_name,
                "avatar_url": profile.avatar_url,
                "xp": profile.xp,
                "level": profile.level,
                "rank_name": rank.name,
                "rank_name_vi": rank.name_vi,
            })
        return leaders


# ---------------------------------------------------------------------------
# Backend
# ---------------------------------------------------------------------------
class SqlBackend:
    """Database-backed :class:`GamificationBackend`.

    Parameters
    ----------
    engine:
        SQLAlchemy engine.
    listener:
        Shared change fan-out; on PostgreSQL it must have its LISTEN thread
        started for pushes to arrive.
    timezone:
        IANA zone that defines the check-in calendar day.
    """

    def __init__(
        self,
        engine: Engine,
        listener: ProfileChangeListener,
        *,
        timezone: str = "UTC",
    ) -> None:
        self._engine = engine
        self._listener = listener
        self._tz = ZoneInfo(timezone)

    def today(self) -> date:
        return datetime.now(self._tz).date()

    async def fetch_profile(self, identity_id: str) -> ProfileRecord | None:
        return await run_db(load_profile, self._engine, identity_id)

    def subscribe(
        self, identity_id: str, on_update: Callable[[ProfileRecord], None],
    ) -> Unsubscribe:
        return self._listener.subscribe(identity_id, on_update)

    async def fetch_awarded_badges(self, identity_id: str) -> list[Badge]:
        return await run_db(load_awarded_badges, self._engine, identity_id)

    async def perform_checkin(self, identity_id: str) -> CheckinResult:
        result, grant = await run_db(
            xp_service.perform_checkin, self._engine, identity_id, self.today(),
        )
        if grant is not None:
            self._publish(grant)
        return result

    async def has_checked_in_today(self, identity_id: str) -> bool:
        return await run_db(
            xp_service.has_checked_in, self._engine, identity_id, self.today(),
        )

    # -------------------------------------------------------------------
    # Server-side operations outside the store contract
    # -------------------------------------------------------------------
    async def award_action(self, identity_id: str, action: XpAction) -> xp_service.GrantResult:
        grant = await run_db(xp_service.award_action, self._engine, identity_id, action)
        self._publish(grant)
        return grant

    async def award_badge(self, identity_id: str, badge_id: str) -> bool:
        return await run_db(award_badge, self._engine, identity_id, badge_id)

    async def fetch_leaderboard(self, limit: int = 10) -> list[dict]:
        return await run_db(load_leaderboard, self._engine, limit)

    def _publish(self, grant: xp_service.GrantResult) -> None:
        # PostgreSQL delivers through NOTIFY; elsewhere fan out in-process.
        if grant.record is None or supports_notify(self._engine):
            return
        self._listener.publish(grant.record)
