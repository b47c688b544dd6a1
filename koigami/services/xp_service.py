"""
koigami.services.xp_service — Server-side XP Accrual
=====================================================

Applies XP to profile rows: adds the action reward, recomputes the level
from the rank table, adds the one-time bonus for every level reached, and
queues a profile change notification in the same transaction.

Daily check-in is idempotent per calendar day: the ``daily_checkins``
composite primary key (user_id, checkin_date) lets the database reject a
second check-in for the same day.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import TYPE_CHECKING

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from koigami.constants import (
    CHECKIN_DUPLICATE_MESSAGE,
    CHECKIN_NO_PROFILE_MESSAGE,
    CHECKIN_OK_MESSAGE,
)
from koigami.database.models import DailyCheckin, Profile
from koigami.engine.actions import XP_ACTIONS, XpAction, level_up_bonus
from koigami.engine.listener import queue_profile_notify
from koigami.engine.ranks import rank_by_xp
from koigami.services.backend import CheckinResult, ProfileRecord

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)


@dataclass
class GrantResult:
    """Outcome of one XP grant."""

    xp_awarded: int = 0
    bonus_xp: int = 0
    levels_reached: list[int] = field(default_factory=list)
    record: ProfileRecord | None = None

    @property
    def leveled_up(self) -> bool:
        return bool(self.levels_reached)


def profile_record(profile: Profile) -> ProfileRecord:
    return ProfileRecord(
        id=profile.id,
        level=profile.level or 1,
        xp=profile.xp or 0,
        full_name=profile.full_name,
        avatar_url=profile.avatar_url,
    )


def get_or_create_profile(
    session: Session, user_id: str, full_name: str | None = None,
) -> Profile:
    """Fetch or insert a Profile row."""
    profile = session.get(Profile, user_id)
    if profile is None:
        profile = Profile(id=user_id, full_name=full_name, xp=0, level=1)
        session.add(profile)
        session.flush()
    return profile


def apply_level_ups(profile: Profile) -> tuple[list[int], int]:
    """Raise ``profile.level`` to match its XP, adding level-up bonuses.

    A bonus can itself push the profile over the next threshold, so the
    rank is re-checked until it stops moving.  Levels never go down here.

    Returns (levels_reached, bonus_xp).
    """
    reached: list[int] = []
    bonus_total = 0
    target = rank_by_xp(profile.xp).level
    while target > profile.level:
        for new_level in range(profile.level + 1, target + 1):
            bonus = level_up_bonus(new_level)
            profile.xp += bonus
            bonus_total += bonus
            reached.append(new_level)
        profile.level = target
        target = rank_by_xp(profile.xp).level
    return reached, bonus_total


def grant_xp(session: Session, profile: Profile, amount: int) -> GrantResult:
    """Add *amount* XP to *profile* and queue the change notification.

    Does not commit; the caller owns the transaction.
    """
    if amount < 0:
        raise ValueError(f"XP grant must be non-negative, got {amount}")

    profile.xp = (profile.xp or 0) + amount
    profile.level = profile.level or 1
    reached, bonus = apply_level_ups(profile)
    if reached:
        logger.info(
            "Profile %s reached level %d (+%d bonus XP)", profile.id, profile.level, bonus,
        )

    record = profile_record(profile)
    queue_profile_notify(session, record)
    return GrantResult(
        xp_awarded=amount, bonus_xp=bonus, levels_reached=reached, record=record,
    )


def award_action(engine: Engine, user_id: str, action: XpAction) -> GrantResult:
    """Grant the catalogue reward for *action* to *user_id*."""
    with Session(engine) as session:
        profile = get_or_create_profile(session, user_id)
        result = grant_xp(session, profile, XP_ACTIONS[action])
        session.commit()
    logger.debug("Awarded %s to %s", action.value, user_id)
    return result


def has_checked_in(engine: Engine, user_id: str, today: date) -> bool:
    with Session(engine) as session:
        return session.get(DailyCheckin, (user_id, today)) is not None


def perform_checkin(
    engine: Engine, user_id: str, today: date,
) -> tuple[CheckinResult, GrantResult | None]:
    """Check *user_id* in for *today*.

    Returns (result, grant).  *grant* is None when nothing changed.
    """
    amount = XP_ACTIONS[XpAction.DAILY_CHECKIN]
    with Session(engine) as session:
        profile = session.get(Profile, user_id)
        if profile is None:
            return CheckinResult(False, CHECKIN_NO_PROFILE_MESSAGE), None

        if session.get(DailyCheckin, (user_id, today)) is not None:
            return CheckinResult(False, CHECKIN_DUPLICATE_MESSAGE), None

        session.add(DailyCheckin(user_id=user_id, checkin_date=today, xp_awarded=amount))
        grant = grant_xp(session, profile, amount)
        try:
            session.commit()
        except IntegrityError:
            # A concurrent check-in won the race for today's row.
            session.rollback()
            return CheckinResult(False, CHECKIN_DUPLICATE_MESSAGE), None

    logger.info("Profile %s checked in for %s", user_id, today.isoformat())
    return CheckinResult(True, CHECKIN_OK_MESSAGE.format(xp=amount)), grant
