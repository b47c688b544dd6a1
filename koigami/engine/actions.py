"""
koigami.engine.actions — XP Action Catalogue
=============================================

Fixed XP rewards per member action, the one-time bonus the server adds
when a member reaches a new level, and the image-post quota unlocked at
each level.

The push channel only carries the new XP total, so the reason shown in an
"XP gained" toast is recovered from the size of the gain via
:func:`xp_reason`.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass

from koigami.engine.ranks import MAX_LEVEL, MIN_LEVEL

__all__ = [
    "BONUS_THRESHOLD",
    "IMAGE_LIMITS",
    "ImageQuota",
    "LEVEL_UP_BONUS",
    "XP_ACTIONS",
    "XpAction",
    "image_limit_for_level",
    "level_up_bonus",
    "rules_summary",
    "xp_reason",
]


class XpAction(enum.StrEnum):
    """Member actions that earn XP."""
    DAILY_CHECKIN = "DAILY_CHECKIN"
    CREATE_POST = "CREATE_POST"
    RECEIVE_LIKE = "RECEIVE_LIKE"
    RECEIVE_COMMENT = "RECEIVE_COMMENT"  # first comment per commenter only
    RECEIVE_SHARE = "RECEIVE_SHARE"
    GIVE_COMMENT = "GIVE_COMMENT"


# ---------------------------------------------------------------------------
# Base XP per action
# ---------------------------------------------------------------------------
XP_ACTIONS: dict[XpAction, int] = {
    XpAction.DAILY_CHECKIN: 3,
    XpAction.CREATE_POST: 5,
    XpAction.RECEIVE_LIKE: 1,
    XpAction.RECEIVE_COMMENT: 2,
    XpAction.RECEIVE_SHARE: 3,
    XpAction.GIVE_COMMENT: 1,
}

# ---------------------------------------------------------------------------
# One-time bonus granted on reaching a level (keyed by the new level)
# ---------------------------------------------------------------------------
LEVEL_UP_BONUS: dict[int, int] = {
    2: 50,
    3: 80,
    4: 150,
    5: 300,
}


def level_up_bonus(new_level: int) -> int:
    """Bonus XP for arriving at *new_level* (0 for level 1 or unknown)."""
    return LEVEL_UP_BONUS.get(new_level, 0)


# ---------------------------------------------------------------------------
# Image post quotas
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class ImageQuota:
    """Image posts allowed per *period*; ``count=None`` means no limit."""

    count: int | None
    period: str  # "day" | "week"
    description: str

    @property
    def unlimited(self) -> bool:
        return self.count is None

    def to_dict(self) -> dict:
        return {
            "count": self.count,
            "period": self.period,
            "description": self.description,
            "unlimited": self.unlimited,
        }


IMAGE_LIMITS: dict[int, ImageQuota] = {
    1: ImageQuota(3, "week", "3 bài ảnh / 7 ngày"),
    2: ImageQuota(5, "week", "5 bài ảnh / 7 ngày"),
    3: ImageQuota(2, "day", "2 bài ảnh / ngày"),
    4: ImageQuota(2, "day", "2 bài ảnh / ngày"),
    5: ImageQuota(None, "day", "Không giới hạn"),
}


def image_limit_for_level(level: int) -> ImageQuota:
    """Quota for *level*; unknown levels get the level-1 quota."""
    return IMAGE_LIMITS.get(level, IMAGE_LIMITS[MIN_LEVEL])


# ---------------------------------------------------------------------------
# Gain → reason mapping
# ---------------------------------------------------------------------------
BONUS_THRESHOLD = 50

# Checked in order; the first exact match wins.  DAILY_CHECKIN and
# RECEIVE_SHARE share a value, so a gain of 3 always reads "checkin".
_REASONS: tuple[tuple[tuple[XpAction, ...], str], ...] = (
    ((XpAction.CREATE_POST,), "new post"),
    ((XpAction.DAILY_CHECKIN,), "checkin"),
    ((XpAction.RECEIVE_COMMENT,), "received comment"),
    ((XpAction.RECEIVE_SHARE,), "received share"),
    ((XpAction.RECEIVE_LIKE, XpAction.GIVE_COMMENT), "interaction"),
)


def xp_reason(amount: int) -> str:
    """Best-guess label for an XP gain of *amount*."""
    for actions, reason in _REASONS:
        if any(XP_ACTIONS[a] == amount for a in actions):
            return reason
    if amount >= BONUS_THRESHOLD:
        return "bonus"
    return "generic activity"


# ---------------------------------------------------------------------------
# Rules panel ("how XP is calculated")
# ---------------------------------------------------------------------------
_RULE_LABELS: dict[XpAction, tuple[str, str]] = {
    XpAction.DAILY_CHECKIN: ("📅", "Daily check-in"),
    XpAction.CREATE_POST: ("📝", "Create a post"),
    XpAction.RECEIVE_LIKE: ("❤️", "Receive a like"),
    XpAction.RECEIVE_COMMENT: ("💬", "Receive a comment"),
    XpAction.RECEIVE_SHARE: ("🔁", "Receive a share"),
    XpAction.GIVE_COMMENT: ("🗣️", "Comment on a post"),
}


def rules_summary() -> dict:
    """Serializable description of every XP rule, bonus and quota."""
    return {
        "rules": [
            {
                "action": action.value,
                "icon": _RULE_LABELS[action][0],
                "label": _RULE_LABELS[action][1],
                "xp": XP_ACTIONS[action],
            }
            for action in XpAction
        ],
        "bonuses": [
            {"level": level, "bonus": bonus}
            for level, bonus in sorted(LEVEL_UP_BONUS.items())
        ],
        "image_limits": {
            level: IMAGE_LIMITS[level].to_dict()
            for level in range(MIN_LEVEL, MAX_LEVEL + 1)
        },
    }
