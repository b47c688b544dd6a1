"""
koigami.engine.ranks — Rank Table and Rank Resolver
====================================================

The five-tier Koi → Dragon ladder.  Each rank owns a contiguous XP band;
together the bands cover every non-negative XP value exactly once.

All resolver functions are pure and total: out-of-range levels are
clamped and negative XP falls back to the first rank.
"""

from __future__ import annotations

from dataclasses import dataclass

__all__ = [
    "MAX_LEVEL",
    "MIN_LEVEL",
    "RANKS",
    "RankDefinition",
    "rank_by_level",
    "rank_by_xp",
    "xp_progress_in_rank",
    "xp_to_next_rank",
]

MIN_LEVEL = 1
MAX_LEVEL = 5


@dataclass(frozen=True, slots=True)
class RankDefinition:
    """One tier of the ladder.

    ``max_xp`` is inclusive; ``None`` means the band is unbounded (top rank).
    """

    level: int
    name: str
    name_vi: str
    description: str
    image: str
    min_xp: int
    max_xp: int | None
    color: str
    glow_color: str

    @property
    def is_max(self) -> bool:
        return self.max_xp is None

    @property
    def span(self) -> int | None:
        """Number of XP values in the band, or None when unbounded."""
        if self.max_xp is None:
            return None
        return self.max_xp - self.min_xp + 1

    def to_dict(self) -> dict:
        return {
            "level": self.level,
            "name": self.name,
            "name_vi": self.name_vi,
            "description": self.description,
            "image": self.image,
            "min_xp": self.min_xp,
            "max_xp": self.max_xp,
            "color": self.color,
            "glow_color": self.glow_color,
        }


# ---------------------------------------------------------------------------
# Rank table, ordered by level, min_xp strictly increasing
# ---------------------------------------------------------------------------
RANKS: tuple[RankDefinition, ...] = (
    RankDefinition(
        level=1,
        name="Silver Koi",
        name_vi="Cá Koi Bạc",
        description="Beginner - Just starting the journey",
        image="/ranks/rank-1.png",
        min_xp=0,
        max_xp=499,
        color="text-gray-400",
        glow_color="shadow-gray-400/50",
    ),
    RankDefinition(
        level=2,
        name="Golden Koi",
        name_vi="Cá Koi Vàng",
        description="Apprentice - Learning the ropes",
        image="/ranks/rank-2.png",
        min_xp=500,
        max_xp=999,
        color="text-yellow-500",
        glow_color="shadow-yellow-500/50",
    ),
    RankDefinition(
        level=3,
        name="Jade Dragon",
        name_vi="Rồng Xanh Ngọc",
        description="Skilled - Mastering the craft",
        image="/ranks/rank-3.png",
        min_xp=1000,
        max_xp=2499,
        color="text-emerald-500",
        glow_color="shadow-emerald-500/50",
    ),
    RankDefinition(
        level=4,
        name="Thunder Dragon",
        name_vi="Rồng Xanh Dương",
        description="Expert - Commanding respect",
        image="/ranks/rank-4.png",
        min_xp=2500,
        max_xp=4999,
        color="text-blue-500",
        glow_color="shadow-blue-500/50",
    ),
    RankDefinition(
        level=5,
        name="Phoenix Dragon",
        name_vi="Rồng Đỏ",
        description="Legend - The ultimate master",
        image="/ranks/rank-5.png",
        min_xp=5000,
        max_xp=None,
        color="text-red-500",
        glow_color="shadow-red-500/50",
    ),
)


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------
def rank_by_level(level: int) -> RankDefinition:
    """Return the rank for *level*, clamped to [1, 5]."""
    clamped = min(max(int(level), MIN_LEVEL), MAX_LEVEL)
    return RANKS[clamped - 1]


def rank_by_xp(xp: int) -> RankDefinition:
    """Return the highest rank whose ``min_xp`` is ≤ *xp*.

    Negative XP is not expected but resolves to the first rank.
    """
    for rank in reversed(RANKS):
        if xp >= rank.min_xp:
            return rank
    return RANKS[0]


def xp_progress_in_rank(xp: int) -> float:
    """Percentage (0–100) of the current rank's band already covered.

    The top rank has no finite band and always reports 100.
    """
    rank = rank_by_xp(xp)
    span = rank.span
    if span is None:
        return 100.0
    progress = (xp - rank.min_xp) / span * 100
    return min(max(progress, 0.0), 100.0)


def xp_to_next_rank(xp: int) -> int:
    """XP still needed to enter the next rank; 0 at the top rank."""
    rank = rank_by_xp(xp)
    if rank.max_xp is None:
        return 0
    return rank.max_xp + 1 - xp
