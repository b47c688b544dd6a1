"""
koigami.database.models — SQLAlchemy 2.0 Data Models
=====================================================

Tables:
- profiles        — One row per member; denormalized XP and level
- badges          — Badge catalogue
- user_badges     — Awarded badges (member × badge)
- daily_checkins  — One row per member per calendar day
"""

from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import (
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all Koigami ORM models."""


# ---------------------------------------------------------------------------
# Profiles: one row per member
# ---------------------------------------------------------------------------
class Profile(Base):
    __tablename__ = "profiles"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    full_name: Mapped[str | None] = mapped_column(String(100), default=None)
    avatar_url: Mapped[str | None] = mapped_column(String(500), default=None)
    xp: Mapped[int] = mapped_column(Integer, default=0)
    level: Mapped[int] = mapped_column(Integer, default=1)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    badges: Mapped[list[UserBadge]] = relationship(
        back_populates="profile", cascade="all, delete-orphan"
    )
    checkins: Mapped[list[DailyCheckin]] = relationship(
        back_populates="profile", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("ix_profiles_xp_desc", "xp"),
    )

    def __repr__(self) -> str:
        return f"<Profile id={self.id} name={self.full_name!r} lvl={self.level} xp={self.xp}>"


# ---------------------------------------------------------------------------
# Badge catalogue
# ---------------------------------------------------------------------------
class Badge(Base):
    __tablename__ = "badges"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    icon: Mapped[str] = mapped_column(String(32), nullable=False, default="🏅")
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")

    awarded_to: Mapped[list[UserBadge]] = relationship(back_populates="badge")

    def __repr__(self) -> str:
        return f"<Badge id={self.id!r} name={self.name!r}>"


# ---------------------------------------------------------------------------
# Awarded badges
# ---------------------------------------------------------------------------
class UserBadge(Base):
    __tablename__ = "user_badges"

    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("profiles.id", ondelete="CASCADE"), primary_key=True
    )
    badge_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("badges.id", ondelete="CASCADE"), primary_key=True
    )
    awarded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    profile: Mapped[Profile] = relationship(back_populates="badges")
    badge: Mapped[Badge] = relationship(back_populates="awarded_to")

    def __repr__(self) -> str:
        return f"<UserBadge user={self.user_id} badge={self.badge_id}>"


# ---------------------------------------------------------------------------
# Daily check-ins: the composite PK makes check-in idempotent per day
# ---------------------------------------------------------------------------
class DailyCheckin(Base):
    __tablename__ = "daily_checkins"

    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("profiles.id", ondelete="CASCADE"), primary_key=True
    )
    checkin_date: Mapped[date] = mapped_column(Date, primary_key=True)
    xp_awarded: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    profile: Mapped[Profile] = relationship(back_populates="checkins")

    def __repr__(self) -> str:
        return f"<DailyCheckin user={self.user_id} date={self.checkin_date}>"
