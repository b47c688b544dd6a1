"""
koigami.services.backend — Backend Contract & Record Types
============================================================

The state store never talks to the database directly.  Everything it needs
from the data platform goes through :class:`GamificationBackend`: a one-shot
profile read, a standing change subscription, an awarded-badge read, the
daily check-in procedure, and the check-in status read.

:mod:`koigami.services.sql_backend` implements the contract on top of
SQLAlchemy and PostgreSQL ``LISTEN/NOTIFY``; tests substitute mocks.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Protocol

__all__ = [
    "Badge",
    "CheckinResult",
    "GamificationBackend",
    "Identity",
    "IdentityResolver",
    "ProfileRecord",
    "Unsubscribe",
]


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class Identity:
    """The signed-in member, as reported by the auth provider."""

    id: str
    full_name: str | None = None
    avatar_url: str | None = None


@dataclass(frozen=True, slots=True)
class ProfileRecord:
    """The persisted gamification columns of a member's profile row."""

    id: str
    level: int = 1
    xp: int = 0
    full_name: str | None = None
    avatar_url: str | None = None

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> ProfileRecord:
        """Build a record from a change-notification payload.

        Raises
        ------
        ValueError
            If the payload has no ``id``.
        """
        if not data.get("id"):
            raise ValueError("Profile payload must include an 'id' key")
        return cls(
            id=str(data["id"]),
            level=int(data.get("level") or 1),
            xp=int(data.get("xp") or 0),
            full_name=data.get("full_name") or None,
            avatar_url=data.get("avatar_url") or None,
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "level": self.level,
            "xp": self.xp,
            "full_name": self.full_name,
            "avatar_url": self.avatar_url,
        }


@dataclass(frozen=True, slots=True)
class Badge:
    """An awarded badge.  Only awarded badges are tracked, so always unlocked."""

    id: str
    name: str
    icon: str
    description: str
    awarded_at: datetime | None = None

    @property
    def unlocked(self) -> bool:
        return True

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "icon": self.icon,
            "description": self.description,
            "unlocked": self.unlocked,
            "awarded_at": self.awarded_at.isoformat() if self.awarded_at else None,
        }


@dataclass(frozen=True, slots=True)
class CheckinResult:
    success: bool
    message: str

    def to_dict(self) -> dict:
        return {"success": self.success, "message": self.message}


Unsubscribe = Callable[[], None]
IdentityResolver = Callable[[], Awaitable[Identity | None]]


# ---------------------------------------------------------------------------
# Contract
# ---------------------------------------------------------------------------
class GamificationBackend(Protocol):
    """What the state store needs from the data platform."""

    async def fetch_profile(self, identity_id: str) -> ProfileRecord | None:
        """Return the member's profile, or None if it isn't provisioned yet."""
        ...

    def subscribe(
        self, identity_id: str, on_update: Callable[[ProfileRecord], None],
    ) -> Unsubscribe:
        """Deliver every change to the member's profile row to *on_update*."""
        ...

    async def fetch_awarded_badges(self, identity_id: str) -> list[Badge]:
        ...

    async def perform_checkin(self, identity_id: str) -> CheckinResult:
        """Run the server-side check-in; idempotent per calendar day."""
        ...

    async def has_checked_in_today(self, identity_id: str) -> bool:
        ...

    def today(self) -> date:
        """The calendar day check-ins are counted against."""
        ...
