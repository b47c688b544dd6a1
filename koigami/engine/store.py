"""
koigami.engine.store — Gamification State Store
================================================

Owns the :class:`GamificationSnapshot` of one signed-in member and keeps it
in step with the server.

Lifecycle (explicit state machine)::

    IDLE ──mount()──▶ LOADING ──initial load──▶ ACTIVE
      │                  ▲                        │
      └──no identity──▶ GUEST ◀──logout()─────────┘
                         │ change_identity(x)
                         ▼
                      LOADING …          close() ──▶ CLOSED (from anywhere)

Identity-bound sequence:

1. One-shot profile fetch; on success the snapshot is overwritten and the
   previous-XP/level refs are seeded with the loaded values, so the first
   push is never mistaken for a gain.
2. Only after step 1 resolves (success *or* failure) the change
   subscription is opened.
3. Badges and the check-in flag are fetched concurrently.

Each push is diffed against the refs, written into the snapshot, and
turned into an "XP gained" toast and/or a delayed level-up toast.  The
refs always move to the pushed values, whatever the sign of the delta.

Every failure here degrades to stale or default values; nothing is raised
to the consumer.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass, field
from datetime import date

from koigami.config import KoigamiConfig
from koigami.constants import (
    BADGE_SLOTS,
    CHECKIN_ERROR_MESSAGE,
    CHECKIN_SIGNED_OUT_MESSAGE,
    DEFAULT_PROFILE_NAME,
    LEVEL_UP_MESSAGE,
)
from koigami.engine.actions import (
    XP_ACTIONS,
    ImageQuota,
    XpAction,
    image_limit_for_level,
    xp_reason,
)
from koigami.engine.notifications import XpToastEmitter
from koigami.engine.ranks import (
    RankDefinition,
    rank_by_level,
    xp_progress_in_rank,
    xp_to_next_rank,
)
from koigami.services.backend import (
    Badge,
    CheckinResult,
    GamificationBackend,
    Identity,
    IdentityResolver,
    ProfileRecord,
    Unsubscribe,
)
from koigami.services.badge_loader import BadgeLoader

logger = logging.getLogger(__name__)

__all__ = ["GamificationSnapshot", "GamificationStore", "StoreState"]


class StoreState(enum.StrEnum):
    IDLE = "idle"
    LOADING = "loading"
    GUEST = "guest"
    ACTIVE = "active"
    CLOSED = "closed"


@dataclass
class GamificationSnapshot:
    """Mutable view of one member's progress.  Written only by the store."""

    identity_id: str | None = None
    level: int = 1
    xp: int = 0
    profile_name: str = DEFAULT_PROFILE_NAME
    avatar_url: str = ""
    badges: list[Badge] = field(default_factory=list)
    has_checked_in_today: bool = False
    # Server calendar day the flag above was last confirmed for
    checkin_day: date | None = None


class GamificationStore:
    """Per-identity gamification state, reconciled against server pushes.

    Parameters
    ----------
    backend:
        Implementation of :class:`GamificationBackend`.
    resolve_identity:
        Async callable returning the signed-in :class:`Identity` or None.
    config:
        Display defaults and toast timing.
    emitter:
        Toast slot; a fresh :class:`XpToastEmitter` if omitted.
    """

    def __init__(
        self,
        backend: GamificationBackend,
        resolve_identity: IdentityResolver,
        *,
        config: KoigamiConfig | None = None,
        emitter: XpToastEmitter | None = None,
        badge_loader: BadgeLoader | None = None,
    ) -> None:
        self._backend = backend
        self._resolve_identity = resolve_identity
        self._config = config or KoigamiConfig()
        self.emitter = emitter or XpToastEmitter(self._config.toast_duration_seconds)
        self._badge_loader = badge_loader or BadgeLoader(backend)

        self.state = StoreState.IDLE
        self.snapshot = self._default_snapshot()
        self._identity: Identity | None = None
        self._previous_xp = 0
        self._previous_level = 1
        self._unsubscribe: Unsubscribe | None = None
        # Bumped on every identity change; late results from an older
        # generation are dropped.
        self._generation = 0

    # -------------------------------------------------------------------
    # Derived read values
    # -------------------------------------------------------------------
    @property
    def identity(self) -> Identity | None:
        return self._identity

    @property
    def level(self) -> int:
        return self.snapshot.level

    @property
    def xp(self) -> int:
        return self.snapshot.xp

    @property
    def xp_to_next_level(self) -> int:
        return xp_to_next_rank(self.snapshot.xp)

    @property
    def xp_progress(self) -> float:
        return xp_progress_in_rank(self.snapshot.xp)

    @property
    def rank(self) -> RankDefinition:
        return rank_by_level(self.snapshot.level)

    @property
    def badges(self) -> list[Badge]:
        return list(self.snapshot.badges)

    @property
    def profile_name(self) -> str:
        return self.snapshot.profile_name

    @property
    def avatar_url(self) -> str:
        return self.snapshot.avatar_url

    @property
    def has_checked_in_today(self) -> bool:
        return self.snapshot.has_checked_in_today

    @property
    def image_post_limit(self) -> ImageQuota:
        return image_limit_for_level(self.snapshot.level)

    def badge_slots(self, total: int = BADGE_SLOTS) -> list[Badge | None]:
        """Awarded badges padded with ``None`` up to *total* display slots."""
        shown: list[Badge | None] = list(self.snapshot.badges[:total])
        return shown + [None] * (total - len(shown))

    def to_dict(self) -> dict:
        rank = self.rank
        current = self.emitter.current
        return {
            "state": self.state.value,
            "identity_id": self.snapshot.identity_id,
            "level": self.level,
            "xp": self.xp,
            "xp_to_next_level": self.xp_to_next_level,
            "xp_progress": round(self.xp_progress, 2),
            "rank": {"level": rank.level, "name": rank.name, "name_vi": rank.name_vi},
            "profile_name": self.profile_name,
            "avatar_url": self.avatar_url,
            "badges": [b.to_dict() for b in self.snapshot.badges],
            "has_checked_in_today": self.has_checked_in_today,
            "image_post_limit": self.image_post_limit.to_dict(),
            "notification": current.to_dict() if current else None,
        }

    # -------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------
    async def mount(self) -> None:
        """Resolve the signed-in member and load their state.

        A failing identity lookup leaves the store in guest mode.
        """
        try:
            identity = await self._resolve_identity()
        except Exception:
            logger.warning("Identity lookup failed — staying in guest mode", exc_info=True)
            identity = None
        await self.change_identity(identity)

    async def change_identity(self, identity: Identity | None) -> None:
        """Switch to *identity* (None → guest), discarding the old state."""
        if self.state is StoreState.CLOSED:
            logger.warning("change_identity() on a closed store — ignoring")
            return

        self._teardown_subscription()
        self.emitter.reset()
        self._generation += 1
        generation = self._generation

        self._identity = identity
        self.snapshot = self._default_snapshot()
        self._previous_xp = self.snapshot.xp
        self._previous_level = self.snapshot.level

        if identity is None:
            self.state = StoreState.GUEST
            logger.info("Gamification store in guest mode")
            return

        self.snapshot.identity_id = identity.id
        self.state = StoreState.LOADING

        await self._load_initial_snapshot(identity, generation)
        if generation != self._generation:
            return

        self._open_subscription(identity.id, generation)
        self.state = StoreState.ACTIVE
        logger.info(
            "Gamification store active for %s (lvl=%d xp=%d)",
            identity.id, self.snapshot.level, self.snapshot.xp,
        )

        await asyncio.gather(self.load_badges(), self.refresh_checkin_status())

    async def logout(self) -> None:
        await self.change_identity(None)

    async def close(self) -> None:
        """Tear down the subscription and any scheduled toasts."""
        self._teardown_subscription()
        self.emitter.reset()
        self._generation += 1
        self.state = StoreState.CLOSED

    # -------------------------------------------------------------------
    # One-shot loads
    # -------------------------------------------------------------------
    async def _load_initial_snapshot(self, identity: Identity, generation: int) -> None:
        try:
            record = await self._backend.fetch_profile(identity.id)
        except Exception:
            logger.warning(
                "Profile fetch failed for %s — keeping defaults",
                identity.id, exc_info=True,
            )
            return

        if generation != self._generation:
            logger.debug("Discarding profile for %s (identity changed)", identity.id)
            return
        if record is None:
            logger.debug("No profile provisioned yet for %s", identity.id)
            return

        snap = self.snapshot
        snap.level = record.level or 1
        snap.xp = record.xp or 0
        snap.profile_name = (
            record.full_name or identity.full_name or self._config.guest_display_name
        )
        snap.avatar_url = record.avatar_url or identity.avatar_url or ""
        self._previous_xp = snap.xp
        self._previous_level = snap.level

    async def load_badges(self) -> bool:
        """Replace the snapshot's badges with the member's awarded set."""
        identity = self._identity
        if identity is None:
            return False
        # A snapshot replaced mid-fetch simply receives the late write.
        return await self._badge_loader.load(self.snapshot, identity.id)

    async def refresh_checkin_status(self) -> None:
        identity = self._identity
        if identity is None:
            return
        snapshot = self.snapshot
        today = self._backend.today()
        try:
            checked_in = await self._backend.has_checked_in_today(identity.id)
        except Exception:
            logger.warning(
                "Check-in status fetch failed for %s", identity.id, exc_info=True,
            )
            return
        # Never undo a same-day check-in that succeeded while the read was
        # in flight.  A flag left over from an earlier day is overwritten.
        if snapshot.has_checked_in_today and snapshot.checkin_day == today:
            return
        snapshot.has_checked_in_today = bool(checked_in)
        snapshot.checkin_day = today

    async def roll_over_day(self) -> bool:
        """Re-read the check-in flag if the server day moved since it was set.

        Returns True when a refresh ran.
        """
        if self._identity is None:
            return False
        if self.snapshot.checkin_day == self._backend.today():
            return False
        logger.debug("New check-in day for %s", self._identity.id)
        await self.refresh_checkin_status()
        return True

    # -------------------------------------------------------------------
    # Realtime pushes
    # -------------------------------------------------------------------
    def _open_subscription(self, identity_id: str, generation: int) -> None:
        def _on_update(record: ProfileRecord) -> None:
            if generation != self._generation:
                return
            self.handle_push(record)

        try:
            self._unsubscribe = self._backend.subscribe(identity_id, _on_update)
        except Exception:
            logger.exception("Could not subscribe to profile changes for %s", identity_id)
            self._unsubscribe = None

    def _teardown_subscription(self) -> None:
        if self._unsubscribe is None:
            return
        try:
            self._unsubscribe()
        except Exception:
            logger.exception("Unsubscribe failed")
        finally:
            self._unsubscribe = None

    def handle_push(self, record: ProfileRecord) -> None:
        """Apply one server-pushed profile change."""
        identity = self._identity
        if identity is None or record.id != identity.id:
            logger.debug("Ignoring push for %s", record.id)
            return

        xp_gained = record.xp - self._previous_xp
        level_gained = record.level - self._previous_level

        snap = self.snapshot
        snap.xp = record.xp
        snap.level = record.level
        if record.full_name:
            snap.profile_name = record.full_name
        if record.avatar_url:
            snap.avatar_url = record.avatar_url

        if xp_gained > 0:
            self.emitter.show_xp_gain(xp_gained, xp_reason(xp_gained))

        if level_gained > 0:
            self.emitter.schedule(
                self._config.level_up_delay_seconds,
                0,
                LEVEL_UP_MESSAGE.format(level=record.level),
            )

        self._previous_xp = record.xp
        self._previous_level = record.level

    # -------------------------------------------------------------------
    # Check-in
    # -------------------------------------------------------------------
    async def perform_daily_checkin(self) -> CheckinResult:
        """Run the server check-in and optimistically flag it locally.

        The authoritative XP arrives later through the push channel, so a
        successful check-in shows its own toast now and the "+XP" diff
        toast when the push lands.
        """
        identity = self._identity
        if identity is None:
            return CheckinResult(success=False, message=CHECKIN_SIGNED_OUT_MESSAGE)

        snapshot = self.snapshot
        try:
            result = await self._backend.perform_checkin(identity.id)
        except Exception:
            logger.exception("Daily check-in failed for %s", identity.id)
            return CheckinResult(success=False, message=CHECKIN_ERROR_MESSAGE)

        if result.success:
            snapshot.has_checked_in_today = True
            snapshot.checkin_day = self._backend.today()
            if snapshot is self.snapshot:
                amount = XP_ACTIONS[XpAction.DAILY_CHECKIN]
                self.emitter.show_xp_gain(amount, xp_reason(amount))
        else:
            logger.info("Check-in refused for %s: %s", identity.id, result.message)
        return result

    # -------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------
    def _default_snapshot(self) -> GamificationSnapshot:
        return GamificationSnapshot(profile_name=self._config.guest_display_name)
