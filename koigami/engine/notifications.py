"""
koigami.engine.notifications — Single-slot XP toast emitter
============================================================

Holds at most one "current" notification.  A new notification replaces
whatever is showing (last write wins); there is no backlog.  The display
layer calls :meth:`XpToastEmitter.handle_complete` once it has finished
presenting, which empties the slot.

Delayed notifications (the level-up celebration that follows an XP toast)
are scheduled on the running asyncio loop and can be cancelled in bulk
when the owning identity goes away.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections.abc import Callable
from dataclasses import dataclass

logger = logging.getLogger(__name__)

__all__ = ["XpGain", "XpToastEmitter"]


@dataclass(frozen=True, slots=True)
class XpGain:
    """A notification occupying the toast slot."""

    id: int
    amount: int
    reason: str

    def to_dict(self) -> dict:
        return {"id": self.id, "amount": self.amount, "reason": self.reason}


class XpToastEmitter:
    """Last-write-wins toast slot.

    Parameters
    ----------
    display_seconds:
        When set, each notification completes itself after this many
        seconds (requires a running event loop).  When ``None`` the
        display layer is responsible for calling :meth:`handle_complete`.
    """

    def __init__(self, display_seconds: float | None = None) -> None:
        self.display_seconds = display_seconds
        self._current: XpGain | None = None
        self._ids = itertools.count(1)
        self._pending: set[asyncio.TimerHandle] = set()
        self._expiry: asyncio.TimerHandle | None = None
        self._listeners: list[Callable[[XpGain | None], None]] = []

    @property
    def current(self) -> XpGain | None:
        return self._current

    def add_listener(self, callback: Callable[[XpGain | None], None]) -> None:
        """Call *callback* with the slot contents whenever they change."""
        self._listeners.append(callback)

    # -------------------------------------------------------------------
    # Slot operations
    # -------------------------------------------------------------------
    def show_xp_gain(self, amount: int, reason: str) -> XpGain:
        """Put a notification in the slot, replacing any current one."""
        gain = XpGain(id=next(self._ids), amount=amount, reason=reason)
        if self._current is not None:
            logger.debug(
                "Toast %d replaced by %d before completing",
                self._current.id, gain.id,
            )
        self._current = gain
        self._arm_expiry(gain.id)
        self._notify()
        return gain

    def handle_complete(self, toast_id: int | None = None) -> None:
        """Clear the slot.

        If *toast_id* is given, only clear when it still names the
        current notification; a completion for an already-replaced toast
        must not dismiss its successor.
        """
        if self._current is None:
            return
        if toast_id is not None and toast_id != self._current.id:
            return
        self._current = None
        self._cancel_expiry()
        self._notify()

    # -------------------------------------------------------------------
    # Delayed notifications
    # -------------------------------------------------------------------
    def schedule(self, delay: float, amount: int, reason: str) -> asyncio.TimerHandle | None:
        """Show a notification after *delay* seconds.

        Outside a running event loop the notification is shown at once.
        """
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running loop; showing delayed toast immediately")
            self.show_xp_gain(amount, reason)
            return None

        handle: asyncio.TimerHandle

        def _fire() -> None:
            self._pending.discard(handle)
            self.show_xp_gain(amount, reason)

        handle = loop.call_later(delay, _fire)
        self._pending.add(handle)
        return handle

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def cancel_pending(self) -> None:
        """Drop every scheduled notification that hasn't fired yet."""
        for handle in self._pending:
            handle.cancel()
        self._pending.clear()

    def reset(self) -> None:
        """Cancel scheduled notifications and empty the slot."""
        self.cancel_pending()
        self.handle_complete()

    # -------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------
    def _arm_expiry(self, toast_id: int) -> None:
        self._cancel_expiry()
        if self.display_seconds is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._expiry = loop.call_later(
            self.display_seconds, self.handle_complete, toast_id,
        )

    def _cancel_expiry(self) -> None:
        if self._expiry is not None:
            self._expiry.cancel()
            self._expiry = None

    def _notify(self) -> None:
        for callback in self._listeners:
            try:
                callback(self._current)
            except Exception:
                logger.exception("Toast listener failed")
