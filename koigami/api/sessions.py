"""
koigami.api.sessions — Per-identity store registry
===================================================

The API keeps one live :class:`GamificationStore` per signed-in member so
pushes and toasts survive between requests.  A store is created and
mounted the first time a member is seen, and closed on logout, after
``session_idle_seconds`` without a request, or on shutdown.

Mounting runs outside any registry-wide lock: concurrent first requests
for the same member share one mount task, and members whose store is
already live are served without waiting on anyone else's load.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from koigami.config import KoigamiConfig
from koigami.engine.store import GamificationStore
from koigami.services.backend import GamificationBackend, Identity

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class _Entry:
    store: GamificationStore
    last_seen: float


class StoreRegistry:
    """Live stores keyed by identity id, evicted when idle.

    Usage:
        registry = StoreRegistry(backend, config)
        registry.start(loop)             # background idle sweep
        store = await registry.get_or_create(identity)
        ...
        registry.stop()
        await registry.close_all()
    """

    def __init__(
        self,
        backend: GamificationBackend,
        config: KoigamiConfig,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._backend = backend
        self._config = config
        self._clock = clock
        self._entries: dict[str, _Entry] = {}
        # identity_id → in-flight mount shared by concurrent first requests
        self._mounting: dict[str, asyncio.Task[GamificationStore]] = {}
        self._sweep_task: asyncio.Task | None = None

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, identity_id: str) -> bool:
        return identity_id in self._entries

    async def get_or_create(self, identity: Identity) -> GamificationStore:
        """Return the member's store, mounting a new one if needed."""
        entry = self._entries.get(identity.id)
        if entry is not None:
            entry.last_seen = self._clock()
            await entry.store.roll_over_day()
            return entry.store

        task = self._mounting.get(identity.id)
        if task is None:
            task = asyncio.ensure_future(self._mount(identity))
            self._mounting[identity.id] = task
        return await asyncio.shield(task)

    async def _mount(self, identity: Identity) -> GamificationStore:
        try:
            async def _resolve() -> Identity:
                return identity

            store = GamificationStore(self._backend, _resolve, config=self._config)
            await store.mount()
            self._entries[identity.id] = _Entry(store, self._clock())
            logger.info("Store opened for %s (%d live)", identity.id, len(self._entries))
            return store
        finally:
            self._mounting.pop(identity.id, None)

    async def drop(self, identity_id: str) -> bool:
        """Log the member out and close their store."""
        task = self._mounting.get(identity_id)
        if task is not None:
            await asyncio.shield(task)
        entry = self._entries.pop(identity_id, None)
        if entry is None:
            return False
        await entry.store.logout()
        await entry.store.close()
        logger.info("Store closed for %s", identity_id)
        return True

    async def evict_idle(self) -> int:
        """Close stores not requested for ``session_idle_seconds``.

        Returns the number evicted.
        """
        idle_seconds = self._config.session_idle_seconds
        if not idle_seconds or idle_seconds <= 0:
            return 0

        cutoff = self._clock() - idle_seconds
        stale = [key for key, entry in self._entries.items() if entry.last_seen < cutoff]
        for identity_id in stale:
            entry = self._entries.pop(identity_id)
            await entry.store.close()
        if stale:
            logger.info("Evicted %d idle stores (%d live)", len(stale), len(self._entries))
        return len(stale)

    async def close_all(self) -> None:
        pending = list(self._mounting.values())
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        entries = list(self._entries.values())
        self._entries.clear()
        for entry in entries:
            await entry.store.close()

    # -------------------------------------------------------------------
    # Background sweep
    # -------------------------------------------------------------------
    def start(self, loop: asyncio.AbstractEventLoop, interval: float = 60.0) -> None:
        """Start the background idle sweep."""
        if self._sweep_task is not None:
            return

        async def _sweep_loop() -> None:
            while True:
                await asyncio.sleep(interval)
                try:
                    await self.evict_idle()
                except Exception:
                    logger.exception("Store sweep error")

        self._sweep_task = loop.create_task(_sweep_loop(), name="store-sweep")

    def stop(self) -> None:
        """Cancel the sweep task."""
        if self._sweep_task:
            self._sweep_task.cancel()
            self._sweep_task = None
