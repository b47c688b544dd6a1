"""
koigami.engine.listener — Profile Change Fan-out over PG LISTEN/NOTIFY
======================================================================

Every write to a profile's XP/level emits a ``NOTIFY profile_changes``
carrying the new row as JSON (see :func:`queue_profile_notify`).  A single
background thread LISTENs on that channel and hands each record to the
subscribers registered for that profile id.

Subscribers live on an asyncio loop; records are delivered with
``loop.call_soon_threadsafe`` so the callback runs on the subscriber's
loop, never on the listener thread.

Databases without NOTIFY (SQLite in dev/test) skip the thread; the writer
calls :meth:`ProfileChangeListener.publish` directly after commit.
"""

from __future__ import annotations

import asyncio
import json
import logging
import random
import select as _select
import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from sqlalchemy import text
from sqlalchemy.orm import Session

from koigami.services.backend import ProfileRecord, Unsubscribe

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)

# The PG channel carrying profile row changes
PROFILE_NOTIFY_CHANNEL = "profile_changes"

LISTEN_POLL_SECONDS = 5.0
LISTEN_BASE_BACKOFF = 1.0
LISTEN_MAX_BACKOFF = 60.0
LISTEN_MAX_RETRIES = 10


@dataclass(frozen=True, slots=True, eq=False)
class _Subscription:
    identity_id: str
    callback: Callable[[ProfileRecord], None]
    loop: asyncio.AbstractEventLoop | None


class ProfileChangeListener:
    """Routes profile change notifications to per-identity subscribers.

    Usage:
        listener = ProfileChangeListener(engine)
        listener.start_listener()

        unsubscribe = listener.subscribe(user_id, store.handle_push)
        ...
        unsubscribe()
    """

    def __init__(self, engine: Engine) -> None:
        self._engine = engine
        self._lock = threading.Lock()
        # identity_id → active subscriptions
        self._subscribers: dict[str, list[_Subscription]] = {}

        self._listener_healthy: bool = False
        self._listener_failed: bool = False
        self._listener_thread: threading.Thread | None = None
        self._session_listening = False
        self._shutdown_event = threading.Event()

    # -------------------------------------------------------------------
    # Subscriptions
    # -------------------------------------------------------------------
    def subscribe(
        self,
        identity_id: str,
        callback: Callable[[ProfileRecord], None],
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> Unsubscribe:
        """Register *callback* for changes to *identity_id*'s profile.

        *loop* defaults to the running loop; with no loop at all the
        callback is invoked on the publishing thread.
        """
        if loop is None:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                loop = None

        sub = _Subscription(identity_id, callback, loop)
        with self._lock:
            self._subscribers.setdefault(identity_id, []).append(sub)
        logger.debug("Subscribed to profile changes for %s", identity_id)

        def _unsubscribe() -> None:
            with self._lock:
                subs = self._subscribers.get(identity_id, [])
                if sub in subs:
                    subs.remove(sub)
                if not subs:
                    self._subscribers.pop(identity_id, None)
            logger.debug("Unsubscribed from profile changes for %s", identity_id)

        return _unsubscribe

    def subscriber_count(self, identity_id: str) -> int:
        with self._lock:
            return len(self._subscribers.get(identity_id, []))

    def publish(self, record: ProfileRecord) -> int:
        """Deliver *record* to its subscribers.  Returns how many were reached."""
        with self._lock:
            subs = list(self._subscribers.get(record.id, []))

        delivered = 0
        for sub in subs:
            if sub.loop is None:
                try:
                    sub.callback(record)
                except Exception:
                    logger.exception("Profile change callback failed for %s", record.id)
                    continue
            elif sub.loop.is_closed():
                logger.warning(
                    "Cannot deliver profile change for %s — loop closed", record.id,
                )
                continue
            else:
                sub.loop.call_soon_threadsafe(sub.callback, record)
            delivered += 1
        return delivered

    def handle_payload(self, raw_payload: str) -> None:
        """Parse a NOTIFY payload and publish it."""
        try:
            data = json.loads(raw_payload)
            record = ProfileRecord.from_payload(data)
        except (json.JSONDecodeError, TypeError, ValueError, AttributeError):
            logger.warning("Invalid profile change payload: %s", raw_payload)
            return
        self.publish(record)

    # -------------------------------------------------------------------
    # LISTEN thread
    # -------------------------------------------------------------------
    @property
    def listener_healthy(self) -> bool:
        """True while the LISTEN connection is up and retries aren't exhausted."""
        return self._listener_healthy and not self._listener_failed

    @property
    def listener_failed(self) -> bool:
        return self._listener_failed

    def start_listener(self) -> None:
        """Run :meth:`_listen_forever` on a daemon thread."""
        thread = threading.Thread(
            target=self._listen_forever, daemon=True, name="pg-profile-listener",
        )
        self._listener_thread = thread
        thread.start()
        logger.info("Profile listener thread started")

    def stop_listener(self) -> None:
        self._shutdown_event.set()
        thread = self._listener_thread
        if thread is not None and thread.is_alive():
            thread.join(timeout=5)
            logger.info("Profile listener thread stopped")

    def _dsn(self) -> str:
        # str(engine.url) masks the password; psycopg2 needs it in clear.
        url = self._engine.url.set(drivername="postgresql")
        return url.render_as_string(hide_password=False)

    def _listen_forever(self) -> None:
        """Keep a LISTEN session open until shutdown or retries run out."""
        failures = 0
        while not self._shutdown_event.is_set():
            self._session_listening = False
            try:
                self._listen_session()
                failures = 0
            except Exception:
                # A session that got as far as LISTEN starts a fresh retry budget.
                failures = 1 if self._session_listening else failures + 1
                if failures >= LISTEN_MAX_RETRIES:
                    self._listener_failed = True
                    logger.critical(
                        "Profile listener gave up after %d failures; "
                        "realtime pushes are off until restart",
                        failures,
                    )
                    return
                delay = reconnect_delay(failures)
                logger.exception(
                    "Profile listener lost its connection (%d/%d), retrying in %.1fs",
                    failures, LISTEN_MAX_RETRIES, delay,
                )
                if self._shutdown_event.wait(timeout=delay):
                    return

    def _listen_session(self) -> None:
        """One connection's lifetime: LISTEN, then drain notifies until shutdown."""
        import psycopg2
        from psycopg2.extensions import ISOLATION_LEVEL_AUTOCOMMIT

        conn = psycopg2.connect(self._dsn())
        try:
            conn.set_isolation_level(ISOLATION_LEVEL_AUTOCOMMIT)
            with conn.cursor() as cur:
                cur.execute(f"LISTEN {PROFILE_NOTIFY_CHANNEL};")
            self._listener_healthy = True
            self._session_listening = True
            logger.info("Listening for profile changes on '%s'", PROFILE_NOTIFY_CHANNEL)

            while not self._shutdown_event.is_set():
                readable, _, _ = _select.select([conn], [], [], LISTEN_POLL_SECONDS)
                if not readable:
                    continue
                conn.poll()
                while conn.notifies:
                    self._dispatch_notify(conn.notifies.pop(0).payload or "")
        finally:
            self._listener_healthy = False
            conn.close()

    def _dispatch_notify(self, payload: str) -> None:
        try:
            self.handle_payload(payload)
        except Exception:
            logger.exception("Profile change dispatch failed: %s", payload)


def reconnect_delay(failures: int) -> float:
    """Exponential backoff capped at ``LISTEN_MAX_BACKOFF``, plus up to 50% jitter."""
    base = min(LISTEN_BASE_BACKOFF * 2 ** (failures - 1), LISTEN_MAX_BACKOFF)
    return base + random.uniform(0, base * 0.5)


def queue_profile_notify(session: Session, record: ProfileRecord) -> None:
    """Queue a NOTIFY for *record* inside the current transaction.

    PostgreSQL delivers it on commit and drops it on rollback.  No-op on
    other databases.
    """
    if session.get_bind().dialect.name != "postgresql":
        return
    session.execute(
        text("SELECT pg_notify(:channel, :payload)"),
        {"channel": PROFILE_NOTIFY_CHANNEL, "payload": json.dumps(record.to_payload())},
    )
