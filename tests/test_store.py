"""
tests/test_store.py — Gamification State Store
===============================================

Drives the store against a mocked backend: identity lifecycle, initial
load ordering, push diffing, toasts, badges and check-in.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from koigami.config import KoigamiConfig
from koigami.engine.store import GamificationStore, StoreState
from koigami.services.backend import Badge, CheckinResult, Identity, ProfileRecord
from tests.conftest import TODAY, make_backend


def run_async(coro):
    """Run an async coroutine in a fresh event loop."""
    return asyncio.run(coro)


ALICE = Identity(id="alice", full_name="Alice Auth", avatar_url="https://img/alice-auth.png")
BOB = Identity(id="bob")

FAST = KoigamiConfig(level_up_delay_seconds=0.01)


def _resolver(identity):
    return AsyncMock(return_value=identity)


def _profile(xp=100, level=1, **kw) -> ProfileRecord:
    return ProfileRecord(id=kw.pop("id", "alice"), xp=xp, level=level, **kw)


def _badge(badge_id: str) -> Badge:
    return Badge(
        id=badge_id, name=badge_id.title(), icon="🏅",
        description="", awarded_at=datetime(2026, 1, 1),
    )


def _push_handler(backend: MagicMock):
    """The on_update callback the store handed to backend.subscribe()."""
    return backend.subscribe.call_args.args[1]


async def _mounted(backend, identity=ALICE, config=FAST) -> GamificationStore:
    store = GamificationStore(backend, _resolver(identity), config=config)
    await store.mount()
    return store


# ===========================================================================
# Identity resolution
# ===========================================================================
class TestIdentityResolution:
    def test_no_identity_is_guest(self, backend):
        store = run_async(_mounted(backend, identity=None))
        assert store.state is StoreState.GUEST
        assert store.level == 1
        assert store.xp == 0
        assert store.profile_name == "Builder User"
        backend.fetch_profile.assert_not_called()
        backend.subscribe.assert_not_called()

    def test_resolver_error_is_guest(self, backend):
        async def _boom():
            raise ConnectionError("auth down")

        async def _inner():
            store = GamificationStore(backend, _boom, config=FAST)
            await store.mount()
            return store

        store = run_async(_inner())
        assert store.state is StoreState.GUEST
        backend.fetch_profile.assert_not_called()

    def test_custom_guest_name(self, backend):
        config = KoigamiConfig(guest_display_name="Khách")
        store = run_async(_mounted(backend, identity=None, config=config))
        assert store.profile_name == "Khách"


# ===========================================================================
# Initial snapshot load
# ===========================================================================
class TestInitialLoad:
    def test_loads_profile_fields(self):
        backend = make_backend(profile=_profile(
            xp=620, level=2, full_name="Alice", avatar_url="https://img/a.png",
        ))
        store = run_async(_mounted(backend))
        assert store.state is StoreState.ACTIVE
        assert (store.level, store.xp) == (2, 620)
        assert store.profile_name == "Alice"
        assert store.avatar_url == "https://img/a.png"

    def test_identity_metadata_fills_missing_profile_fields(self):
        backend = make_backend(profile=_profile(full_name=None, avatar_url=None))
        store = run_async(_mounted(backend))
        assert store.profile_name == "Alice Auth"
        assert store.avatar_url == "https://img/alice-auth.png"

    def test_missing_profile_keeps_defaults(self):
        backend = make_backend(profile=None)
        store = run_async(_mounted(backend))
        assert store.state is StoreState.ACTIVE
        assert (store.level, store.xp) == (1, 0)
        assert store.profile_name == "Builder User"

    def test_fetch_error_keeps_defaults_and_still_subscribes(self):
        backend = make_backend()
        backend.fetch_profile.side_effect = RuntimeError("db down")
        store = run_async(_mounted(backend))
        assert (store.level, store.xp) == (1, 0)
        backend.subscribe.assert_called_once()

    def test_subscription_opens_after_initial_load(self):
        order: list[str] = []
        backend = make_backend()

        async def _fetch(identity_id):
            order.append("fetch")
            return _profile()

        backend.fetch_profile.side_effect = _fetch
        backend.subscribe.side_effect = lambda *a: order.append("subscribe") or MagicMock()

        run_async(_mounted(backend))
        assert order == ["fetch", "subscribe"]

    def test_exactly_one_subscription_for_identity(self):
        backend = make_backend(profile=_profile())
        run_async(_mounted(backend))
        backend.subscribe.assert_called_once()
        assert backend.subscribe.call_args.args[0] == "alice"

    def test_first_push_matching_load_is_not_a_gain(self):
        backend = make_backend(profile=_profile(xp=400, level=1))
        store = run_async(_mounted(backend))
        _push_handler(backend)(_profile(xp=400, level=1))
        assert store.emitter.current is None


# ===========================================================================
# Push handling
# ===========================================================================
class TestPushes:
    def test_gain_of_five_reads_new_post(self):
        backend = make_backend(profile=_profile(xp=100))
        store = run_async(_mounted(backend))
        _push_handler(backend)(_profile(xp=105))
        assert store.xp == 105
        assert store.emitter.current.amount == 5
        assert store.emitter.current.reason == "new post"

    @pytest.mark.parametrize(
        "gain, reason",
        [(3, "checkin"), (2, "received comment"), (1, "interaction"),
         (50, "bonus"), (7, "generic activity")],
    )
    def test_gain_reasons(self, gain, reason):
        backend = make_backend(profile=_profile(xp=100))
        store = run_async(_mounted(backend))
        _push_handler(backend)(_profile(xp=100 + gain))
        assert store.emitter.current.reason == reason

    def test_xp_decrease_shows_nothing_but_moves_refs(self):
        backend = make_backend(profile=_profile(xp=100))
        store = run_async(_mounted(backend))
        push = _push_handler(backend)
        push(_profile(xp=90))
        assert store.xp == 90
        assert store.emitter.current is None
        # Next gain is measured from 90, not 100
        push(_profile(xp=92))
        assert store.emitter.current.amount == 2

    def test_name_and_avatar_only_overwritten_when_present(self):
        backend = make_backend(profile=_profile(full_name="Alice", avatar_url="a.png"))
        store = run_async(_mounted(backend))
        push = _push_handler(backend)
        push(_profile(xp=101))
        assert (store.profile_name, store.avatar_url) == ("Alice", "a.png")
        push(_profile(xp=101, full_name="Alicia", avatar_url="b.png"))
        assert (store.profile_name, store.avatar_url) == ("Alicia", "b.png")

    def test_push_for_other_identity_ignored(self):
        backend = make_backend(profile=_profile(xp=100))
        store = run_async(_mounted(backend))
        _push_handler(backend)(_profile(id="mallory", xp=9000, level=5))
        assert (store.xp, store.level) == (100, 1)

    def test_level_up_toast_follows_after_delay(self):
        async def _inner():
            backend = make_backend(profile=_profile(xp=495, level=1))
            store = await _mounted(backend)
            _push_handler(backend)(_profile(xp=550, level=2))
            # XP toast first …
            assert store.emitter.current.amount == 55
            assert store.level == 2
            # … then the level-up celebration replaces it
            await asyncio.sleep(0.05)
            assert store.emitter.current.amount == 0
            assert "Level 2" in store.emitter.current.reason
        run_async(_inner())

    @pytest.mark.parametrize("new_level", [1, 2])
    def test_no_level_toast_without_level_gain(self, new_level):
        async def _inner():
            backend = make_backend(profile=_profile(xp=700, level=2))
            store = await _mounted(backend)
            _push_handler(backend)(_profile(xp=10, level=new_level))
            assert store.emitter.pending_count == 0
            await asyncio.sleep(0.05)
            assert store.emitter.current is None
        run_async(_inner())

    def test_corrective_push_then_regain_celebrates_again(self):
        async def _inner():
            backend = make_backend(profile=_profile(xp=600, level=2))
            store = await _mounted(backend)
            push = _push_handler(backend)
            push(_profile(xp=400, level=1))
            push(_profile(xp=600, level=2))
            assert store.emitter.pending_count == 1
        run_async(_inner())

    def test_stale_callback_after_identity_change_ignored(self):
        async def _inner():
            backend = make_backend(profile=_profile(xp=100))
            store = await _mounted(backend)
            old_push = _push_handler(backend)
            backend.fetch_profile.return_value = _profile(id="bob", xp=7)
            await store.change_identity(BOB)
            old_push(_profile(xp=999))
            return store
        store = run_async(_inner())
        assert store.xp == 7


# ===========================================================================
# Derived values
# ===========================================================================
class TestDerivedValues:
    def test_progress_and_next(self):
        backend = make_backend(profile=_profile(xp=750, level=2))
        store = run_async(_mounted(backend))
        assert store.xp_progress == pytest.approx(50.0)
        assert store.xp_to_next_level == 250
        assert store.rank.name == "Golden Koi"

    def test_image_limit_follows_level(self):
        backend = make_backend(profile=_profile(xp=6000, level=5))
        store = run_async(_mounted(backend))
        assert store.image_post_limit.unlimited
        assert store.xp_to_next_level == 0
        assert store.xp_progress == 100.0

    def test_badge_slots_padded(self):
        backend = make_backend(profile=_profile(), badges=[_badge("dragon"), _badge("koi")])
        store = run_async(_mounted(backend))
        slots = store.badge_slots()
        assert len(slots) == 5
        assert [s.id for s in slots[:2]] == ["dragon", "koi"]
        assert slots[2:] == [None, None, None]

    def test_to_dict_shape(self):
        backend = make_backend(profile=_profile(xp=105))
        data = run_async(_mounted(backend)).to_dict()
        assert data["state"] == "active"
        assert data["xp"] == 105
        assert data["rank"]["level"] == 1
        assert data["image_post_limit"]["count"] == 3
        assert data["notification"] is None


# ===========================================================================
# Badges
# ===========================================================================
class TestBadges:
    def test_badges_loaded_on_mount(self):
        backend = make_backend(profile=_profile(), badges=[_badge("dragon")])
        store = run_async(_mounted(backend))
        assert [b.id for b in store.badges] == ["dragon"]
        assert all(b.unlocked for b in store.badges)

    def test_reload_replaces_rather_than_appends(self):
        async def _inner():
            backend = make_backend(profile=_profile(), badges=[_badge("a"), _badge("b")])
            store = await _mounted(backend)
            await store.load_badges()
            return store
        store = run_async(_inner())
        assert [b.id for b in store.badges] == ["a", "b"]

    def test_reload_drops_revoked_badge(self):
        async def _inner():
            backend = make_backend(profile=_profile(), badges=[_badge("a"), _badge("b")])
            store = await _mounted(backend)
            backend.fetch_awarded_badges.return_value = [_badge("a")]
            await store.load_badges()
            return store
        assert [b.id for b in run_async(_inner()).badges] == ["a"]

    def test_fetch_failure_keeps_previous_badges(self):
        async def _inner():
            backend = make_backend(profile=_profile(), badges=[_badge("a")])
            store = await _mounted(backend)
            backend.fetch_awarded_badges.side_effect = RuntimeError("timeout")
            assert await store.load_badges() is False
            return store
        assert [b.id for b in run_async(_inner()).badges] == ["a"]


# ===========================================================================
# Check-in
# ===========================================================================
class TestCheckin:
    def test_status_refreshed_on_mount(self):
        backend = make_backend(profile=_profile(), checked_in=True)
        store = run_async(_mounted(backend))
        assert store.has_checked_in_today is True

    def test_success_sets_flag_and_toasts(self):
        async def _inner():
            backend = make_backend(profile=_profile())
            store = await _mounted(backend)
            result = await store.perform_daily_checkin()
            return store, result
        store, result = run_async(_inner())
        assert result.success is True
        assert store.has_checked_in_today is True
        assert store.emitter.current.amount == 3
        assert store.emitter.current.reason == "checkin"

    def test_double_click_keeps_flag(self):
        async def _inner():
            backend = make_backend(profile=_profile())
            backend.perform_checkin.side_effect = [
                CheckinResult(True, "Checked in! +3 XP"),
                CheckinResult(False, "Already checked in today"),
            ]
            store = await _mounted(backend)
            first = await store.perform_daily_checkin()
            second = await store.perform_daily_checkin()
            return store, first, second
        store, first, second = run_async(_inner())
        assert first.success and not second.success
        assert second.message == "Already checked in today"
        assert store.has_checked_in_today is True

    def test_refused_checkin_leaves_flag_false(self):
        async def _inner():
            backend = make_backend(
                profile=_profile(), checkin=CheckinResult(False, "Profile not found"),
            )
            store = await _mounted(backend)
            await store.perform_daily_checkin()
            return store
        store = run_async(_inner())
        assert store.has_checked_in_today is False
        assert store.emitter.current is None

    def test_backend_error_becomes_failure_result(self):
        async def _inner():
            backend = make_backend(profile=_profile())
            backend.perform_checkin.side_effect = ConnectionError("rpc down")
            store = await _mounted(backend)
            return store, await store.perform_daily_checkin()
        store, result = run_async(_inner())
        assert result.success is False
        assert store.has_checked_in_today is False

    def test_guest_cannot_check_in(self, backend):
        async def _inner():
            store = await _mounted(backend, identity=None)
            return await store.perform_daily_checkin()
        result = run_async(_inner())
        assert result.success is False
        backend.perform_checkin.assert_not_called()

    def test_late_false_status_does_not_undo_checkin(self):
        async def _inner():
            backend = make_backend(profile=_profile())
            store = await _mounted(backend)
            await store.perform_daily_checkin()
            backend.has_checked_in_today.return_value = False
            await store.refresh_checkin_status()
            return store
        assert run_async(_inner()).has_checked_in_today is True

    def test_next_day_status_replaces_stale_flag(self):
        async def _inner():
            backend = make_backend(profile=_profile())
            store = await _mounted(backend)
            await store.perform_daily_checkin()
            backend.today.return_value = TODAY + timedelta(days=1)
            backend.has_checked_in_today.return_value = False
            await store.refresh_checkin_status()
            return store
        assert run_async(_inner()).has_checked_in_today is False

    def test_roll_over_day_is_noop_on_same_day(self):
        async def _inner():
            backend = make_backend(profile=_profile())
            store = await _mounted(backend)
            await store.perform_daily_checkin()
            backend.has_checked_in_today.reset_mock()
            return store, backend, await store.roll_over_day()
        store, backend, ran = run_async(_inner())
        assert ran is False
        assert store.has_checked_in_today is True
        backend.has_checked_in_today.assert_not_called()

    def test_roll_over_day_rereads_flag_on_new_day(self):
        async def _inner():
            backend = make_backend(profile=_profile())
            store = await _mounted(backend)
            await store.perform_daily_checkin()
            backend.today.return_value = TODAY + timedelta(days=1)
            backend.has_checked_in_today.return_value = False
            return store, await store.roll_over_day()
        store, ran = run_async(_inner())
        assert ran is True
        assert store.has_checked_in_today is False
        assert store.snapshot.checkin_day == TODAY + timedelta(days=1)

    def test_roll_over_day_retries_failed_status_read(self):
        async def _inner():
            backend = make_backend(profile=_profile())
            backend.has_checked_in_today.side_effect = [RuntimeError("down"), True]
            store = await _mounted(backend)
            assert store.has_checked_in_today is False
            return store, await store.roll_over_day()
        store, ran = run_async(_inner())
        assert ran is True
        assert store.has_checked_in_today is True

    def test_guest_roll_over_day_does_nothing(self, backend):
        async def _inner():
            store = await _mounted(backend, identity=None)
            return await store.roll_over_day()
        assert run_async(_inner()) is False
        backend.has_checked_in_today.assert_not_called()


# ===========================================================================
# Lifecycle
# ===========================================================================
class TestLifecycle:
    def test_logout_resets_and_unsubscribes(self):
        async def _inner():
            backend = make_backend(profile=_profile(xp=800, level=2), badges=[_badge("a")])
            store = await _mounted(backend)
            unsubscribe = backend.subscribe.return_value
            await store.logout()
            return store, unsubscribe
        store, unsubscribe = run_async(_inner())
        unsubscribe.assert_called_once()
        assert store.state is StoreState.GUEST
        assert (store.level, store.xp, store.badges) == (1, 0, [])
        assert store.identity is None

    def test_identity_change_swaps_subscription(self):
        async def _inner():
            backend = make_backend(profile=_profile())
            first_unsub, second_unsub = MagicMock(), MagicMock()
            backend.subscribe.side_effect = [first_unsub, second_unsub]
            store = await _mounted(backend)
            backend.fetch_profile.return_value = _profile(id="bob", xp=42)
            await store.change_identity(BOB)
            return store, backend, first_unsub, second_unsub
        store, backend, first_unsub, second_unsub = run_async(_inner())
        first_unsub.assert_called_once()
        second_unsub.assert_not_called()
        assert backend.subscribe.call_args.args[0] == "bob"
        assert store.xp == 42

    def test_close_cancels_pending_level_up(self):
        async def _inner():
            backend = make_backend(profile=_profile(xp=495, level=1))
            store = await _mounted(backend)
            _push_handler(backend)(_profile(xp=550, level=2))
            await store.close()
            await asyncio.sleep(0.05)
            return store
        store = run_async(_inner())
        assert store.state is StoreState.CLOSED
        assert store.emitter.current is None

    def test_closed_store_ignores_identity_change(self, backend):
        async def _inner():
            store = await _mounted(backend)
            await store.close()
            backend.fetch_profile.reset_mock()
            await store.change_identity(BOB)
            return store
        store = run_async(_inner())
        assert store.state is StoreState.CLOSED
        backend.fetch_profile.assert_not_called()

    def test_subscribe_failure_degrades_to_no_pushes(self):
        backend = make_backend(profile=_profile(xp=10))
        backend.subscribe.side_effect = RuntimeError("realtime down")
        store = run_async(_mounted(backend))
        assert store.state is StoreState.ACTIVE
        assert store.xp == 10
