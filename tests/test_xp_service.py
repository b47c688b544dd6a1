"""
tests/test_xp_service.py — Server-side XP accrual
==================================================

Runs against in-memory SQLite (see ``db_engine`` in conftest).
"""

from __future__ import annotations

from datetime import date

import pytest
from sqlalchemy.orm import Session

from koigami.database.models import DailyCheckin, Profile
from koigami.engine.actions import XpAction
from koigami.services import xp_service

TODAY = date(2026, 10, 17)


def _add_profile(engine, user_id="alice", xp=0, level=1):
    with Session(engine) as session:
        session.add(Profile(id=user_id, xp=xp, level=level, full_name=user_id.title()))
        session.commit()


def _profile(engine, user_id="alice") -> Profile:
    with Session(engine) as session:
        profile = session.get(Profile, user_id)
        session.expunge(profile)
        return profile


class TestApplyLevelUps:
    def test_single_level_with_bonus(self):
        profile = Profile(id="a", xp=500, level=1)
        reached, bonus = xp_service.apply_level_ups(profile)
        assert reached == [2]
        assert bonus == 50
        assert (profile.level, profile.xp) == (2, 550)

    def test_bonus_can_cross_next_threshold(self):
        profile = Profile(id="a", xp=950, level=1)
        reached, bonus = xp_service.apply_level_ups(profile)
        assert reached == [2, 3]
        assert bonus == 130
        assert (profile.level, profile.xp) == (3, 1080)

    def test_no_change_inside_rank(self):
        profile = Profile(id="a", xp=400, level=1)
        assert xp_service.apply_level_ups(profile) == ([], 0)
        assert profile.level == 1

    def test_never_demotes(self):
        profile = Profile(id="a", xp=10, level=3)
        assert xp_service.apply_level_ups(profile) == ([], 0)
        assert profile.level == 3


class TestGrantXp:
    def test_negative_amount_rejected(self, db_session):
        profile = xp_service.get_or_create_profile(db_session, "alice")
        with pytest.raises(ValueError):
            xp_service.grant_xp(db_session, profile, -1)

    def test_grant_crossing_level(self, db_session):
        profile = xp_service.get_or_create_profile(db_session, "alice")
        profile.xp = 495
        result = xp_service.grant_xp(db_session, profile, 5)
        assert result.leveled_up
        assert result.xp_awarded == 5
        assert result.bonus_xp == 50
        assert (result.record.level, result.record.xp) == (2, 550)

    def test_get_or_create_is_idempotent(self, db_session):
        first = xp_service.get_or_create_profile(db_session, "alice", "Alice")
        second = xp_service.get_or_create_profile(db_session, "alice")
        assert first is second
        assert first.full_name == "Alice"


class TestAwardAction:
    def test_creates_profile_and_awards(self, db_engine):
        result = xp_service.award_action(db_engine, "alice", XpAction.CREATE_POST)
        assert result.record.xp == 5
        assert _profile(db_engine).xp == 5

    def test_accumulates(self, db_engine):
        _add_profile(db_engine, xp=100)
        xp_service.award_action(db_engine, "alice", XpAction.RECEIVE_COMMENT)
        xp_service.award_action(db_engine, "alice", XpAction.RECEIVE_LIKE)
        assert _profile(db_engine).xp == 103


class TestCheckin:
    def test_first_checkin_awards_three(self, db_engine):
        _add_profile(db_engine, xp=10)
        result, grant = xp_service.perform_checkin(db_engine, "alice", TODAY)
        assert result.success
        assert result.message == "Checked in! +3 XP"
        assert grant.record.xp == 13
        assert xp_service.has_checked_in(db_engine, "alice", TODAY)

    def test_second_checkin_same_day_refused(self, db_engine):
        _add_profile(db_engine)
        xp_service.perform_checkin(db_engine, "alice", TODAY)
        result, grant = xp_service.perform_checkin(db_engine, "alice", TODAY)
        assert not result.success
        assert result.message == "Already checked in today"
        assert grant is None
        assert _profile(db_engine).xp == 3

    def test_next_day_allowed(self, db_engine):
        _add_profile(db_engine)
        xp_service.perform_checkin(db_engine, "alice", TODAY)
        result, _ = xp_service.perform_checkin(db_engine, "alice", date(2026, 10, 18))
        assert result.success
        assert _profile(db_engine).xp == 6

    def test_missing_profile(self, db_engine):
        result, grant = xp_service.perform_checkin(db_engine, "ghost", TODAY)
        assert not result.success
        assert result.message == "Profile not found"
        assert grant is None

    def test_checkin_row_records_award(self, db_engine):
        _add_profile(db_engine)
        xp_service.perform_checkin(db_engine, "alice", TODAY)
        with Session(db_engine) as session:
            row = session.get(DailyCheckin, ("alice", TODAY))
            assert row.xp_awarded == 3

    def test_not_checked_in_by_default(self, db_engine):
        _add_profile(db_engine)
        assert xp_service.has_checked_in(db_engine, "alice", TODAY) is False
