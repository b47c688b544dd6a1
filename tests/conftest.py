"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import os

# ---------------------------------------------------------------------------
# koigami.api.deps validates JWT_SECRET at import time.
# ---------------------------------------------------------------------------
_TEST_JWT_SECRET = "test-secret-for-pytest-only-" + "x" * 40  # > 32 chars
os.environ.setdefault("JWT_SECRET", _TEST_JWT_SECRET)

from datetime import date  # noqa: E402
from unittest.mock import AsyncMock, MagicMock  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import Engine, create_engine  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402

from koigami.database.models import Base  # noqa: E402
from koigami.database.seed import seed_badges  # noqa: E402
from koigami.services.backend import CheckinResult, ProfileRecord  # noqa: E402

TODAY = date(2026, 10, 17)


@pytest.fixture
def db_engine() -> Engine:
    """In-memory SQLite engine with all Koigami tables and the badge catalogue.

    StaticPool shares one connection across threads (``run_db`` uses
    ``asyncio.to_thread``).
    """
    from sqlalchemy.pool import StaticPool

    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    seed_badges(engine)
    return engine


@pytest.fixture
def db_session(db_engine: Engine):
    """Provide a session that rolls back after each test."""
    with Session(db_engine) as session:
        yield session
        session.rollback()


def make_backend(
    *,
    profile: ProfileRecord | None = None,
    badges: list | None = None,
    checked_in: bool = False,
    checkin: CheckinResult | None = None,
) -> MagicMock:
    """Mock GamificationBackend.  ``subscribe`` returns a MagicMock unsubscribe."""
    backend = MagicMock()
    backend.fetch_profile = AsyncMock(return_value=profile)
    backend.fetch_awarded_badges = AsyncMock(return_value=badges or [])
    backend.has_checked_in_today = AsyncMock(return_value=checked_in)
    backend.perform_checkin = AsyncMock(
        return_value=checkin or CheckinResult(True, "Checked in! +3 XP")
    )
    backend.subscribe = MagicMock(return_value=MagicMock(name="unsubscribe"))
    backend.today = MagicMock(return_value=TODAY)
    return backend


@pytest.fixture
def backend() -> MagicMock:
    return make_backend()
