"""
koigami.database.engine — Database Connection & Async Helper
=============================================================

The state store and the API run on an ``asyncio`` event loop while
SQLAlchemy + psycopg2 is synchronous.  Every query goes through
:func:`run_db`, which ships the synchronous function to the default thread
pool with :func:`asyncio.to_thread` so the loop never blocks.

Usage::

    from koigami.database.engine import create_db_engine, init_db, run_db

    engine = create_db_engine()          # reads DATABASE_URL from .env
    init_db(engine)                      # CREATE TABLE IF NOT EXISTS …

    record = await run_db(load_profile, engine, user_id)
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Callable
from typing import ParamSpec, TypeVar

from sqlalchemy import Engine, create_engine

from koigami.database.models import Base

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


# ---------------------------------------------------------------------------
# Engine creation
# ---------------------------------------------------------------------------
def create_db_engine(url: str | None = None) -> Engine:
    """Build a SQLAlchemy :class:`Engine` from *url* or ``DATABASE_URL``.

    Raises
    ------
    RuntimeError
        If no URL is given and ``DATABASE_URL`` is not set.
    """
    url = url or os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError(
            "DATABASE_URL is not set.  "
            "Copy .env.example → .env and set a valid PostgreSQL URL."
        )

    engine = create_engine(
        url,
        echo=False,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,
        pool_timeout=10,
        pool_recycle=3600,
    )
    logger.info("Database engine created → %s", engine.url.host)
    return engine


def supports_notify(engine: Engine) -> bool:
    """True if the database can carry LISTEN/NOTIFY (PostgreSQL only)."""
    return engine.dialect.name == "postgresql"


# ---------------------------------------------------------------------------
# Schema initialization
# ---------------------------------------------------------------------------
def init_db(engine: Engine) -> None:
    """Create all tables and seed the badge catalogue.

    .. note::

        In production the schema is managed by Alembic (``alembic upgrade
        head``).  ``create_all`` is kept for dev/test databases.
    """
    Base.metadata.create_all(engine)
    logger.info("Database tables verified / created.")

    from koigami.database.seed import seed_badges

    seed_badges(engine)


# ---------------------------------------------------------------------------
# Async bridge
# ---------------------------------------------------------------------------
async def run_db(func: Callable[P, T], *args: P.args, **kwargs: P.kwargs) -> T:
    """Run a **synchronous** database function on a background thread."""
    return await asyncio.to_thread(func, *args, **kwargs)
