"""
koigami.api.routes.gamification — Rank, rules and member progress endpoints
============================================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from koigami.api.deps import (
    CurrentIdentity,
    get_backend,
    get_config,
    get_registry,
)
from koigami.api.sessions import StoreRegistry
from koigami.config import KoigamiConfig
from koigami.engine.actions import rules_summary
from koigami.engine.ranks import RANKS
from koigami.services.sql_backend import SqlBackend

router = APIRouter(tags=["gamification"])


class CheckinResponse(BaseModel):
    success: bool
    message: str
    has_checked_in_today: bool


class NotificationComplete(BaseModel):
    id: int | None = None


# ---------------------------------------------------------------------------
# Public catalogue
# ---------------------------------------------------------------------------
@router.get("/ranks")
def list_ranks():
    return [rank.to_dict() for rank in RANKS]


@router.get("/rules")
def get_rules():
    """XP rules, level-up bonuses and image quotas for the help panel."""
    return rules_summary()


@router.get("/leaderboard")
async def get_leaderboard(
    limit: int | None = Query(None, ge=1, le=100),
    backend: SqlBackend = Depends(get_backend),
    config: KoigamiConfig = Depends(get_config),
):
    return await backend.fetch_leaderboard(limit or config.leaderboard_limit)


# ---------------------------------------------------------------------------
# Member progress
# ---------------------------------------------------------------------------
@router.get("/me/gamification")
async def get_my_gamification(
    identity: CurrentIdentity,
    registry: StoreRegistry = Depends(get_registry),
):
    store = await registry.get_or_create(identity)
    return store.to_dict()


@router.post("/me/checkin", response_model=CheckinResponse)
async def check_in(
    identity: CurrentIdentity,
    registry: StoreRegistry = Depends(get_registry),
):
    store = await registry.get_or_create(identity)
    result = await store.perform_daily_checkin()
    return CheckinResponse(
        success=result.success,
        message=result.message,
        has_checked_in_today=store.has_checked_in_today,
    )


@router.get("/me/notification")
async def get_notification(
    identity: CurrentIdentity,
    registry: StoreRegistry = Depends(get_registry),
):
    store = await registry.get_or_create(identity)
    current = store.emitter.current
    return {"notification": current.to_dict() if current else None}


@router.post("/me/notification/complete")
async def complete_notification(
    identity: CurrentIdentity,
    body: NotificationComplete | None = None,
    registry: StoreRegistry = Depends(get_registry),
):
    store = await registry.get_or_create(identity)
    store.emitter.handle_complete(body.id if body else None)
    current = store.emitter.current
    return {"notification": current.to_dict() if current else None}


@router.post("/me/logout")
async def logout(
    identity: CurrentIdentity,
    registry: StoreRegistry = Depends(get_registry),
):
    closed = await registry.drop(identity.id)
    return {"closed": closed}
