"""
api/routes/v1/teams_picks.py -- Team pick endpoints.

Routes:
  GET    /api/v1/teams-picks?type=      -- list picks, newest first
  POST   /api/v1/teams-picks            -- toggle (item_id, type)
  DELETE /api/v1/teams-picks/{item_id}  -- remove one pick for item_id

Curation (POST) is limited to users whose primary role is admin, manager or
agent. DELETE never checks whether anything was removed.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy.exc import IntegrityError

from api.models import (
    PickTypeEnum,
    SuccessResponse,
    TeamPickResponse,
    TeamPickToggle,
    TeamPickToggleResponse,
)
from auth.dependencies import get_current_user, require_primary_role
from auth.models import User
from market.store import MarketStore

logger = logging.getLogger("autozonex.api.teams_picks")

CURATOR_ROLES = ("admin", "manager", "agent")

# Auth policy:
# - GET    /api/v1/teams-picks:            requires auth
# - POST   /api/v1/teams-picks:            requires primary role admin/manager/agent
# - DELETE /api/v1/teams-picks/{item_id}:  requires auth
router = APIRouter(dependencies=[Depends(get_current_user)])


@router.get("/teams-picks", response_model=list[TeamPickResponse])
def list_team_picks(request: Request, type: Optional[PickTypeEnum] = None) -> list[TeamPickResponse]:
    store: MarketStore = request.app.state.market_store
    picks = store.list_team_picks(type.value if type else None)
    return [TeamPickResponse.from_team_pick(p) for p in picks]


@router.post("/teams-picks", response_model=TeamPickToggleResponse)
def toggle_team_pick(
    request: Request,
    body: TeamPickToggle,
    current_user: User = Depends(require_primary_role(*CURATOR_ROLES)),
) -> TeamPickToggleResponse:
    """Mark an item as a team pick, or unmark it if it already is one."""
    store: MarketStore = request.app.state.market_store
    try:
        is_pick = store.toggle_team_pick(body.item_id, body.type.value, str(current_user.id))
    except IntegrityError:
        # A concurrent toggle inserted the same (item_id, type) first; the item is a pick.
        logger.info("Concurrent team pick toggle on %s/%s", body.type.value, body.item_id)
        is_pick = True
    return TeamPickToggleResponse(is_team_pick=is_pick)


@router.delete("/teams-picks/{item_id}", response_model=SuccessResponse)
def delete_team_pick(request: Request, item_id: str) -> SuccessResponse:
    """Remove one pick with this item_id, whatever its type. Always {"success": true}."""
    store: MarketStore = request.app.state.market_store
    store.delete_team_pick_by_item(item_id)
    return SuccessResponse()
