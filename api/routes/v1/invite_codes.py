"""
api/routes/v1/invite_codes.py -- Referral invite code endpoints.

Routes:
  GET  /api/v1/invite-codes  -- the caller's codes; admins may pass ?owner_id=
  POST /api/v1/invite-codes  -- generate a fresh code (associate or admin);
                                admins may generate for another owner_id

Codes are 8 characters from the URL-safe alphabet A-Z a-z 0-9 _ -. New users
quote one as referral_code at registration.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request

from api.models import InviteCodeCreate, InviteCodeResponse
from auth.dependencies import get_current_user, require_any_role
from auth.models import User
from auth.store import UserStore

# Auth policy:
# - GET  /api/v1/invite-codes:  requires auth; owner_id honoured for admins only
# - POST /api/v1/invite-codes:  requires the associate or admin role
router = APIRouter()


def _resolve_owner(user_store: UserStore, current_user: User, owner_id: Optional[int]) -> int:
    """Return the owner id the caller may act on. Non-admins always act on themselves."""
    if owner_id is None or owner_id == current_user.id:
        return current_user.id
    if not current_user.has_any_role("admin"):
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "Only admins may manage other users' invite codes."},
        )
    if user_store.get_by_id(owner_id) is None:
        raise HTTPException(
            status_code=404,
            detail={"code": "not_found", "message": "User not found."},
        )
    return owner_id


@router.get("/invite-codes", response_model=list[InviteCodeResponse])
def list_invite_codes(
    request: Request,
    owner_id: Optional[int] = None,
    current_user: User = Depends(get_current_user),
) -> list[InviteCodeResponse]:
    user_store: UserStore = request.app.state.user_store
    owner = _resolve_owner(user_store, current_user, owner_id)
    return [InviteCodeResponse.from_invite_code(c) for c in user_store.list_invite_codes(owner)]


@router.post("/invite-codes", response_model=InviteCodeResponse, status_code=201)
def create_invite_code(
    request: Request,
    body: InviteCodeCreate,
    current_user: User = Depends(require_any_role("associate", "admin")),
) -> InviteCodeResponse:
    user_store: UserStore = request.app.state.user_store
    owner = _resolve_owner(user_store, current_user, body.owner_id)
    return InviteCodeResponse.from_invite_code(user_store.create_invite_code(owner))
