"""
api/routes/v1/configs.py -- Admin key/value configuration endpoints.

Routes (admin only):
  GET    /api/v1/admin/configs        -- {"configs": [...]}
  POST   /api/v1/admin/configs        -- upsert {"key", "value"}; {"ok": true, "config": {...}}
  DELETE /api/v1/admin/configs?key=   -- {"ok": true}

value is any JSON value except null. ConfigUpsert rejects null at the
boundary so the store never sees it.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from api.models import ConfigListResponse, ConfigResponse, ConfigUpsert, ConfigUpsertResponse, OkResponse
from auth.dependencies import require_admin
from market.store import MarketStore

# Auth policy: every route requires the admin role (router-level dependency).
router = APIRouter(dependencies=[Depends(require_admin)])


@router.get("/admin/configs", response_model=ConfigListResponse)
def list_configs(request: Request) -> ConfigListResponse:
    store: MarketStore = request.app.state.market_store
    return ConfigListResponse(configs=[ConfigResponse.from_entry(c) for c in store.list_configs()])


@router.post("/admin/configs", response_model=ConfigUpsertResponse)
def upsert_config(request: Request, body: ConfigUpsert) -> ConfigUpsertResponse:
    """Create the entry for body.key, or replace its value if it exists."""
    store: MarketStore = request.app.state.market_store
    entry = store.upsert_config(body.key, body.value)
    return ConfigUpsertResponse(config=ConfigResponse.from_entry(entry))


@router.delete("/admin/configs", response_model=OkResponse)
def delete_config(request: Request, key: Optional[str] = Query(default=None, max_length=255)) -> OkResponse:
    """Delete the entry for ?key=. Deleting a missing key is not an error."""
    if not key or not key.strip():
        raise HTTPException(
            status_code=400,
            detail={"code": "missing_key", "message": "Key is required."},
        )
    store: MarketStore = request.app.state.market_store
    store.delete_config(key.strip())
    return OkResponse()
