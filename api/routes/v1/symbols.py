"""
api/routes/v1/symbols.py -- Symbol CRUD endpoints.

Two routers live here:

  router (any authenticated user):
    GET    /api/v1/symbols              -- every symbol, sorted by ticker
    PUT    /api/v1/symbols              -- {"id", "updates"}; updated symbol or null
    PUT    /api/v1/symbols/{symbol_id}  -- partial update; updated symbol or null
    DELETE /api/v1/symbols/{symbol_id}  -- {"success": true}, found or not

  admin_router (admin role):
    GET    /api/v1/admin/symbols        -- search + filters + pagination
    POST   /api/v1/admin/symbols        -- create
    PUT    /api/v1/admin/symbols        -- {"id", ...fields}; 404 if missing
    DELETE /api/v1/admin/symbols?ids=   -- bulk delete by comma-separated ids
    PATCH  /api/v1/admin/symbols        -- bulk action over ids
    POST   /api/v1/admin/symbols/upload -- CSV import, upsert by ticker
"""

from __future__ import annotations

import logging
import math
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, UploadFile
from sqlalchemy.exc import IntegrityError

from api.models import (
    AdminSymbolUpdate,
    BulkActionEnum,
    BulkResult,
    DeleteResult,
    Pagination,
    SuccessResponse,
    SymbolBulkAction,
    SymbolCreate,
    SymbolEnvelope,
    SymbolImportResult,
    SymbolPage,
    SymbolResponse,
    SymbolUpdate,
    SymbolUpdateRequest,
)
from auth.dependencies import get_current_user, require_admin
from market.ingest import parse_symbols_csv
from market.models import Symbol
from market.store import MarketStore

# Auth policy:
# - /api/v1/symbols*:        requires auth (router-level get_current_user)
# - /api/v1/admin/symbols:   requires admin (router-level require_admin)
router = APIRouter(dependencies=[Depends(get_current_user)])
admin_router = APIRouter(dependencies=[Depends(require_admin)])

logger = logging.getLogger("autozonex.api.symbols")

_MAX_UPLOAD_BYTES = 1 * 1024 * 1024  # 1 MB


def _symbol_exists(
    status_code: int = 409, message: str = "Another symbol already uses that ticker."
) -> HTTPException:
    return HTTPException(status_code=status_code, detail={"code": "symbol_exists", "message": message})


def _ticker_taken(store: MarketStore, ticker: Optional[str], symbol_id: Optional[int] = None) -> bool:
    """True if a symbol other than symbol_id already uses ticker."""
    if ticker is None:
        return False
    holder = store.get_symbol_by_ticker(ticker)
    return holder is not None and holder.id != symbol_id


def _apply_update(store: MarketStore, symbol_id: int, changes: dict[str, Any]) -> Optional[Symbol]:
    """Run the update. Only a ticker collision becomes symbol_exists.

    Other IntegrityErrors propagate to the database error handler.
    """
    ticker = changes.get("symbol")
    if _ticker_taken(store, ticker, symbol_id):
        raise _symbol_exists()
    try:
        return store.update_symbol(symbol_id, **changes)
    except IntegrityError as exc:
        # A concurrent writer may have taken the ticker after the check above.
        if _ticker_taken(store, ticker, symbol_id):
            raise _symbol_exists() from exc
        raise


# ---------------------------------------------------------------------------
# Authenticated user routes
# ---------------------------------------------------------------------------


@router.get("/symbols", response_model=list[SymbolResponse])
def list_symbols(request: Request) -> list[SymbolResponse]:
    store: MarketStore = request.app.state.market_store
    return [SymbolResponse.from_symbol(s) for s in store.list_symbols()]


@router.put("/symbols", response_model=Optional[SymbolResponse])
def update_symbol_from_body(request: Request, body: SymbolUpdateRequest) -> Optional[SymbolResponse]:
    """Apply body.updates to the symbol with body.id. Returns null if no such symbol."""
    if body.id is None or body.updates is None:
        raise HTTPException(
            status_code=400,
            detail={"code": "missing_fields", "message": "Both id and updates are required."},
        )
    store: MarketStore = request.app.state.market_store
    updated = _apply_update(store, body.id, body.updates.changes())
    return SymbolResponse.from_symbol(updated) if updated else None


@router.put("/symbols/{symbol_id}", response_model=Optional[SymbolResponse])
def update_symbol(request: Request, symbol_id: int, body: SymbolUpdate) -> Optional[SymbolResponse]:
    store: MarketStore = request.app.state.market_store
    updated = _apply_update(store, symbol_id, body.changes())
    return SymbolResponse.from_symbol(updated) if updated else None


@router.delete("/symbols/{symbol_id}", response_model=SuccessResponse)
def delete_symbol(request: Request, symbol_id: int) -> SuccessResponse:
    """Delete a symbol. Reports success whether or not it existed."""
    store: MarketStore = request.app.state.market_store
    store.delete_symbol(symbol_id)
    return SuccessResponse()


# ---------------------------------------------------------------------------
# Admin routes
# ---------------------------------------------------------------------------


@admin_router.get("/admin/symbols", response_model=SymbolPage)
def search_symbols(
    request: Request,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=500),
    search: str = Query(default="", max_length=100),
    is_liquid: Optional[bool] = Query(default=None),
    status: Optional[str] = Query(default=None, max_length=50),
) -> SymbolPage:
    """Return one page of symbols sorted by ticker.

    search matches ticker or company name, case-insensitively.
    """
    store: MarketStore = request.app.state.market_store
    rows, total = store.search_symbols(search=search.strip(), is_liquid=is_liquid, status=status, page=page, limit=limit)
    return SymbolPage(
        symbols=[SymbolResponse.from_symbol(s) for s in rows],
        pagination=Pagination(page=page, limit=limit, total=total, pages=math.ceil(total / limit)),
    )


@admin_router.post("/admin/symbols", response_model=SymbolEnvelope, status_code=201)
def create_symbol(request: Request, body: SymbolCreate) -> SymbolEnvelope:
    store: MarketStore = request.app.state.market_store
    if _ticker_taken(store, body.symbol):
        raise _symbol_exists(400, "Symbol already exists.")
    try:
        symbol_id = store.create_symbol(Symbol(**body.model_dump()))
    except IntegrityError as exc:
        if _ticker_taken(store, body.symbol):
            raise _symbol_exists(400, "Symbol already exists.") from exc
        raise
    created = store.get_symbol(symbol_id)
    if created is None:
        raise HTTPException(
            status_code=500,
            detail={"code": "internal_error", "message": "Symbol not found after write."},
        )
    return SymbolEnvelope(symbol=SymbolResponse.from_symbol(created))


@admin_router.put("/admin/symbols", response_model=SymbolEnvelope)
def admin_update_symbol(request: Request, body: AdminSymbolUpdate) -> SymbolEnvelope:
    if body.id is None:
        raise HTTPException(
            status_code=400,
            detail={"code": "missing_id", "message": "Symbol ID is required."},
        )
    store: MarketStore = request.app.state.market_store
    changes = body.changes()
    changes.pop("id", None)
    updated = _apply_update(store, body.id, changes)
    if updated is None:
        raise HTTPException(
            status_code=404,
            detail={"code": "not_found", "message": "Symbol not found."},
        )
    return SymbolEnvelope(symbol=SymbolResponse.from_symbol(updated))


@admin_router.delete("/admin/symbols", response_model=DeleteResult)
def delete_symbols(request: Request, ids: Optional[str] = Query(default=None, max_length=10000)) -> DeleteResult:
    """Delete every symbol listed in ?ids=1,2,3."""
    parts = [p.strip() for p in (ids or "").split(",") if p.strip()]
    if not parts:
        raise HTTPException(
            status_code=400,
            detail={"code": "missing_ids", "message": "Symbol IDs are required."},
        )
    try:
        symbol_ids = [int(p) for p in parts]
    except ValueError as exc:
        raise HTTPException(
            status_code=400,
            detail={"code": "invalid_ids", "message": "Symbol IDs must be integers."},
        ) from exc
    store: MarketStore = request.app.state.market_store
    return DeleteResult(deleted=store.delete_symbols(symbol_ids))


@admin_router.patch("/admin/symbols", response_model=BulkResult)
def bulk_update_symbols(request: Request, body: SymbolBulkAction) -> BulkResult:
    """Apply one action to many symbols.

    update_status takes a string, update_liquidity a boolean, and the
    sector / watchlist actions a non-empty name. add_* never duplicates a
    name; remove_* removes every copy.
    """
    if not body.ids:
        raise HTTPException(
            status_code=400,
            detail={"code": "missing_ids", "message": "Symbol IDs are required."},
        )
    try:
        action = BulkActionEnum(body.action)
    except ValueError as exc:
        raise HTTPException(
            status_code=400,
            detail={"code": "invalid_action", "message": f"Unknown action: {body.action}"},
        ) from exc

    if action is BulkActionEnum.update_liquidity:
        valid = isinstance(body.value, bool)
    else:
        valid = isinstance(body.value, str) and bool(body.value.strip())
    if not valid:
        raise HTTPException(
            status_code=400,
            detail={"code": "invalid_value", "message": f"Invalid value for {action.value}."},
        )

    value = body.value.strip() if isinstance(body.value, str) else body.value
    store: MarketStore = request.app.state.market_store
    matched = store.bulk_update_symbols(body.ids, action.value, value)
    return BulkResult(action=action.value, matched=matched)


@admin_router.post("/admin/symbols/upload", response_model=SymbolImportResult)
async def upload_symbols(request: Request, file: Optional[UploadFile] = None) -> SymbolImportResult:
    """Create or update symbols from an uploaded CSV (multipart field "file").

    Rows are matched on ticker: known tickers are updated, new ones created.
    See market/ingest.py for the column format.
    """
    if file is None:
        raise HTTPException(
            status_code=400,
            detail={"code": "missing_file", "message": "No file uploaded."},
        )

    # Read at most one byte past the limit.
    raw = await file.read(_MAX_UPLOAD_BYTES + 1)
    if len(raw) > _MAX_UPLOAD_BYTES:
        raise HTTPException(
            status_code=413,
            detail={"code": "file_too_large", "message": "Upload must be 1 MB or smaller."},
        )

    rows = parse_symbols_csv(raw.decode("utf-8-sig", errors="replace"))
    store: MarketStore = request.app.state.market_store
    created, updated = store.upsert_symbols([row.fields() for row in rows])
    logger.info("Symbol upload %r: %d created, %d updated", file.filename, created, updated)
    return SymbolImportResult(
        processed=len(rows),
        created=created,
        updated=updated,
        message=f"Processed {len(rows)} symbols. Created: {created}, Updated: {updated}",
    )
