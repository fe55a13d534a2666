"""
api/routes/v1/dashboard.py -- Dashboard data-quality endpoint.

Returns the symbols that need attention: every symbol whose status is not
the literal "active", including symbols that never had a status set.

This is a read-only route -- no mutations here.
"""

from fastapi import APIRouter, Depends, Request

from api.models import SymbolResponse
from auth.dependencies import get_current_user
from market.store import MarketStore

# Auth policy:
# - GET /api/v1/dashboard/invalid-symbols: requires auth -- symbol data is internal
# Router-level dependency enforces auth; the single handler does not repeat it.
router = APIRouter(dependencies=[Depends(get_current_user)])


@router.get("/dashboard/invalid-symbols", response_model=list[SymbolResponse])
def get_invalid_symbols(request: Request) -> list[SymbolResponse]:
    """Return a JSON array of symbols whose status != "active", sorted by ticker."""
    store: MarketStore = request.app.state.market_store
    return [SymbolResponse.from_symbol(s) for s in store.list_invalid_symbols()]
