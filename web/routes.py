"""
web/routes.py -- Jinja2 template routes for the Autozonex admin pages.

These routes serve server-rendered HTML. They share app.state with the API
routes (same user and market stores) but return HTML instead of JSON.

Route registration order matters. POST /admin/configs/delete must be
registered before anything that could capture "delete" as a path parameter.

Routes:
  GET  /login                  -- login form
  POST /login                  -- handle password login
  POST /logout                 -- clear cookie, redirect /login
  GET  /admin                  -- overview counts (admin)
  GET  /admin/symbols          -- symbol table with search + pagination (admin)
  GET  /admin/configs          -- config entries and edit form (admin)
  POST /admin/configs          -- upsert one entry from the form (admin)
  POST /admin/configs/delete   -- delete one entry (admin)

Unauthenticated requests to /admin* redirect to /login?next=<path>;
authenticated non-admins get a 403 page.
"""

import json
import logging
from pathlib import Path
from typing import Any, Optional

from fastapi import APIRouter, Form, Request
from fastapi.responses import HTMLResponse, RedirectResponse, Response
from fastapi.templating import Jinja2Templates

from auth.dependencies import try_get_current_user
from auth.store import UserStore
from auth.tokens import authenticate_user, clear_auth_cookie, start_session
from market.store import MarketStore

logger = logging.getLogger("autozonex.web")

templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))
# Expose try_get_current_user as a Jinja2 global so layout.html can call it
# without every route handler passing current_user in the template context.
templates.env.globals["try_get_current_user"] = try_get_current_user
router = APIRouter()

_PAGE_SIZE = 25

# Whitelist mapping for ?error= query params on /login [M3].
# The raw query param is NEVER passed to templates -- only the message from
# this dict is. Prevents reflected XSS via crafted error query strings.
_ERROR_MESSAGES: dict[str, str] = {
    "bad_credentials": "Invalid email or password.",
}

# ---------------------------------------------------------------------------
# Auth helpers
# ---------------------------------------------------------------------------


def _safe_next(next_url: Optional[str]) -> str:
    """Validate a post-login redirect target. Only accept relative paths. [C2]

    Rejects absolute URLs and protocol-relative ("//host") URLs, both of which
    would redirect off-site after login.
    """
    if next_url and next_url.startswith("/") and not next_url.startswith("//"):
        return next_url
    return "/admin"


def _require_admin(request: Request) -> Optional[Response]:
    """Return a response that ends the request, or None if the caller is an admin.

    Call at the top of protected route handlers:
        if denied := _require_admin(request):
            return denied
    """
    user = try_get_current_user(request)
    if user is None:
        return RedirectResponse(f"/login?next={request.url.path}", status_code=302)
    if not user.has_any_role("admin"):
        return templates.TemplateResponse(request, "admin/forbidden.html", {}, status_code=403)
    return None


def _parse_config_value(raw: str) -> Any:
    """Read a form value as JSON; anything that is not valid JSON is kept as a string."""
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


# ---------------------------------------------------------------------------
# Login / logout
# ---------------------------------------------------------------------------


@router.get("/login", response_class=HTMLResponse)
def login_form(request: Request) -> Response:
    """Render the login form. Already-authenticated users go straight to /admin."""
    if try_get_current_user(request) is not None:
        return RedirectResponse("/admin", status_code=302)

    error_msg = _ERROR_MESSAGES.get(request.query_params.get("error", ""))
    return templates.TemplateResponse(
        request,
        "login.html",
        {"error_msg": error_msg, "next": _safe_next(request.query_params.get("next"))},
    )


@router.post("/login", response_class=HTMLResponse)
def login_post(
    request: Request,
    email: str = Form(...),
    password: str = Form(...),
    next: str = Form(default="/admin"),
) -> RedirectResponse:
    """Handle the login form submission."""
    user_store: UserStore = request.app.state.user_store
    user = authenticate_user(user_store, email, password)  # [C1] timing equalization
    if user is None:
        return RedirectResponse("/login?error=bad_credentials", status_code=302)

    user_store.update_last_login(user.id)
    resp = RedirectResponse(_safe_next(next), status_code=302)  # [C2]
    start_session(resp, user)
    return resp


@router.post("/logout")
def logout(request: Request) -> RedirectResponse:
    """Clear the JWT cookie and redirect to the login page."""
    resp = RedirectResponse("/login", status_code=302)
    clear_auth_cookie(resp)
    return resp


# ---------------------------------------------------------------------------
# Admin pages
# ---------------------------------------------------------------------------


@router.get("/admin", response_class=HTMLResponse)
def admin_overview(request: Request) -> Response:
    if denied := _require_admin(request):
        return denied
    market: MarketStore = request.app.state.market_store
    user_store: UserStore = request.app.state.user_store
    return templates.TemplateResponse(
        request,
        "admin/index.html",
        {
            "symbol_count": market.count_symbols(),
            "invalid_symbols": market.list_invalid_symbols(),
            "team_pick_count": market.count_team_picks(),
            "config_count": len(market.list_configs()),
            "user_count": user_store.count_users(),
        },
    )


@router.get("/admin/symbols", response_class=HTMLResponse)
def admin_symbols(request: Request, search: str = "", page: int = 1) -> Response:
    if denied := _require_admin(request):
        return denied
    market: MarketStore = request.app.state.market_store
    search = search.strip()[:100]
    page = max(1, page)
    rows, total = market.search_symbols(search=search, page=page, limit=_PAGE_SIZE)
    total_pages = max(1, (total + _PAGE_SIZE - 1) // _PAGE_SIZE)
    return templates.TemplateResponse(
        request,
        "admin/symbols.html",
        {
            "symbols": rows,
            "search": search,
            "page": page,
            "total": total,
            "total_pages": total_pages,
        },
    )


def _render_configs(request: Request, error_msg: Optional[str] = None, status_code: int = 200) -> Response:
    market: MarketStore = request.app.state.market_store
    return templates.TemplateResponse(
        request,
        "admin/configs.html",
        {"configs": market.list_configs(), "error_msg": error_msg},
        status_code=status_code,
    )


@router.get("/admin/configs", response_class=HTMLResponse)
def admin_configs(request: Request) -> Response:
    if denied := _require_admin(request):
        return denied
    return _render_configs(request)


@router.post("/admin/configs/delete", response_class=HTMLResponse)
def admin_config_delete(request: Request, key: str = Form(...)) -> Response:
    if denied := _require_admin(request):
        return denied
    market: MarketStore = request.app.state.market_store
    market.delete_config(key.strip())
    return RedirectResponse("/admin/configs", status_code=303)


@router.post("/admin/configs", response_class=HTMLResponse)
def admin_config_save(request: Request, key: str = Form(...), value: str = Form(...)) -> Response:
    """Upsert one entry. value is parsed as JSON, falling back to the raw string."""
    if denied := _require_admin(request):
        return denied
    key = key.strip()
    if not key or len(key) > 255:
        return _render_configs(request, "Key must be 1-255 characters.", status_code=400)
    parsed = _parse_config_value(value)
    if parsed is None:
        return _render_configs(request, "Value must not be null.", status_code=400)

    market: MarketStore = request.app.state.market_store
    market.upsert_config(key, parsed)
    logger.info("Config %r saved from admin page", key)
    return RedirectResponse("/admin/configs", status_code=303)
