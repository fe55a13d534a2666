"""
auth/tokens.py -- Password hashing, access tokens and the session cookie.

An Autozonex session is a single HS256 JWT (python-jose) signed with
SECRET_KEY. The claims are the user's id, e-mail (as "sub") and primary role,
i.e. roles[0], which is what team-pick curation is decided on. The same token
is handed to API clients in the response body and to browsers as the
"access_token" httpOnly cookie.

Login checks run bcrypt even for unknown e-mails (against _DUMMY_HASH), so
response time does not reveal which accounts exist.

Layer rule: no imports from api/, web/ or market/.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any, Optional

import bcrypt
from jose import JWTError, jwt

from core.config import get_settings

if TYPE_CHECKING:
    from starlette.responses import Response

    from auth.models import User
    from auth.store import UserStore

_settings = get_settings()

_ALGORITHM = "HS256"
_REQUIRED_CLAIMS = ("sub", "user_id", "role")
COOKIE_NAME = "access_token"


def _lifetime(expire_seconds: int) -> int:
    return expire_seconds if expire_seconds > 0 else _settings.token_expire_seconds


# ---------------------------------------------------------------------------
# Passwords
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    # Request models and create-admin keep passwords within bcrypt's 72-byte input limit.
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: Optional[str]) -> bool:
    """Return True if plain matches hashed. A missing or malformed hash never matches."""
    if not hashed:
        return False
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


_DUMMY_HASH = hash_password("autozonex-login-timing")


def authenticate_user(store: UserStore, email: str, password: str) -> Optional[User]:
    """Return the active user owning email/password, else None.

    Unknown e-mails still pay for one bcrypt check so both failure paths
    take the same time.
    """
    user = store.get_by_email(email)
    if user is None or not user.hashed_password:
        verify_password(password, _DUMMY_HASH)
        return None
    if not verify_password(password, user.hashed_password) or not user.is_active:
        return None
    return user


# ---------------------------------------------------------------------------
# Access tokens
# ---------------------------------------------------------------------------


def create_access_token(user_id: int, email: str, role: str, expire_seconds: int = 0) -> str:
    """Sign a token for the user. expire_seconds=0 uses TOKEN_EXPIRE_SECONDS."""
    claims = {
        "sub": email,
        "user_id": user_id,
        "role": role,
        "exp": datetime.now(timezone.utc) + timedelta(seconds=_lifetime(expire_seconds)),
    }
    return jwt.encode(claims, _settings.secret_key, algorithm=_ALGORITHM)


def decode_access_token(token: str) -> Optional[dict[str, Any]]:
    """Return the verified claims, or None for a bad signature, expiry or missing claim."""
    try:
        claims = jwt.decode(token, _settings.secret_key, algorithms=[_ALGORITHM])
    except JWTError:
        return None
    if any(name not in claims for name in _REQUIRED_CLAIMS):
        return None
    return claims


# ---------------------------------------------------------------------------
# Session cookie
# ---------------------------------------------------------------------------


def set_auth_cookie(response: Response, token: str, expire_seconds: int = 0) -> None:
    """Attach token as the session cookie; it expires together with the JWT.

    httponly hides it from page scripts. samesite=lax keeps it off cross-site
    POSTs. secure follows SECURE_COOKIES.
    """
    response.set_cookie(
        COOKIE_NAME,
        value=token,
        max_age=_lifetime(expire_seconds),
        httponly=True,
        samesite="lax",
        secure=_settings.secure_cookies,
    )


def clear_auth_cookie(response: Response) -> None:
    response.delete_cookie(COOKIE_NAME)


def start_session(response: Response, user: User) -> str:
    """Sign a token for user, set it as the cookie and mark the response no-store.

    Returns the token so API callers can also put it in the response body.
    """
    token = create_access_token(user.id, user.email, user.role)
    set_auth_cookie(response, token)
    response.headers["Cache-Control"] = "no-store"
    return token
