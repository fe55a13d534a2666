"""
api/routes/v1/auth.py -- Account and one-time password REST endpoints.

Routes:
  POST /api/v1/auth/register        -- create account; sets JWT cookie
  POST /api/v1/auth/login           -- password login; sets JWT cookie
  POST /api/v1/auth/logout          -- clears cookie; 200
  GET  /api/v1/auth/me              -- current user info (requires auth)
  POST /api/v1/auth/otp/send        -- e-mail a fresh OTP for (email, purpose)
  POST /api/v1/auth/otp/verify      -- check a submitted OTP
  POST /api/v1/auth/reset-password  -- set a new password after a verified reset OTP

Security:
  [H2] POST /login and POST /otp/send are rate-limited per IP (slowapi).
  [C1] authenticate_user() provides timing equalization -- use it, never inline.
  [M5] Cache-Control: no-store on responses that carry a token.
  OTP send answers the same way whether or not the e-mail is registered.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from sqlalchemy.exc import IntegrityError

from api.limiter import LOGIN_LIMIT, OTP_LIMIT, limiter
from api.models import (
    AuthResponse,
    LoginRequest,
    MessageResponse,
    OtpSendRequest,
    OtpSendResponse,
    OtpVerifyRequest,
    RegisterRequest,
    ResetPasswordRequest,
    UserResponse,
)
from auth.dependencies import get_current_user
from auth.models import SELF_ASSIGNABLE_ROLES, User
from auth.otp import check_otp, issue_otp
from auth.store import UserStore
from auth.tokens import authenticate_user, clear_auth_cookie, hash_password, start_session
from core.config import get_settings
from core.mailer import send_otp_email

logger = logging.getLogger("autozonex.api.auth")

_OTP_ERROR_MESSAGES = {
    "otp_not_found": "No pending OTP for this e-mail and purpose.",
    "otp_expired": "The OTP has expired. Request a new one.",
    "otp_invalid": "The OTP is incorrect.",
}

# Auth policy:
# - POST /api/v1/auth/register:        public
# - POST /api/v1/auth/login:           public -- login endpoint must be unauthenticated
# - POST /api/v1/auth/logout:          public -- clearing a cookie needs no prior auth
# - GET  /api/v1/auth/me:              requires auth (get_current_user)
# - POST /api/v1/auth/otp/send:        public, rate limited
# - POST /api/v1/auth/otp/verify:      public
# - POST /api/v1/auth/reset-password:  public, gated by a verified reset_password OTP
router = APIRouter()


def _auth_response(response: Response, user: User, invite_code: str | None = None) -> AuthResponse:
    token = start_session(response, user)  # [M5] sets Cache-Control: no-store
    return AuthResponse(
        access_token=token,
        token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
        expires_in=get_settings().token_expire_seconds,
        user=UserResponse.from_user(user),
        invite_code=invite_code,
    )


# ---------------------------------------------------------------------------
# Registration and login
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=AuthResponse, status_code=201)
def register(request: Request, response: Response, body: RegisterRequest) -> AuthResponse:
    """Create a user account and log it in.

    A referral_code links the new account to the code's owner (invited_by).
    Accounts holding the associate role receive their own invite code.
    """
    user_store: UserStore = request.app.state.user_store

    roles: list[str] = []
    for role in body.roles or []:
        if role.value not in roles:
            roles.append(role.value)
    roles = roles or ["user"]
    if any(r not in SELF_ASSIGNABLE_ROLES for r in roles):
        raise HTTPException(
            status_code=403,
            detail={"code": "role_not_allowed", "message": "Only the user and associate roles can be self-assigned."},
        )

    if user_store.get_by_email(body.email) is not None:
        raise HTTPException(
            status_code=409,
            detail={"code": "email_exists", "message": "Email already in use."},
        )
    if user_store.get_by_mobile(body.mobile) is not None:
        raise HTTPException(
            status_code=409,
            detail={"code": "mobile_exists", "message": "Mobile number already in use."},
        )

    invited_by: int | None = None
    if body.referral_code:
        invite = user_store.get_invite_code(body.referral_code)
        if invite is None:
            raise HTTPException(
                status_code=400,
                detail={"code": "invalid_referral", "message": "Invalid referral code."},
            )
        invited_by = invite.owner_id

    new_user = User(
        email=body.email,
        name=body.name,
        mobile=body.mobile,
        roles=roles,
        hashed_password=hash_password(body.password),
        invited_by=invited_by,
    )
    try:
        user_id = user_store.create_user(new_user)
    except IntegrityError as exc:
        # Lost a race with a concurrent registration for the same e-mail or mobile.
        raise HTTPException(
            status_code=409,
            detail={"code": "conflict", "message": "An account with that e-mail or mobile already exists."},
        ) from exc

    invite_code: str | None = None
    if "associate" in roles:
        invite_code = user_store.create_invite_code(user_id).code

    created = user_store.get_by_id(user_id)
    if created is None:
        raise HTTPException(
            status_code=500,
            detail={"code": "internal_error", "message": "User not found after write."},
        )
    logger.info("User %d registered (roles=%s, invited_by=%s)", user_id, roles, invited_by)
    return _auth_response(response, created, invite_code=invite_code)


@limiter.limit(LOGIN_LIMIT)  # [H2] brute-force mitigation -- must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=AuthResponse)
def login(request: Request, response: Response, body: LoginRequest) -> AuthResponse:
    """Authenticate with e-mail and password; set JWT cookie.

    Uses authenticate_user() which includes timing equalization [C1].
    The same "bad_credentials" error covers unknown e-mail and wrong
    password so the response does not reveal which accounts exist.
    """
    user_store: UserStore = request.app.state.user_store
    user = authenticate_user(user_store, body.email, body.password)
    if user is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "bad_credentials", "message": "Invalid email or password."},
            headers={"Cache-Control": "no-store"},  # [M5]
        )

    user_store.update_last_login(user.id)
    return _auth_response(response, user_store.get_by_id(user.id) or user)


@router.post("/auth/logout", response_model=MessageResponse)
async def logout(response: Response) -> MessageResponse:
    """Clear the JWT cookie and end the session."""
    clear_auth_cookie(response)
    return MessageResponse(message="Logged out.")


@router.get("/auth/me", response_model=UserResponse)
async def me(current_user: User = Depends(get_current_user)) -> UserResponse:
    """Return the currently authenticated user."""
    return UserResponse.from_user(current_user)


# ---------------------------------------------------------------------------
# One-time passwords
# ---------------------------------------------------------------------------


@limiter.limit(OTP_LIMIT)
@router.post("/auth/otp/send", response_model=OtpSendResponse)
def send_otp(request: Request, body: OtpSendRequest) -> OtpSendResponse:
    """Issue a new OTP for (email, purpose) and e-mail it.

    Any earlier unverified code for the same pair is discarded. When SMTP is
    not configured the code is only logged, which is acceptable in debug
    mode and an error (503) otherwise.
    """
    user_store: UserStore = request.app.state.user_store
    settings = get_settings()

    code = issue_otp(user_store, body.email, body.purpose.value)
    delivered = send_otp_email(body.email, code, body.purpose.value, settings)
    if not delivered and not settings.debug:
        raise HTTPException(
            status_code=503,
            detail={"code": "mail_unavailable", "message": "E-mail delivery is not configured."},
        )
    return OtpSendResponse(message="OTP sent.", expires_in=settings.otp_expire_seconds)


@router.post("/auth/otp/verify", response_model=MessageResponse)
def verify_otp(request: Request, body: OtpVerifyRequest) -> MessageResponse:
    """Check a submitted OTP. A successful check marks the code verified."""
    user_store: UserStore = request.app.state.user_store
    error = check_otp(user_store, body.email, body.purpose.value, body.otp)
    if error is not None:
        raise HTTPException(
            status_code=400,
            detail={"code": error, "message": _OTP_ERROR_MESSAGES[error]},
        )
    return MessageResponse(message="OTP verified.")


@router.post("/auth/reset-password", response_model=MessageResponse)
def reset_password(request: Request, body: ResetPasswordRequest) -> MessageResponse:
    """Set a new password. Requires a verified, unexpired reset_password OTP.

    The OTP is consumed here, so one verification allows exactly one reset.
    """
    user_store: UserStore = request.app.state.user_store

    user = user_store.get_by_email(body.email)
    if user is None or not user_store.consume_verified_otp(body.email, "reset_password"):
        raise HTTPException(
            status_code=400,
            detail={"code": "otp_required", "message": "Verify a reset_password OTP first."},
        )
    user_store.update_password(user.id, hash_password(body.new_password))
    logger.info("Password reset for user %d", user.id)
    return MessageResponse(message="Password updated.")
