"""
API request and response models for Autozonex REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
market/models.py, which own the internal domain representation. Route
handlers map between the two.

Separation of concerns: domain dataclasses = domain truth; api/ models = API contract.
"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, JsonValue, field_validator

from auth.models import InviteCode, User
from market.models import ConfigEntry, Symbol, TeamPick

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
MOBILE_PATTERN = r"^\+?[0-9]{7,15}$"
OTP_PATTERN = r"^\d{6}$"

# Symbol columns that cannot be cleared by a partial update.
SYMBOL_NOT_NULL_FIELDS = ("symbol", "is_liquid")

# bcrypt reads at most 72 bytes. Field max_length bounds characters; the
# validators below bound the UTF-8 length.
PASSWORD_MAX = 72


def password_fits_bcrypt(password: str) -> bool:
    return len(password.encode("utf-8")) <= PASSWORD_MAX


def _check_password_bytes(value: str) -> str:
    if not password_fits_bcrypt(value):
        raise ValueError(f"password must be at most {PASSWORD_MAX} bytes when UTF-8 encoded")
    return value


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class RoleEnum(str, Enum):
    user = "user"
    agent = "agent"
    manager = "manager"
    admin = "admin"
    associate = "associate"


class OtpPurposeEnum(str, Enum):
    register = "register"
    reset_password = "reset_password"
    telegram_verify = "telegram_verify"


class PickTypeEnum(str, Enum):
    zone = "zone"
    trade = "trade"
    alert = "alert"


class BulkActionEnum(str, Enum):
    update_status = "update_status"
    update_liquidity = "update_liquidity"
    add_sector = "add_sector"
    remove_sector = "remove_sector"
    add_watchlist = "add_watchlist"
    remove_watchlist = "remove_watchlist"


# ---------------------------------------------------------------------------
# Shared envelopes
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health.

    status is "healthy" when every component reports "ok", else "degraded".
    """

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)


class SuccessResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool = True


class OkResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    ok: bool = True


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register.

    roles defaults to ["user"]. Only "user" and "associate" may be chosen
    at sign-up; elevated roles are granted by an admin.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=255)
    email: str = Field(pattern=EMAIL_PATTERN, max_length=255)
    mobile: str = Field(pattern=MOBILE_PATTERN)
    password: str = Field(min_length=8, max_length=PASSWORD_MAX)
    referral_code: Optional[str] = Field(default=None, max_length=64)
    roles: Optional[list[RoleEnum]] = Field(default=None, min_length=1, max_length=5)

    @field_validator("password")
    @classmethod
    def password_within_bcrypt_limit(cls, value: str) -> str:
        return _check_password_bytes(value)


class LoginRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=PASSWORD_MAX)


class UserResponse(BaseModel):
    """Public view of a user. Never includes the password hash."""

    model_config = ConfigDict(frozen=True)

    id: int
    email: str
    name: str
    mobile: str
    role: str
    roles: list[str]
    invited_by: Optional[int] = None
    is_active: bool
    created_at: str
    last_login: Optional[str] = None

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            email=user.email,
            name=user.name,
            mobile=user.mobile,
            role=user.role,
            roles=list(user.roles),
            invited_by=user.invited_by,
            is_active=user.is_active,
            created_at=user.created_at or "",
            last_login=user.last_login,
        )


class AuthResponse(BaseModel):
    """Response for register and login. The token is also set as a cookie."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserResponse
    invite_code: Optional[str] = None


class OtpSendRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(pattern=EMAIL_PATTERN, max_length=255)
    purpose: OtpPurposeEnum


class OtpSendResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str
    expires_in: int


class OtpVerifyRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(pattern=EMAIL_PATTERN, max_length=255)
    purpose: OtpPurposeEnum
    otp: str = Field(pattern=OTP_PATTERN)


class ResetPasswordRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(pattern=EMAIL_PATTERN, max_length=255)
    new_password: str = Field(min_length=8, max_length=PASSWORD_MAX)

    @field_validator("new_password")
    @classmethod
    def new_password_within_bcrypt_limit(cls, value: str) -> str:
        return _check_password_bytes(value)


# ---------------------------------------------------------------------------
# Invite codes
# ---------------------------------------------------------------------------


class InviteCodeCreate(BaseModel):
    """Request body for POST /api/v1/invite-codes. owner_id is honoured for admins only."""

    owner_id: Optional[int] = None


class InviteCodeResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    code: str
    owner_id: int
    created_at: str

    @classmethod
    def from_invite_code(cls, invite: InviteCode) -> "InviteCodeResponse":
        return cls(id=invite.id, code=invite.code, owner_id=invite.owner_id, created_at=invite.created_at)


# ---------------------------------------------------------------------------
# Symbols
# ---------------------------------------------------------------------------


class SymbolResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    symbol: str
    company_name: Optional[str] = None
    ltp: Optional[float] = None
    day_low: Optional[float] = None
    sectors: list[str] = Field(default_factory=list)
    watchlists: list[str] = Field(default_factory=list)
    status: Optional[str] = None
    is_liquid: bool = False
    last_updated: Optional[str] = None
    created_at: str
    updated_at: str

    @classmethod
    def from_symbol(cls, symbol: Symbol) -> "SymbolResponse":
        return cls(
            id=symbol.id,
            symbol=symbol.symbol,
            company_name=symbol.company_name,
            ltp=symbol.ltp,
            day_low=symbol.day_low,
            sectors=list(symbol.sectors),
            watchlists=list(symbol.watchlists),
            status=symbol.status,
            is_liquid=symbol.is_liquid,
            last_updated=symbol.last_updated,
            created_at=symbol.created_at,
            updated_at=symbol.updated_at,
        )


class SymbolCreate(BaseModel):
    """Request body for POST /api/v1/admin/symbols."""

    model_config = ConfigDict(str_strip_whitespace=True)

    symbol: str = Field(min_length=1, max_length=64)
    company_name: Optional[str] = Field(default=None, max_length=255)
    ltp: Optional[float] = None
    day_low: Optional[float] = None
    sectors: list[str] = Field(default_factory=list, max_length=50)
    watchlists: list[str] = Field(default_factory=list, max_length=50)
    status: Optional[str] = Field(default="active", max_length=50)
    is_liquid: bool = False
    last_updated: Optional[str] = None


class SymbolUpdate(BaseModel):
    """Partial symbol update. Unknown keys are ignored; send only what changes."""

    model_config = ConfigDict(str_strip_whitespace=True)

    symbol: Optional[str] = Field(default=None, min_length=1, max_length=64)
    company_name: Optional[str] = Field(default=None, max_length=255)
    ltp: Optional[float] = None
    day_low: Optional[float] = None
    sectors: Optional[list[str]] = Field(default=None, max_length=50)
    watchlists: Optional[list[str]] = Field(default=None, max_length=50)
    status: Optional[str] = Field(default=None, max_length=50)
    is_liquid: Optional[bool] = None
    last_updated: Optional[str] = None

    def changes(self) -> dict[str, Any]:
        """Return only the fields the caller actually sent.

        symbol and is_liquid are NOT NULL columns, so an explicit null for
        either is dropped and the stored value kept.
        """
        fields = self.model_dump(exclude_unset=True)
        for name in SYMBOL_NOT_NULL_FIELDS:
            if name in fields and fields[name] is None:
                del fields[name]
        return fields


class SymbolUpdateRequest(BaseModel):
    """Request body for PUT /api/v1/symbols -- {"id": ..., "updates": {...}}.

    Both fields are optional at the schema level so the route can answer a
    missing one with a plain 400 instead of a 422.
    """

    id: Optional[int] = None
    updates: Optional[SymbolUpdate] = None


class AdminSymbolUpdate(SymbolUpdate):
    """Request body for PUT /api/v1/admin/symbols -- the id travels with the fields."""

    id: Optional[int] = None


class SymbolBulkAction(BaseModel):
    """Request body for PATCH /api/v1/admin/symbols."""

    ids: list[int] = Field(default_factory=list, max_length=1000)
    action: str
    value: Any = None


class Pagination(BaseModel):
    model_config = ConfigDict(frozen=True)

    page: int
    limit: int
    total: int
    pages: int


class SymbolPage(BaseModel):
    """Response for GET /api/v1/admin/symbols."""

    model_config = ConfigDict(frozen=True)

    success: bool = True
    symbols: list[SymbolResponse]
    pagination: Pagination


class SymbolEnvelope(BaseModel):
    """Admin create/update response: {"success": true, "symbol": {...}}."""

    model_config = ConfigDict(frozen=True)

    success: bool = True
    symbol: SymbolResponse


class BulkResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool = True
    action: str
    matched: int


class DeleteResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool = True
    deleted: int


class SymbolImportResult(BaseModel):
    """Response for POST /api/v1/admin/symbols/upload."""

    model_config = ConfigDict(frozen=True)

    success: bool = True
    processed: int
    created: int
    updated: int
    message: str


# ---------------------------------------------------------------------------
# Team picks
# ---------------------------------------------------------------------------


class TeamPickToggle(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    item_id: str = Field(min_length=1, max_length=64)
    type: PickTypeEnum


class TeamPickToggleResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool = True
    is_team_pick: bool


class TeamPickResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    item_id: str
    type: str
    added_by: str
    created_at: str

    @classmethod
    def from_team_pick(cls, pick: TeamPick) -> "TeamPickResponse":
        return cls(
            id=pick.id,
            item_id=pick.item_id,
            type=pick.type,
            added_by=pick.added_by,
            created_at=pick.created_at,
        )


# ---------------------------------------------------------------------------
# Configs
# ---------------------------------------------------------------------------


class ConfigUpsert(BaseModel):
    """Request body for POST /api/v1/admin/configs.

    value may be any JSON value (string, number, bool, list, object) but
    not null.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    key: str = Field(min_length=1, max_length=255)
    value: JsonValue

    @field_validator("value")
    @classmethod
    def value_not_null(cls, value: JsonValue) -> JsonValue:
        if value is None:
            raise ValueError("value must not be null")
        return value


class ConfigResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    key: str
    value: Any
    created_at: str
    updated_at: str

    @classmethod
    def from_entry(cls, entry: ConfigEntry) -> "ConfigResponse":
        return cls(
            id=entry.id,
            key=entry.key,
            value=entry.value,
            created_at=entry.created_at,
            updated_at=entry.updated_at,
        )


class ConfigListResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    configs: list[ConfigResponse]


class ConfigUpsertResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    ok: bool = True
    config: ConfigResponse
