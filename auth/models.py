"""
auth/models.py -- Domain dataclasses for account entities.

Pattern: Data class (pure data container, near-zero logic). Mirrors the
approach in market/models.py -- dataclasses own domain shape; stores and
routes do the work.

Layer rule: no imports from api/, web/, core/ or market/.
"""

from __future__ import annotations

from dataclasses import dataclass, field

ROLES = ("user", "agent", "manager", "admin", "associate")
# Roles a visitor may pick for themselves at registration.
SELF_ASSIGNABLE_ROLES = ("user", "associate")

OTP_PURPOSES = ("register", "reset_password", "telegram_verify")


@dataclass
class User:
    """An account holder.

    roles is ordered: roles[0] is the primary role and is what the JWT carries.
    invited_by is the id of the user whose invite code was used at sign-up.
    """

    email: str
    name: str
    mobile: str
    roles: list[str] = field(default_factory=lambda: ["user"])
    id: int | None = None
    hashed_password: str | None = None
    invited_by: int | None = None
    created_at: str | None = None
    last_login: str | None = None
    is_active: bool = True

    @property
    def role(self) -> str:
        return self.roles[0] if self.roles else "user"

    def has_any_role(self, *roles: str) -> bool:
        return any(r in roles for r in self.roles)


@dataclass
class InviteCode:
    """A referral code owned by one user. code is globally unique."""

    code: str
    owner_id: int
    id: int | None = None
    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class OtpRecord:
    """A stored one-time password.

    Only the bcrypt hash of the code is persisted. expires_at is an ISO 8601
    UTC timestamp; verified flips to True once the code has been checked.
    """

    email: str
    purpose: str
    otp_hash: str
    expires_at: str
    id: int | None = None
    verified: bool = False
    created_at: str | None = None
