"""
auth/otp.py -- One-time password helpers and lifecycle.

Stateless primitives:
  generate_otp()            -- 6-digit code from the secrets CSPRNG
  hash_otp(code)            -- salted bcrypt hash, cost from OTP_BCRYPT_ROUNDS
  verify_otp_hash(code, h)  -- bcrypt check, False on any malformed input

Lifecycle over a UserStore:
  issue_otp()   -- replace any pending code for (email, purpose) and return
                   the new plaintext code for delivery
  check_otp()   -- validate a submitted code and mark it verified

The 6-digit space is only 900,000 codes, so the stored value must be a slow
hash. Request rate limiting is applied by the route layer (slowapi); there is
no per-account attempt counter.

Layer rule: no imports from api/, web/ or market/. core/ is allowed.
"""

from __future__ import annotations

import secrets
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import bcrypt

from auth.models import OtpRecord
from core.config import get_settings

if TYPE_CHECKING:
    from auth.store import UserStore

OTP_MIN = 100000
OTP_MAX = 999999

# Error codes returned by check_otp(). The route layer turns them into 400s.
OTP_NOT_FOUND = "otp_not_found"
OTP_EXPIRED = "otp_expired"
OTP_INVALID = "otp_invalid"


def generate_otp() -> str:
    """Return a uniformly random 6-digit code in [100000, 999999]."""
    return str(OTP_MIN + secrets.randbelow(OTP_MAX - OTP_MIN + 1))


def hash_otp(code: str, rounds: int | None = None) -> str:
    """Return a bcrypt hash of code. Each call uses a fresh random salt."""
    if rounds is None:
        rounds = get_settings().otp_bcrypt_rounds
    return bcrypt.hashpw(code.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_otp_hash(code: str, otp_hash: str) -> bool:
    """Return True if code matches otp_hash.

    A malformed or empty hash is a mismatch, not an error.
    """
    try:
        return bcrypt.checkpw(code.encode("utf-8"), otp_hash.encode("utf-8"))
    except (ValueError, TypeError, AttributeError):
        return False


def issue_otp(store: UserStore, email: str, purpose: str, now: datetime | None = None) -> str:
    """Create and persist a new OTP for (email, purpose); return the plaintext code.

    The plaintext is returned for delivery only and never stored.
    """
    now = now or datetime.now(timezone.utc)
    code = generate_otp()
    expires_at = now + timedelta(seconds=get_settings().otp_expire_seconds)
    store.replace_otp(
        OtpRecord(
            email=email,
            purpose=purpose,
            otp_hash=hash_otp(code),
            expires_at=expires_at.isoformat(),
        )
    )
    return code


def check_otp(store: UserStore, email: str, purpose: str, code: str, now: datetime | None = None) -> str | None:
    """Verify a submitted code. Returns None on success or an error code string.

    Order matters: expiry is checked before the hash so an expired code is
    reported as expired even when it is also wrong.
    """
    now = now or datetime.now(timezone.utc)
    record = store.get_pending_otp(email, purpose)
    if record is None:
        return OTP_NOT_FOUND
    if datetime.fromisoformat(record.expires_at) < now:
        return OTP_EXPIRED
    if not verify_otp_hash(code, record.otp_hash):
        return OTP_INVALID
    store.mark_otp_verified(record.id)
    return None
