"""
auth/store.py -- SQLAlchemy Core persistence layer for account entities.

Pattern: Repository + Data Mapper (same as market/store.py).
UserStore is the repository for users, invite codes and OTP records;
_row_to_* functions are the mappers. Route and dependency code never touches
SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.
  OTP rows hold only the bcrypt hash of the code.

Document-style fields: roles is a JSON array stored as text. E-mail addresses are
trimmed and lowercased on every write and lookup so uniqueness is
case-insensitive.

Layer rule: no imports from api/, web/ or market/. core/ is allowed.
"""

from __future__ import annotations

import json
import logging
import secrets
import string
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    func,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.models import InviteCode, OtpRecord, User
from core.config import get_settings
from core.database import dispose_engine, get_engine

logger = logging.getLogger("autozonex.auth.store")

_INVITE_ALPHABET = string.ascii_letters + string.digits + "_-"
_INVITE_CODE_LENGTH = 8
_INVITE_CODE_ATTEMPTS = 5

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("name", String(255), nullable=False),
    Column("mobile", String(32), nullable=False, unique=True),
    Column("hashed_password", Text),
    Column("roles", Text, nullable=False),  # JSON array serialized as text
    Column("invited_by", Integer, ForeignKey("users.id")),
    Column("created_at", String(32), nullable=False),
    Column("last_login", String(32)),
    Column("is_active", Integer, nullable=False, server_default="1"),
)

_invite_codes = Table(
    "invite_codes",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("code", String(64), nullable=False, unique=True),
    Column("owner_id", Integer, ForeignKey("users.id"), nullable=False, index=True),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_otps = Table(
    "otps",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False),
    Column("purpose", String(30), nullable=False),
    Column("otp_hash", Text, nullable=False),
    Column("expires_at", String(32), nullable=False, index=True),
    Column("verified", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
    Index("ix_otps_lookup", "email", "purpose", "verified"),
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def normalize_email(email: str) -> str:
    return email.strip().lower()


def generate_invite_code(length: int = _INVITE_CODE_LENGTH) -> str:
    """Return a random URL-safe code (A-Z, a-z, 0-9, '_' and '-')."""
    return "".join(secrets.choice(_INVITE_ALPHABET) for _ in range(length))


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User, InviteCode and OtpRecord entities.

    Usage:
        store = UserStore()
        uid = store.create_user(User(email="a@b.c", name="A", mobile="1", hashed_password=...))
        user = store.get_by_email("a@b.c")
        store.close()
    """

    def __init__(self, db_url: str | None = None) -> None:
        self.db_url = db_url or get_settings().database_url
        self.engine: Engine = get_engine(self.db_url)
        metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def has_users(self) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_users)).scalar()
        return (result or 0) > 0

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the e-mail or mobile number is
        already registered. Callers map that to 409.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    email=normalize_email(user.email),
                    name=user.name.strip(),
                    mobile=user.mobile.strip(),
                    hashed_password=user.hashed_password,
                    roles=json.dumps(list(user.roles) or ["user"]),
                    invited_by=user.invited_by,
                    created_at=_now_iso(),
                    is_active=1 if user.is_active else 0,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_by_email(self, email: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == normalize_email(email))).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_mobile(self, mobile: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.mobile == mobile.strip())).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: int) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def update_password(self, user_id: int, hashed_password: str) -> bool:
        """Replace the stored password hash. Returns False if user_id is unknown."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update().where(_users.c.id == user_id).values(hashed_password=hashed_password)
            )
            conn.commit()
        return result.rowcount > 0

    def update_roles(self, user_id: int, roles: list[str]) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update().where(_users.c.id == user_id).values(roles=json.dumps(list(roles)))
            )
            conn.commit()
        return result.rowcount > 0

    def update_last_login(self, user_id: int) -> None:
        with self.engine.connect() as conn:
            conn.execute(_users.update().where(_users.c.id == user_id).values(last_login=_now_iso()))
            conn.commit()

    def count_users(self) -> int:
        with self.engine.connect() as conn:
            return conn.execute(select(func.count()).select_from(_users)).scalar() or 0

    # ------------------------------------------------------------------
    # Invite codes
    # ------------------------------------------------------------------

    def create_invite_code(self, owner_id: int) -> InviteCode:
        """Generate and store a fresh unique code for owner_id.

        Collisions on the UNIQUE index are retried with a new code. With a
        64-symbol alphabet and 8 characters a second attempt is already rare.
        """
        for _ in range(_INVITE_CODE_ATTEMPTS):
            code = generate_invite_code()
            now = _now_iso()
            try:
                with self.engine.connect() as conn:
                    result = conn.execute(
                        _invite_codes.insert().values(code=code, owner_id=owner_id, created_at=now, updated_at=now)
                    )
                    conn.commit()
            except IntegrityError:
                if self.get_invite_code(code) is None:
                    # Not a code collision -- most likely an unknown owner_id.
                    raise
                logger.info("Invite code collision, retrying")
                continue
            return InviteCode(
                id=result.inserted_primary_key[0],
                code=code,
                owner_id=owner_id,
                created_at=now,
                updated_at=now,
            )
        raise RuntimeError("Could not generate a unique invite code")

    def get_invite_code(self, code: str) -> InviteCode | None:
        with self.engine.connect() as conn:
            row = conn.execute(_invite_codes.select().where(_invite_codes.c.code == code)).fetchone()
        return _row_to_invite_code(row) if row is not None else None

    def list_invite_codes(self, owner_id: int | None = None) -> list[InviteCode]:
        """Return invite codes, newest first, optionally for one owner."""
        query = _invite_codes.select().order_by(_invite_codes.c.id.desc())
        if owner_id is not None:
            query = query.where(_invite_codes.c.owner_id == owner_id)
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_invite_code(r) for r in rows]

    # ------------------------------------------------------------------
    # OTP records
    # ------------------------------------------------------------------

    def replace_otp(self, record: OtpRecord) -> int:
        """Store record, removing any unverified OTP for the same e-mail and purpose.

        Runs in one transaction so a concurrent verify never sees two pending
        codes for the same (email, purpose).
        """
        email = normalize_email(record.email)
        with self.engine.begin() as conn:
            conn.execute(
                _otps.delete().where(
                    (_otps.c.email == email) & (_otps.c.purpose == record.purpose) & (_otps.c.verified == 0)
                )
            )
            result = conn.execute(
                _otps.insert().values(
                    email=email,
                    purpose=record.purpose,
                    otp_hash=record.otp_hash,
                    expires_at=record.expires_at,
                    verified=0,
                    created_at=_now_iso(),
                )
            )
            return result.inserted_primary_key[0]

    def get_pending_otp(self, email: str, purpose: str) -> OtpRecord | None:
        """Return the newest unverified OTP for (email, purpose), expired or not."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _otps.select()
                .where(
                    (_otps.c.email == normalize_email(email)) & (_otps.c.purpose == purpose) & (_otps.c.verified == 0)
                )
                .order_by(_otps.c.id.desc())
                .limit(1)
            ).fetchone()
        return _row_to_otp(row) if row is not None else None

    def mark_otp_verified(self, otp_id: int) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(_otps.update().where(_otps.c.id == otp_id).values(verified=1))
            conn.commit()
        return result.rowcount > 0

    def consume_verified_otp(self, email: str, purpose: str, now_iso: str | None = None) -> bool:
        """Delete a verified, unexpired OTP for (email, purpose).

        Returns True if one existed. A verified code can be consumed once.
        """
        now_iso = now_iso or _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                _otps.delete().where(
                    (_otps.c.email == normalize_email(email))
                    & (_otps.c.purpose == purpose)
                    & (_otps.c.verified == 1)
                    & (_otps.c.expires_at > now_iso)
                )
            )
            conn.commit()
        return result.rowcount > 0

    def purge_expired_otps(self, now_iso: str | None = None) -> int:
        """Delete every OTP whose expiry has passed. Returns rows removed."""
        now_iso = now_iso or _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(_otps.delete().where(_otps.c.expires_at <= now_iso))
            conn.commit()
        return result.rowcount

    def close(self) -> None:
        dispose_engine(self.db_url)


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        name=row.name,
        mobile=row.mobile,
        hashed_password=row.hashed_password,
        roles=json.loads(row.roles) if row.roles else ["user"],
        invited_by=row.invited_by,
        created_at=row.created_at,
        last_login=row.last_login,
        is_active=bool(row.is_active),
    )


def _row_to_invite_code(row) -> InviteCode:
    return InviteCode(
        id=row.id,
        code=row.code,
        owner_id=row.owner_id,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_otp(row) -> OtpRecord:
    return OtpRecord(
        id=row.id,
        email=row.email,
        purpose=row.purpose,
        otp_hash=row.otp_hash,
        expires_at=row.expires_at,
        verified=bool(row.verified),
        created_at=row.created_at,
    )
