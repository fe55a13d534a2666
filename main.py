#!/usr/bin/env python3
"""
Autozonex -- admin command line.

Usage:
  python main.py create-admin --email admin@example.com --name Admin --mobile 9999999999
  python main.py create-admin --email admin@example.com --name Admin --mobile 9999999999 --password s3cretpass
  python main.py set-config maintenance_mode true
  python main.py set-config banner "Markets closed today"
  python main.py purge-otps

Environment variables (see core/config.py):
  DATABASE_URL  SQLAlchemy URL of the database. Defaults to ./autozonex.db.
  DEBUG         Set to true for local development without a SECRET_KEY.
"""

import argparse
import getpass
import json
import sys
from typing import Any, Optional

from sqlalchemy.exc import IntegrityError

from api.models import PASSWORD_MAX, password_fits_bcrypt
from auth.models import User
from auth.store import UserStore
from auth.tokens import hash_password
from market.store import MarketStore

_MIN_PASSWORD = 8


def _parse_value(raw: str) -> Any:
    """Interpret raw as JSON; fall back to the literal string."""
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


def cmd_create_admin(args: argparse.Namespace) -> int:
    password = args.password
    if password is None:
        password = getpass.getpass("Password: ")
        if password != getpass.getpass("Confirm password: "):
            print("  [!] Passwords do not match.")
            return 1
    if len(password) < _MIN_PASSWORD:
        print(f"  [!] Password must be at least {_MIN_PASSWORD} characters.")
        return 1
    if not password_fits_bcrypt(password):
        print(f"  [!] Password must be at most {PASSWORD_MAX} bytes when UTF-8 encoded.")
        return 1

    store = UserStore(args.database_url)
    try:
        user_id = store.create_user(
            User(
                email=args.email,
                name=args.name,
                mobile=args.mobile,
                roles=["admin"],
                hashed_password=hash_password(password),
            )
        )
    except IntegrityError:
        print(f"  [!] A user with e-mail {args.email} or mobile {args.mobile} already exists.")
        return 1
    finally:
        store.close()
    print(f"  Admin {args.email} created (id {user_id}).")
    return 0


def cmd_set_config(args: argparse.Namespace) -> int:
    value = _parse_value(args.value)
    if value is None:
        print("  [!] A config value cannot be null.")
        return 1
    store = MarketStore(args.database_url)
    try:
        entry = store.upsert_config(args.key, value)
    finally:
        store.close()
    print(f"  {entry.key} = {json.dumps(entry.value)}")
    return 0


def cmd_purge_otps(args: argparse.Namespace) -> int:
    store = UserStore(args.database_url)
    try:
        removed = store.purge_expired_otps()
    finally:
        store.close()
    print(f"  Purged {removed} expired OTP(s).")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Autozonex admin tasks.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--database-url",
        default=None,
        metavar="URL",
        help="Override DATABASE_URL for this command",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    create_admin = sub.add_parser("create-admin", help="Create a user holding the admin role")
    create_admin.add_argument("--email", required=True)
    create_admin.add_argument("--name", required=True)
    create_admin.add_argument("--mobile", required=True)
    create_admin.add_argument("--password", default=None, help="Prompted for when omitted")
    create_admin.set_defaults(func=cmd_create_admin)

    set_config = sub.add_parser("set-config", help="Create or replace a config entry")
    set_config.add_argument("key")
    set_config.add_argument("value", help="JSON value; anything else is stored as a string")
    set_config.set_defaults(func=cmd_set_config)

    purge = sub.add_parser("purge-otps", help="Delete expired one-time passwords")
    purge.set_defaults(func=cmd_purge_otps)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
