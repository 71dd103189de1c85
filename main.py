#!/usr/bin/env python3
"""
Nadlan -- operator commands for the account database.

Usage:
  python main.py create-admin --email admin@example.com --password 'S3cretPass'
  python main.py purge-expired

Environment variables:
  DATABASE_URL   SQLAlchemy URL of the account database (default: sqlite file
                 next to this script).
  SECRET_KEY, REFRESH_SECRET_KEY
                 Required unless DEBUG=true. Not used by these commands, but
                 settings are validated as a whole.

The API server is started separately:  uvicorn api.main:app
"""

import argparse
import sys
from datetime import datetime, timezone
from typing import Optional

from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError

from api.models import ResetPasswordRequest
from auth.models import Account, Role
from auth.passwords import PasswordHasher
from auth.store import AccountStore, iso
from core.config import get_settings


def create_admin(store: AccountStore, hasher: PasswordHasher, email: str, password: str) -> int:
    """Create the first admin account. Refuses when an admin already exists."""
    if store.count_active_admins() > 0:
        print("  [!] An admin account already exists.")
        return 1
    try:
        ResetPasswordRequest(password=password)
    except ValidationError as e:
        print(f"  [!] {e.errors()[0]['msg']}")
        return 1
    try:
        account = store.create_account(
            Account(
                email=email,
                password_hash=hasher.hash(password),
                role=Role.admin,
                is_verified=True,
                first_name="Admin",
                last_name="User",
            )
        )
    except IntegrityError:
        print(f"  [!] An account with email '{email}' already exists.")
        return 1
    print(f"  Admin account created: {account.email} (id {account.id})")
    return 0


def purge_expired(store: AccountStore) -> int:
    removed = store.purge_expired_tokens(iso(datetime.now(timezone.utc)))
    print(f"  Cleared {removed} expired verification/reset token(s).")
    return 0


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="nadlan",
        description="Operator commands for the Nadlan account database.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    admin = sub.add_parser("create-admin", help="Create the first admin account")
    admin.add_argument("--email", required=True, help="Admin email address")
    admin.add_argument("--password", required=True, help="Admin password")

    sub.add_parser("purge-expired", help="Clear expired verification and reset tokens")
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = _build_parser().parse_args(argv)
    settings = get_settings()
    store = AccountStore(settings.database_url, timeout=settings.db_timeout_seconds)
    try:
        if args.command == "create-admin":
            hasher = PasswordHasher(rounds=settings.bcrypt_rounds)
            return create_admin(store, hasher, args.email, args.password)
        return purge_expired(store)
    finally:
        store.close()


if __name__ == "__main__":
    sys.exit(main())
