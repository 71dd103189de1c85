"""
auth/store.py -- SQLAlchemy Core persistence layer for accounts.

Pattern: Repository + Data Mapper. AccountStore is the repository;
_row_to_account is the mapper. Service and route code never touches SQL.

Every write method is one narrow, invariant-preserving transition (create,
record_login, rotate_refresh_token, consume_password_reset, ...). There is
no generic "save the whole object" call, so a transition cannot accidentally
write a field it does not own.

Concurrency:
  rotate_refresh_token() is a compare-and-swap: a single
  UPDATE ... WHERE id = :id AND refresh_token_digest = :expected. Two racing
  refreshes with the same token both issue the UPDATE; the database serializes
  them and only the first matches a row. The same pattern guards consumption
  of verification and reset tokens, so each is usable exactly once.

Security:
  All queries use bound parameters. Raw refresh/verification/reset tokens
  are never stored, only their SHA-256 digests.

Timestamps are ISO 8601 UTC strings with fixed microsecond precision, so
string comparison in SQL orders them correctly.

Failures:
  OperationalError (locked database past the busy timeout, unreachable DB)
  and pool timeouts are re-raised as ServiceUnavailable. IntegrityError is
  left for the caller to interpret (duplicate email / google id).
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, func, select, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from auth.errors import ServiceUnavailable
from auth.models import Account, Role

logger = logging.getLogger("nadlan.auth.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_accounts = Table(
    "accounts",
    _metadata,
    Column("id", String(32), primary_key=True),
    Column("email", String(255), nullable=False, unique=True),  # stored lower-cased
    Column("password_hash", Text),  # NULL for Google-only accounts
    Column("role", String(10), nullable=False, server_default=Role.user.value),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("is_verified", Integer, nullable=False, server_default="0"),
    Column("first_name", String(50), nullable=False, server_default=""),
    Column("last_name", String(50), nullable=False, server_default=""),
    Column("phone", String(20)),
    Column("language", String(2), nullable=False, server_default="he"),
    Column("currency", String(3), nullable=False, server_default="ILS"),
    Column("google_id", String(255), unique=True),
    Column("refresh_token_digest", String(64)),
    Column("email_verification_digest", String(64), index=True),
    Column("email_verification_expires_at", String(32)),
    Column("password_reset_digest", String(64), index=True),
    Column("password_reset_expires_at", String(32)),
    Column("last_login_at", String(32)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

# Profile columns a caller may change through update_profile().
_PROFILE_FIELDS: frozenset[str] = frozenset({"first_name", "last_name", "phone", "language", "currency"})


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers never block on the single writer."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def iso(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _now_iso() -> str:
    return iso(datetime.now(timezone.utc))


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AccountStore:
    """Repository for Account records.

    Usage:
        store = AccountStore("sqlite:///nadlan_auth.db")
        account = store.create_account(Account(email="a@x.com", password_hash=...))
        store.rotate_refresh_token(account.id, old_digest, new_digest)
        store.close()
    """

    def __init__(self, db_url: str, timeout: float = 5.0) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
            connect_args["timeout"] = timeout
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    @contextmanager
    def _begin(self) -> Iterator[Connection]:
        try:
            with self.engine.begin() as conn:
                yield conn
        except (OperationalError, PoolTimeoutError) as exc:
            logger.error("Account store unavailable: %s", exc.__class__.__name__)
            raise ServiceUnavailable() from exc

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        with self._begin() as conn:
            conn.execute(text("SELECT 1"))
        return True

    def get_by_id(self, account_id: str) -> Account | None:
        return self._fetch_one(_accounts.c.id == account_id)

    def get_by_email(self, email: str) -> Account | None:
        """Case-insensitive lookup; emails are stored lower-cased."""
        return self._fetch_one(_accounts.c.email == normalize_email(email))

    def get_by_google_id(self, google_id: str) -> Account | None:
        return self._fetch_one(_accounts.c.google_id == google_id)

    def list_accounts(self) -> list[Account]:
        """Return all accounts ordered by email. Admin-only operation."""
        with self._begin() as conn:
            rows = conn.execute(_accounts.select().order_by(_accounts.c.email)).fetchall()
        return [_row_to_account(r) for r in rows]

    def count_active_admins(self) -> int:
        with self._begin() as conn:
            result = conn.execute(
                select(func.count())
                .select_from(_accounts)
                .where((_accounts.c.role == Role.admin.value) & (_accounts.c.is_active == 1))
            ).scalar()
        return result or 0

    def _fetch_one(self, clause) -> Account | None:
        with self._begin() as conn:
            row = conn.execute(_accounts.select().where(clause)).fetchone()
        return _row_to_account(row) if row is not None else None

    # ------------------------------------------------------------------
    # Creation / deletion
    # ------------------------------------------------------------------

    def create_account(self, account: Account) -> Account:
        """Insert a new account and return it as stored (with id and timestamps).

        Raises sqlalchemy.exc.IntegrityError if the email or google_id is
        already taken. The unique index is the source of truth, so two
        concurrent registrations for one email cannot both succeed.
        """
        now = _now_iso()
        account_id = uuid.uuid4().hex
        with self._begin() as conn:
            conn.execute(
                _accounts.insert().values(
                    id=account_id,
                    email=normalize_email(account.email),
                    password_hash=account.password_hash,
                    role=Role(account.role).value,
                    is_active=1 if account.is_active else 0,
                    is_verified=1 if account.is_verified else 0,
                    first_name=account.first_name,
                    last_name=account.last_name,
                    phone=account.phone,
                    language=account.language,
                    currency=account.currency,
                    google_id=account.google_id,
                    refresh_token_digest=account.refresh_token_digest,
                    email_verification_digest=account.email_verification_digest,
                    email_verification_expires_at=account.email_verification_expires_at,
                    created_at=now,
                    updated_at=now,
                )
            )
            row = conn.execute(_accounts.select().where(_accounts.c.id == account_id)).fetchone()
        return _row_to_account(row)

    def delete_account(self, account_id: str) -> bool:
        """Permanently delete an account. Returns False if it did not exist."""
        with self._begin() as conn:
            result = conn.execute(_accounts.delete().where(_accounts.c.id == account_id))
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Session transitions
    # ------------------------------------------------------------------

    def record_login(self, account_id: str, refresh_digest: str) -> None:
        """Replace the active refresh token and stamp last_login_at.

        A fresh login always wins over whatever session existed before, so
        this is an unconditional overwrite.
        """
        now = _now_iso()
        self._update(account_id, refresh_token_digest=refresh_digest, last_login_at=now)

    def set_refresh_token(self, account_id: str, refresh_digest: str) -> None:
        """Install the first refresh token of a freshly registered account."""
        self._update(account_id, refresh_token_digest=refresh_digest)

    def rotate_refresh_token(self, account_id: str, expected_digest: str, new_digest: str) -> bool:
        """Atomically swap expected_digest for new_digest.

        Returns False when the stored digest no longer equals expected_digest
        (already rotated, logged out, or never issued).
        """
        with self._begin() as conn:
            result = conn.execute(
                _accounts.update()
                .where((_accounts.c.id == account_id) & (_accounts.c.refresh_token_digest == expected_digest))
                .values(refresh_token_digest=new_digest, updated_at=_now_iso())
            )
        return result.rowcount == 1

    def clear_refresh_token(self, account_id: str) -> None:
        """Drop the active session. No-op if there is none."""
        self._update(account_id, refresh_token_digest=None)

    def revoke_refresh_token(self, account_id: str, expected_digest: str) -> bool:
        """Clear the active session only if it is still the one identified by expected_digest."""
        with self._begin() as conn:
            result = conn.execute(
                _accounts.update()
                .where((_accounts.c.id == account_id) & (_accounts.c.refresh_token_digest == expected_digest))
                .values(refresh_token_digest=None, updated_at=_now_iso())
            )
        return result.rowcount == 1

    # ------------------------------------------------------------------
    # One-time token transitions
    # ------------------------------------------------------------------

    def set_email_verification(self, account_id: str, digest: str, expires_at: str) -> None:
        self._update(account_id, email_verification_digest=digest, email_verification_expires_at=expires_at)

    def consume_email_verification(self, digest: str, now: str) -> Account | None:
        """Mark the account owning an unexpired verification digest as verified.

        Clears the digest/expiry pair in the same UPDATE. Returns the updated
        account, or None if no unexpired match exists (including replay).
        """
        c = _accounts.c
        with self._begin() as conn:
            row = conn.execute(
                select(c.id).where((c.email_verification_digest == digest) & (c.email_verification_expires_at > now))
            ).fetchone()
            if row is None:
                return None
            result = conn.execute(
                _accounts.update()
                .where(
                    (c.id == row.id) & (c.email_verification_digest == digest) & (c.email_verification_expires_at > now)
                )
                .values(
                    is_verified=1,
                    email_verification_digest=None,
                    email_verification_expires_at=None,
                    updated_at=_now_iso(),
                )
            )
            if result.rowcount != 1:
                return None
            updated = conn.execute(_accounts.select().where(c.id == row.id)).fetchone()
        return _row_to_account(updated)

    def set_password_reset(self, account_id: str, digest: str, expires_at: str) -> None:
        self._update(account_id, password_reset_digest=digest, password_reset_expires_at=expires_at)

    def consume_password_reset(self, digest: str, new_password_hash: str, now: str) -> Account | None:
        """Replace the password of the account owning an unexpired reset digest.

        In the same UPDATE: clears the reset pair and the refresh token digest,
        so every existing session must log in again with the new password.
        """
        c = _accounts.c
        with self._begin() as conn:
            row = conn.execute(
                select(c.id).where((c.password_reset_digest == digest) & (c.password_reset_expires_at > now))
            ).fetchone()
            if row is None:
                return None
            result = conn.execute(
                _accounts.update()
                .where((c.id == row.id) & (c.password_reset_digest == digest) & (c.password_reset_expires_at > now))
                .values(
                    password_hash=new_password_hash,
                    password_reset_digest=None,
                    password_reset_expires_at=None,
                    refresh_token_digest=None,
                    updated_at=_now_iso(),
                )
            )
            if result.rowcount != 1:
                return None
            updated = conn.execute(_accounts.select().where(c.id == row.id)).fetchone()
        return _row_to_account(updated)

    def purge_expired_tokens(self, now: str) -> int:
        """Clear expired verification and reset pairs. Returns rows touched."""
        c = _accounts.c
        with self._begin() as conn:
            verification = conn.execute(
                _accounts.update()
                .where(c.email_verification_expires_at <= now)
                .values(email_verification_digest=None, email_verification_expires_at=None)
            )
            reset = conn.execute(
                _accounts.update()
                .where(c.password_reset_expires_at <= now)
                .values(password_reset_digest=None, password_reset_expires_at=None)
            )
        return verification.rowcount + reset.rowcount

    # ------------------------------------------------------------------
    # Profile / administrative transitions
    # ------------------------------------------------------------------

    def link_google(self, account_id: str, google_id: str) -> None:
        """Attach a Google identity. Google confirmed the email, so mark verified."""
        self._update(account_id, google_id=google_id, is_verified=1)

    def update_profile(self, account_id: str, **fields) -> bool:
        """Update profile columns only. Unknown keys raise ValueError."""
        unknown = set(fields) - _PROFILE_FIELDS
        if unknown:
            raise ValueError(f"Unknown profile fields: {sorted(unknown)!r}")
        if not fields:
            return self.get_by_id(account_id) is not None
        return self._update(account_id, **fields)

    def set_role(self, account_id: str, role: Role) -> bool:
        return self._update(account_id, role=Role(role).value)

    def set_active(self, account_id: str, is_active: bool) -> bool:
        """Activate or deactivate. Deactivation also ends the active session."""
        values: dict = {"is_active": 1 if is_active else 0}
        if not is_active:
            values["refresh_token_digest"] = None
        return self._update(account_id, **values)

    def _update(self, account_id: str, **values) -> bool:
        values["updated_at"] = _now_iso()
        with self._begin() as conn:
            result = conn.execute(_accounts.update().where(_accounts.c.id == account_id).values(**values))
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Helpers and row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def normalize_email(email: str) -> str:
    return email.strip().lower()


def _row_to_account(row) -> Account:
    return Account(
        id=row.id,
        email=row.email,
        password_hash=row.password_hash,
        role=Role(row.role),
        is_active=bool(row.is_active),
        is_verified=bool(row.is_verified),
        first_name=row.first_name,
        last_name=row.last_name,
        phone=row.phone,
        language=row.language,
        currency=row.currency,
        google_id=row.google_id,
        refresh_token_digest=row.refresh_token_digest,
        email_verification_digest=row.email_verification_digest,
        email_verification_expires_at=row.email_verification_expires_at,
        password_reset_digest=row.password_reset_digest,
        password_reset_expires_at=row.password_reset_expires_at,
        last_login_at=row.last_login_at,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
