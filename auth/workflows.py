"""
auth/workflows.py -- Email verification and password reset token workflows.

Both flows share one shape:
  1. generate a 256-bit random token,
  2. store only its SHA-256 digest plus an expiry (the pair is written together),
  3. hand the raw token to the notifier.
Consumption looks the digest up together with "expiry in the future" and
clears the pair in the same conditional UPDATE, so a token works exactly once.
Wrong, expired and replayed tokens are indistinguishable to the caller
(InvalidOrExpiredToken).

Requests keyed by email (resend verification, forgot password) return
normally whether or not the email exists, so they cannot be used to probe
for accounts.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from auth.errors import InvalidOrExpiredToken
from auth.models import Account
from auth.notifier import Notifier, notify_safely
from auth.passwords import PasswordHasher
from auth.store import AccountStore, iso
from auth.tokens import generate_one_time_token, token_digest
from core.config import Settings

logger = logging.getLogger("nadlan.auth.workflows")


def _expiry(now: datetime, seconds: int) -> str:
    return iso(now + timedelta(seconds=seconds))


class VerificationWorkflow:
    def __init__(self, store: AccountStore, notifier: Notifier, settings: Settings) -> None:
        self._store = store
        self._notifier = notifier
        self._ttl = settings.email_verification_expire_seconds

    def new_token(self, now: datetime | None = None) -> tuple[str, str, str]:
        """Return (raw, digest, expires_at) for a fresh verification token.

        Registration uses this to write the pair in the same INSERT that
        creates the account.
        """
        now = now or datetime.now(timezone.utc)
        raw = generate_one_time_token()
        return raw, token_digest(raw), _expiry(now, self._ttl)

    def send(self, account: Account, raw: str) -> None:
        notify_safely(self._notifier.send_verification, account.email, raw, account.full_name)

    def resend(self, email: str, now: datetime | None = None) -> str | None:
        """Replace the outstanding verification token and email the new one.

        Unknown or already verified emails are a silent no-op. Returns the
        raw token when one was issued (for callers that need it, e.g. tests).
        """
        account = self._store.get_by_email(email)
        if account is None or account.is_verified:
            logger.info("Verification resend skipped (no unverified account)")
            return None
        raw, digest, expires_at = self.new_token(now)
        self._store.set_email_verification(account.id, digest, expires_at)
        self.send(account, raw)
        return raw

    def verify(self, raw: str, now: datetime | None = None) -> Account:
        """Consume a verification token and mark its account verified."""
        now = now or datetime.now(timezone.utc)
        account = self._store.consume_email_verification(token_digest(raw), iso(now))
        if account is None:
            raise InvalidOrExpiredToken()
        logger.info("Email verified for account %s", account.id)
        notify_safely(self._notifier.send_welcome, account.email, account.full_name)
        return account


class PasswordResetWorkflow:
    def __init__(
        self,
        store: AccountStore,
        hasher: PasswordHasher,
        notifier: Notifier,
        settings: Settings,
    ) -> None:
        self._store = store
        self._hasher = hasher
        self._notifier = notifier
        self._ttl = settings.password_reset_expire_seconds

    def request(self, email: str, now: datetime | None = None) -> str | None:
        """Issue a reset token for email, replacing any outstanding one.

        Unknown emails and inactive accounts are a silent no-op. Notification
        failure leaves the stored token in place.
        """
        account = self._store.get_by_email(email)
        if account is None or not account.is_active:
            logger.info("Password reset request ignored (no active account)")
            return None
        now = now or datetime.now(timezone.utc)
        raw = generate_one_time_token()
        self._store.set_password_reset(account.id, token_digest(raw), _expiry(now, self._ttl))
        notify_safely(self._notifier.send_password_reset, account.email, raw, account.full_name)
        return raw

    def reset(self, raw: str, new_password: str, now: datetime | None = None) -> Account:
        """Consume a reset token, set the new password and end all sessions."""
        now = now or datetime.now(timezone.utc)
        # Hash before touching the store so the conditional UPDATE stays short.
        new_hash = self._hasher.hash(new_password)
        account = self._store.consume_password_reset(token_digest(raw), new_hash, iso(now))
        if account is None:
            raise InvalidOrExpiredToken()
        logger.info("Password reset for account %s; active session revoked", account.id)
        return account
