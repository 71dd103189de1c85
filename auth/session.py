"""
auth/session.py -- Session rotation protocol: register, login, refresh, logout.

Each account has at most one live refresh token. The store keeps its SHA-256
digest; every operation that issues a pair replaces that digest:

  register  -> insert account, install first digest
  login     -> overwrite digest unconditionally (a new login wins)
  refresh   -> compare-and-swap old digest -> new digest; losing the swap
               means the presented token was already rotated out or logged out
  logout    -> clear digest (idempotent)

Enumeration resistance: login returns the same InvalidCredentials error for an
unknown email, a wrong password, a password-less (Google-only) account and a
deactivated account, and always spends one bcrypt verification so timing does
not separate the cases either.

Password hashing is CPU-bound. The HTTP layer calls these methods from sync
route handlers, which FastAPI runs in its worker thread pool, so hashing
never stalls the event loop.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError

from auth.errors import (
    AccountInactive,
    DuplicateAccount,
    InvalidCredentials,
    InvalidOperation,
    InvalidOrExpiredToken,
    InvalidToken,
    NotFound,
    TokenExpired,
)
from auth.models import SELF_ASSIGNABLE_ROLES, Account, AuthResult, Role, TokenPair
from auth.passwords import PasswordHasher
from auth.store import AccountStore, normalize_email
from auth.tokens import TokenIssuer, token_digest
from auth.workflows import VerificationWorkflow

logger = logging.getLogger("nadlan.auth.session")


class SessionService:
    def __init__(
        self,
        store: AccountStore,
        hasher: PasswordHasher,
        issuer: TokenIssuer,
        verification: VerificationWorkflow,
        admin_email: str = "",
    ) -> None:
        self._store = store
        self._hasher = hasher
        self._issuer = issuer
        self._verification = verification
        self._admin_email = normalize_email(admin_email) if admin_email else ""

    # ------------------------------------------------------------------
    # Register / login
    # ------------------------------------------------------------------

    def register(
        self,
        email: str,
        password: str,
        first_name: str,
        last_name: str,
        phone: str | None = None,
        role: Role = Role.user,
    ) -> AuthResult:
        """Create an unverified account, email a verification link, start a session."""
        if Role(role) not in SELF_ASSIGNABLE_ROLES:
            raise InvalidOperation("Role cannot be chosen at registration.")
        raw_verification, digest, expires_at = self._verification.new_token()
        candidate = Account(
            email=email,
            password_hash=self._hasher.hash(password),
            role=role,
            first_name=first_name,
            last_name=last_name,
            phone=phone,
            email_verification_digest=digest,
            email_verification_expires_at=expires_at,
        )
        try:
            account = self._store.create_account(candidate)
        except IntegrityError as exc:
            raise DuplicateAccount() from exc

        tokens = self._issuer.issue(account.id)
        self._store.set_refresh_token(account.id, token_digest(tokens.refresh_token))
        logger.info("Registered account %s (role=%s)", account.id, account.role.value)
        self._verification.send(account, raw_verification)
        return AuthResult(account=account, tokens=tokens)

    def login(self, email: str, password: str) -> AuthResult:
        account = self._store.get_by_email(email)
        if account is None or account.password_hash is None:
            self._hasher.verify_dummy(password)
            raise InvalidCredentials()
        if not self._hasher.verify(password, account.password_hash):
            logger.info("Failed login for account %s", account.id)
            raise InvalidCredentials()
        if not account.is_active:
            logger.info("Login refused for inactive account %s", account.id)
            raise InvalidCredentials()
        return self._start_session(account)

    def login_federated(self, google_id: str, email: str, first_name: str = "", last_name: str = "") -> AuthResult:
        """Sign in with a Google identity whose email Google has verified.

        Resolution order: linked google_id, then an existing account with the
        same email (linked now), then a new password-less account.
        """
        account = self._store.get_by_google_id(google_id)
        link = False
        if account is None:
            account = self._store.get_by_email(email)
            link = account is not None
        if account is not None and not account.is_active:
            logger.info("Google sign-in refused for inactive account %s", account.id)
            raise InvalidCredentials()
        if link:
            self._store.link_google(account.id, google_id)
            logger.info("Linked Google identity to account %s", account.id)
        elif account is None:
            try:
                account = self._store.create_account(
                    Account(
                        email=email,
                        google_id=google_id,
                        is_verified=True,
                        first_name=first_name,
                        last_name=last_name,
                    )
                )
            except IntegrityError as exc:
                raise DuplicateAccount() from exc
            logger.info("Created account %s from Google sign-in", account.id)
        if self._admin_email and account.email == self._admin_email and account.role is not Role.admin:
            self._store.set_role(account.id, Role.admin)
            logger.warning("Promoted account %s to admin via ADMIN_EMAIL", account.id)
        account = self._store.get_by_id(account.id) or account
        return self._start_session(account)

    def _start_session(self, account: Account) -> AuthResult:
        tokens = self._issuer.issue(account.id)
        self._store.record_login(account.id, token_digest(tokens.refresh_token))
        logger.info("Login for account %s", account.id)
        return AuthResult(account=self._store.get_by_id(account.id) or account, tokens=tokens)

    # ------------------------------------------------------------------
    # Refresh / logout
    # ------------------------------------------------------------------

    def refresh(self, refresh_token: str) -> TokenPair:
        """Exchange a live refresh token for a new pair, retiring the old token."""
        try:
            account_id = self._issuer.verify_refresh(refresh_token)
        except (TokenExpired, InvalidToken) as exc:
            raise InvalidOrExpiredToken(status_code=401) from exc

        account = self._store.get_by_id(account_id)
        if account is None:
            raise InvalidOrExpiredToken(status_code=401)
        if not account.is_active:
            raise AccountInactive()

        tokens = self._issuer.issue(account_id)
        swapped = self._store.rotate_refresh_token(
            account_id,
            expected_digest=token_digest(refresh_token),
            new_digest=token_digest(tokens.refresh_token),
        )
        if not swapped:
            logger.warning("Rejected stale refresh token for account %s", account_id)
            raise InvalidOrExpiredToken(status_code=401)
        return tokens

    def logout(self, account_id: str | None, refresh_token: str | None = None) -> None:
        """End a session. Never fails, so calling it twice is harmless.

        With an authenticated account id the stored refresh token is cleared
        outright. Without one (access token already expired), a presented
        refresh token still ends the session, but only if it is the live one.
        """
        if account_id is not None:
            self._store.clear_refresh_token(account_id)
            logger.info("Logout for account %s", account_id)
            return
        if not refresh_token:
            return
        try:
            subject = self._issuer.verify_refresh(refresh_token)
        except (TokenExpired, InvalidToken):
            return
        if self._store.revoke_refresh_token(subject, token_digest(refresh_token)):
            logger.info("Logout by refresh token for account %s", subject)

    # ------------------------------------------------------------------
    # Profile
    # ------------------------------------------------------------------

    def get_profile(self, account_id: str) -> Account:
        account = self._store.get_by_id(account_id)
        if account is None:
            raise NotFound("Account not found.")
        return account

    def update_profile(self, account_id: str, **fields) -> Account:
        if not self._store.update_profile(account_id, **fields):
            raise NotFound("Account not found.")
        return self.get_profile(account_id)
