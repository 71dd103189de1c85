"""
auth/tokens.py -- JWT issuance/verification and one-time token helpers.

Security design decisions:
  JWT: python-jose with HS256. Two token kinds share one claim layout
       {sub, typ, iat, exp, iss, aud, jti}:
         access  -- minutes; verified statelessly on every protected request.
         refresh -- days; the signature/expiry check here is only half of its
                    verification. session.py also requires the token's digest
                    to match the one stored on the account.
       Access and refresh tokens are signed with different keys, and `typ`
       is checked on decode, so one kind can never stand in for the other.
       `jti` makes every token unique even when two are minted for the same
       account within the same second.

  Errors: expiry raises TokenExpired, anything else (bad signature, wrong
       issuer/audience/typ, garbage input) raises InvalidToken. Callers that
       must not reveal the difference (refresh endpoint) collapse both.

  One-time tokens: secrets.token_hex(32) gives 256 bits of entropy. Only the
       SHA-256 digest is stored. bcrypt's slowness is unnecessary for
       high-entropy random values, and a deterministic digest allows an
       indexed lookup.
"""

from __future__ import annotations

import hashlib
import logging
import secrets
import uuid
from datetime import datetime, timedelta, timezone

from jose import ExpiredSignatureError, JWTError, jwt

from auth.errors import InvalidToken, TokenExpired
from auth.models import TokenPair
from core.config import Settings

logger = logging.getLogger("nadlan.auth.tokens")

ACCESS = "access"
REFRESH = "refresh"


class TokenIssuer:
    """Mints and verifies the access/refresh token pair for an account id."""

    def __init__(self, settings: Settings) -> None:
        self._algorithm = settings.jwt_algorithm
        self._issuer = settings.jwt_issuer
        self._audience = settings.jwt_audience
        self._keys = {ACCESS: settings.secret_key, REFRESH: settings.refresh_secret_key}
        self._ttl = {
            ACCESS: settings.access_token_expire_seconds,
            REFRESH: settings.refresh_token_expire_seconds,
        }

    def issue(self, account_id: str, now: datetime | None = None) -> TokenPair:
        """Return a fresh {access, refresh} pair for account_id."""
        now = now or datetime.now(timezone.utc)
        return TokenPair(
            access_token=self._encode(account_id, ACCESS, now),
            refresh_token=self._encode(account_id, REFRESH, now),
            expires_in=self._ttl[ACCESS],
        )

    def verify_access(self, token: str) -> str:
        """Return the subject account id of a valid access token."""
        return self._decode(token, ACCESS)

    def verify_refresh(self, token: str) -> str:
        """Return the subject of a validly signed, unexpired refresh token.

        Does NOT check the token against the stored value -- the session
        protocol does that with a compare-and-swap.
        """
        return self._decode(token, REFRESH)

    # ------------------------------------------------------------------

    def _encode(self, account_id: str, kind: str, now: datetime) -> str:
        payload = {
            "sub": account_id,
            "typ": kind,
            "iat": now,
            "exp": now + timedelta(seconds=self._ttl[kind]),
            "iss": self._issuer,
            "aud": self._audience,
            "jti": uuid.uuid4().hex,
        }
        return jwt.encode(payload, self._keys[kind], algorithm=self._algorithm)

    def _decode(self, token: str, kind: str) -> str:
        try:
            payload = jwt.decode(
                token,
                self._keys[kind],
                algorithms=[self._algorithm],
                audience=self._audience,
                issuer=self._issuer,
            )
        except ExpiredSignatureError as exc:
            raise TokenExpired() from exc
        except JWTError as exc:
            raise InvalidToken() from exc
        subject = payload.get("sub")
        if payload.get("typ") != kind or not isinstance(subject, str) or not subject:
            raise InvalidToken()
        return subject


# ---------------------------------------------------------------------------
# One-time tokens and digests
# ---------------------------------------------------------------------------


def generate_one_time_token() -> str:
    """Return a 64-hex-char random token for email verification / password reset."""
    return secrets.token_hex(32)


def token_digest(raw: str) -> str:
    """Return the SHA-256 hex digest stored in place of a raw token."""
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()
