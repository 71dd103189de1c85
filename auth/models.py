"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, near-zero logic). The store owns
persistence, the services own transitions, and api/models.py owns the public
shape. Nothing in this module is ever serialized directly to a response --
Account carries secrets (password_hash, refresh_token_digest, token digests)
that must never leave the process.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Role(str, Enum):
    """Closed set of account roles. Gates compare against members, not strings."""

    user = "user"
    agent = "agent"
    admin = "admin"


# Roles a caller may pick for themselves at registration time. Admins are
# created through the CLI or promoted by another admin.
SELF_ASSIGNABLE_ROLES: frozenset[Role] = frozenset({Role.user, Role.agent})


@dataclass
class Account:
    """A marketplace account as stored in the credential store.

    password_hash is None only for federated (Google) accounts.
    refresh_token_digest is the SHA-256 of the single active refresh token;
    None means no active session.
    Each *_digest field is written and cleared together with its *_expires_at.
    """

    email: str
    id: str = ""
    password_hash: str | None = None
    role: Role = Role.user
    is_active: bool = True
    is_verified: bool = False
    first_name: str = ""
    last_name: str = ""
    phone: str | None = None
    language: str = "he"
    currency: str = "ILS"
    google_id: str | None = None
    refresh_token_digest: str | None = None
    email_verification_digest: str | None = None
    email_verification_expires_at: str | None = None
    password_reset_digest: str | None = None
    password_reset_expires_at: str | None = None
    last_login_at: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


@dataclass(frozen=True)
class TokenPair:
    """Access + refresh token pair handed to the client after login/refresh."""

    access_token: str
    refresh_token: str
    expires_in: int  # access token lifetime in seconds


@dataclass(frozen=True)
class AuthResult:
    """Outcome of register/login: the account (still private) and its new tokens."""

    account: Account
    tokens: TokenPair
