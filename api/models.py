"""
API request and response models for the Nadlan REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in auth/models.py, which own the
internal representation (including secrets). Route handlers map between the
two, and AccountResponse.from_account() is the only way an Account reaches a
response body -- it copies public fields by name, so password_hash, the
refresh token digest and the one-time token digests cannot leak.

Wire format is camelCase (accessToken, firstName, ...). Requests accept
either camelCase or snake_case keys.
"""

import re
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from auth.models import Account, Role

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EMAIL_PATTERN = r"^[^\s@]+@[^\s@]+\.[^\s@]+$"
PHONE_PATTERN = r"^\+?[1-9]\d{0,15}$"

# Latin, Cyrillic and Hebrew letters plus spaces.
_NAME_RE = re.compile(r"^[A-Za-z\u0400-\u04FF\u0590-\u05FF\s]+$")

# bcrypt only looks at the first 72 bytes; longer passwords are refused
# rather than silently truncated.
_BCRYPT_MAX_BYTES = 72

Language = Literal["he", "en", "ru"]
Currency = Literal["ILS", "USD", "EUR"]


class _ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _normalize_email(value: str) -> str:
    return value.strip().lower() if isinstance(value, str) else value


def _check_password_strength(value: str) -> str:
    if len(value) < 6:
        raise ValueError("Password must be at least 6 characters long")
    if len(value.encode("utf-8")) > _BCRYPT_MAX_BYTES:
        raise ValueError("Password must be at most 72 bytes long")
    if not (re.search(r"[a-z]", value) and re.search(r"[A-Z]", value) and re.search(r"\d", value)):
        raise ValueError("Password must contain an upper-case letter, a lower-case letter and a digit")
    return value


def _check_name(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    if not _NAME_RE.match(value):
        raise ValueError("Name may contain only letters and spaces")
    return value


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(_ApiModel):
    """Request body for POST /api/v1/auth/register."""

    email: str = Field(max_length=255, pattern=EMAIL_PATTERN)
    password: str = Field(max_length=255)
    first_name: str = Field(min_length=2, max_length=50)
    last_name: str = Field(min_length=2, max_length=50)
    phone: Optional[str] = Field(default=None, pattern=PHONE_PATTERN)
    # Self-registration may only pick user or agent; admins are provisioned.
    role: Literal["user", "agent"] = "user"

    @field_validator("email", mode="before")
    @classmethod
    def lower_email(cls, value: str) -> str:
        return _normalize_email(value)

    @field_validator("password")
    @classmethod
    def strong_password(cls, value: str) -> str:
        return _check_password_strength(value)

    @field_validator("first_name", "last_name")
    @classmethod
    def letters_only(cls, value: str) -> str:
        return _check_name(value)


class LoginRequest(_ApiModel):
    """Request body for POST /api/v1/auth/login. No strength rules -- just non-empty."""

    email: str = Field(max_length=255, pattern=EMAIL_PATTERN)
    password: str = Field(min_length=1, max_length=255)

    @field_validator("email", mode="before")
    @classmethod
    def lower_email(cls, value: str) -> str:
        return _normalize_email(value)


class RefreshRequest(_ApiModel):
    refresh_token: str = Field(min_length=1, max_length=4096)


class LogoutRequest(_ApiModel):
    refresh_token: Optional[str] = Field(default=None, max_length=4096)


class EmailRequest(_ApiModel):
    """Body for POST /auth/forgot-password and /auth/resend-verification."""

    email: str = Field(max_length=255, pattern=EMAIL_PATTERN)

    @field_validator("email", mode="before")
    @classmethod
    def lower_email(cls, value: str) -> str:
        return _normalize_email(value)


class ResetPasswordRequest(_ApiModel):
    password: str = Field(max_length=255)

    @field_validator("password")
    @classmethod
    def strong_password(cls, value: str) -> str:
        return _check_password_strength(value)


class ProfileUpdate(_ApiModel):
    """Body for PUT /api/v1/auth/profile. Omitted fields are left unchanged."""

    first_name: Optional[str] = Field(default=None, min_length=2, max_length=50)
    last_name: Optional[str] = Field(default=None, min_length=2, max_length=50)
    phone: Optional[str] = Field(default=None, pattern=PHONE_PATTERN)
    language: Optional[Language] = None
    currency: Optional[Currency] = None

    @field_validator("first_name", "last_name")
    @classmethod
    def letters_only(cls, value: Optional[str]) -> Optional[str]:
        return _check_name(value)


class AccountPatch(_ApiModel):
    """Body for PATCH /api/v1/admin/users/{id}."""

    role: Optional[Role] = None
    is_active: Optional[bool] = None


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class AccountResponse(_ApiModel):
    """Public view of an account. Never contains credentials or token digests."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str
    email: str
    role: Role
    is_active: bool
    is_verified: bool
    first_name: str
    last_name: str
    full_name: str
    phone: Optional[str]
    language: str
    currency: str
    has_google: bool
    last_login_at: Optional[str]
    created_at: Optional[str]

    @classmethod
    def from_account(cls, account: Account) -> "AccountResponse":
        return cls(
            id=account.id,
            email=account.email,
            role=account.role,
            is_active=account.is_active,
            is_verified=account.is_verified,
            first_name=account.first_name,
            last_name=account.last_name,
            full_name=account.full_name,
            phone=account.phone,
            language=account.language,
            currency=account.currency,
            has_google=account.google_id is not None,
            last_login_at=account.last_login_at,
            created_at=account.created_at,
        )


class SuccessResponse(_ApiModel):
    success: bool = True
    message: Optional[str] = None


class AccountEnvelope(SuccessResponse):
    account: AccountResponse


class TokenResponse(SuccessResponse):
    """Response for POST /auth/refresh-token."""

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int


class AuthResponse(TokenResponse):
    """Response for register and login: account plus a fresh token pair."""

    account: AccountResponse


class ErrorResponse(_ApiModel):
    """Error envelope returned on every 4xx/5xx response."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    success: bool = False
    message: str
    code: str
    request_id: Optional[str] = None
    detail: Optional[list] = None


class HealthResponse(_ApiModel):
    status: str
    version: str
    components: dict[str, str]
