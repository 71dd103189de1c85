"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for Nadlan happen here. No module should call
os.getenv() or os.environ.get() directly. Components receive the Settings
object through their constructors; only the application assembly
(api/main.py and the main.py CLI) calls get_settings().

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY).

  @model_validator(mode="after"): Cross-field validation of the signing keys.
      Dev mode generates keys with a warning, production mode refuses to start
      without them.

Security notes:
  Signing keys shorter than 32 chars are rejected outright. Access and refresh
  tokens use different keys, so a leaked access key cannot mint refresh tokens.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("nadlan.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'nadlan_auth.db'}"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file (with DEBUG=true).
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""
    refresh_secret_key: str = ""
    database_url: str = _DEFAULT_DB_URL
    # Seconds a store call may wait on a locked database before giving up.
    db_timeout_seconds: float = Field(default=5.0, gt=0)

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    jwt_algorithm: str = "HS256"
    jwt_issuer: str = "nadlan-api"
    jwt_audience: str = "nadlan-client"
    access_token_expire_seconds: int = Field(default=15 * 60, gt=0)
    refresh_token_expire_seconds: int = Field(default=7 * 24 * 3600, gt=0)
    email_verification_expire_seconds: int = Field(default=24 * 3600, gt=0)
    password_reset_expire_seconds: int = Field(default=10 * 60, gt=0)

    # ------------------------------------------------------------------
    # Passwords
    # ------------------------------------------------------------------

    # bcrypt accepts 4..31.
    bcrypt_rounds: int = Field(default=12, ge=4, le=31)

    # ------------------------------------------------------------------
    # Email (SMTP disabled when smtp_host is empty)
    # ------------------------------------------------------------------

    frontend_url: str = "http://localhost:5173"
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    from_email: str = ""
    smtp_timeout_seconds: float = 10.0

    # ------------------------------------------------------------------
    # Google sign-in (optional -- empty string means disabled)
    # ------------------------------------------------------------------

    google_client_id: str = ""
    google_client_secret: str = ""
    # Accounts signing in with this email are promoted to admin.
    admin_email: str = ""

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_signing_keys(self) -> "Settings":
        """Enforce the signing-key policy for both token secrets.

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
        Production mode: refuse to start if a key is missing.
        Both modes: reject keys shorter than 32 characters.
        """
        for field in ("secret_key", "refresh_secret_key"):
            value = getattr(self, field)
            if not value:
                if not self.debug:
                    raise ValueError(
                        f"{field.upper()} is required in production mode. "
                        "Set it in your environment or .env file. "
                        "To run in development mode, set DEBUG=true."
                    )
                value = secrets.token_hex(32)
                setattr(self, field, value)
                logger.warning("Using auto-generated %s. Sessions will not persist across restarts.", field.upper())
            if len(value) < 32:
                raise ValueError(f"{field.upper()} must be at least 32 characters.")
        if self.secret_key == self.refresh_secret_key:
            raise ValueError("SECRET_KEY and REFRESH_SECRET_KEY must differ.")
        return self

    @property
    def google_enabled(self) -> bool:
        return bool(self.google_client_id and self.google_client_secret)

    @property
    def smtp_enabled(self) -> bool:
        return bool(self.smtp_host)


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
