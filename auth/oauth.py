"""
auth/oauth.py -- Authlib registry for Google sign-in.

Google is registered only when both GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET
are configured. The OAuth state parameter (CSRF protection) is kept by authlib
in the Starlette session between the redirect and the callback, which is why
api/main.py installs SessionMiddleware.

Security notes:
  The email claim is accepted only when Google asserts email_verified. An
  unverified address could belong to someone else, and the callback links
  identities to existing accounts by email.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from authlib.integrations.starlette_client import OAuth

from core.config import Settings

logger = logging.getLogger("nadlan.auth.oauth")

GOOGLE_METADATA_URL = "https://accounts.google.com/.well-known/openid-configuration"


@dataclass(frozen=True)
class GoogleIdentity:
    subject: str
    email: str
    first_name: str
    last_name: str


def build_oauth(settings: Settings) -> OAuth:
    """Return an OAuth registry with Google registered when configured."""
    oauth = OAuth()
    if settings.google_enabled:
        oauth.register(
            name="google",
            client_id=settings.google_client_id,
            client_secret=settings.google_client_secret,
            server_metadata_url=GOOGLE_METADATA_URL,
            client_kwargs={"scope": "openid email profile"},
        )
        logger.info("Google sign-in registered")
    return oauth


def google_identity_from_token(token: dict) -> GoogleIdentity:
    """Extract the Google identity from an authlib token response.

    Raises:
        ValueError: no userinfo, unverified email, or missing sub/email claims.
    """
    userinfo = token.get("userinfo")
    if not userinfo:
        raise ValueError("Google sign-in: no userinfo in token response")
    if not userinfo.get("email_verified", False):
        raise ValueError("Google sign-in: email is not verified")
    email = userinfo.get("email")
    subject = userinfo.get("sub")
    if not email or not subject:
        raise ValueError("Google sign-in: missing email or sub claim")
    return GoogleIdentity(
        subject=str(subject),
        email=email,
        first_name=userinfo.get("given_name", "") or "",
        last_name=userinfo.get("family_name", "") or "",
    )
