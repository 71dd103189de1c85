"""
api/routes/v1/auth.py -- Registration, session and account self-service endpoints.

Routes:
  POST /api/v1/auth/register               -- create account; returns account + token pair
  POST /api/v1/auth/login                  -- password login; returns account + token pair
  POST /api/v1/auth/refresh-token          -- rotate refresh token; returns new pair
  POST /api/v1/auth/logout                 -- end session; always {success: true}
  GET  /api/v1/auth/verify-email/{token}   -- consume email verification token
  POST /api/v1/auth/resend-verification    -- issue a new verification token
  POST /api/v1/auth/forgot-password        -- issue a password reset token
  POST /api/v1/auth/reset-password/{token} -- consume reset token, set new password
  GET  /api/v1/auth/profile                -- current account (requires auth)
  PUT  /api/v1/auth/profile                -- update profile fields (requires auth)
  GET  /api/v1/auth/google                 -- redirect to Google sign-in
  GET  /api/v1/auth/google/callback        -- Google callback; redirects to the frontend

Handlers that hash passwords or hit the store are plain `def`, so FastAPI runs
them in its thread pool and bcrypt never blocks the event loop.

Failures are raised as auth.errors.AuthError subclasses and rendered by the
handler in api/main.py -- no handler here builds an error body itself, which
keeps login failures byte-identical whatever the cause.

Security:
  Token-bearing responses carry Cache-Control: no-store.
  forgot-password and resend-verification answer the same way whether or not
  the email exists.
"""

from __future__ import annotations

import logging
from urllib.parse import urlencode

from authlib.integrations.starlette_client import OAuthError
from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, RedirectResponse

from api.models import (
    AccountEnvelope,
    AccountResponse,
    AuthResponse,
    EmailRequest,
    LoginRequest,
    LogoutRequest,
    ProfileUpdate,
    RefreshRequest,
    RegisterRequest,
    ResetPasswordRequest,
    SuccessResponse,
    TokenResponse,
)
from auth.dependencies import get_current_account, try_get_current_account
from auth.errors import AuthError, NotFound
from auth.models import Account, AuthResult, Role, TokenPair
from auth.oauth import google_identity_from_token
from auth.session import SessionService

logger = logging.getLogger("nadlan.api.auth")

# Auth policy:
# - register, login, refresh-token, verify-email, resend-verification,
#   forgot-password, reset-password, google*:  public
# - logout:                                    optional auth (always succeeds)
# - profile (GET/PUT):                         requires auth (get_current_account)
router = APIRouter()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _no_store(payload: dict, status_code: int = 200) -> JSONResponse:
    resp = JSONResponse(status_code=status_code, content=payload)
    resp.headers["Cache-Control"] = "no-store"
    return resp


def _token_fields(tokens: TokenPair) -> dict:
    return {
        "access_token": tokens.access_token,
        "refresh_token": tokens.refresh_token,
        "expires_in": tokens.expires_in,
    }


def _auth_response(result: AuthResult, message: str, status_code: int = 200) -> JSONResponse:
    body = AuthResponse(
        message=message,
        account=AccountResponse.from_account(result.account),
        **_token_fields(result.tokens),
    )
    return _no_store(body.model_dump(mode="json", by_alias=True), status_code)


def _sessions(request: Request) -> SessionService:
    return request.app.state.sessions


# ---------------------------------------------------------------------------
# Registration and sessions
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=AuthResponse, status_code=201)
def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create an unverified account and start its first session.

    A verification email goes out after the account is stored; a delivery
    failure does not undo the registration.
    """
    result = _sessions(request).register(
        email=body.email,
        password=body.password,
        first_name=body.first_name,
        last_name=body.last_name,
        phone=body.phone,
        role=Role(body.role),
    )
    return _auth_response(result, "Registered. Check your email to verify the account.", status_code=201)


@router.post("/auth/login", response_model=AuthResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password.

    Unknown email, wrong password and deactivated account all produce the same
    401 InvalidCredentials body.
    """
    result = _sessions(request).login(body.email, body.password)
    return _auth_response(result, "Logged in.")


@router.post("/auth/refresh-token", response_model=TokenResponse)
def refresh_token(request: Request, body: RefreshRequest) -> JSONResponse:
    """Exchange a refresh token for a new pair. The presented token stops working."""
    tokens = _sessions(request).refresh(body.refresh_token)
    return _no_store(TokenResponse(**_token_fields(tokens)).model_dump(mode="json", by_alias=True))


@router.post("/auth/logout", response_model=SuccessResponse)
def logout(
    request: Request,
    body: LogoutRequest | None = None,
    account: Account | None = Depends(try_get_current_account),
) -> JSONResponse:
    """End the current session. Idempotent: always answers {success: true}."""
    _sessions(request).logout(
        account.id if account is not None else None,
        body.refresh_token if body is not None else None,
    )
    return _no_store(SuccessResponse(message="Logged out.").model_dump(mode="json", by_alias=True))


# ---------------------------------------------------------------------------
# Email verification and password reset
# ---------------------------------------------------------------------------


@router.get("/auth/verify-email/{token}", response_model=SuccessResponse)
def verify_email(request: Request, token: str) -> SuccessResponse:
    request.app.state.verification.verify(token)
    return SuccessResponse(message="Email verified.")


@router.post("/auth/resend-verification", response_model=SuccessResponse)
def resend_verification(request: Request, body: EmailRequest) -> SuccessResponse:
    request.app.state.verification.resend(body.email)
    return SuccessResponse(message="If the account exists and is unverified, a new link has been sent.")


@router.post("/auth/forgot-password", response_model=SuccessResponse)
def forgot_password(request: Request, body: EmailRequest) -> SuccessResponse:
    request.app.state.password_reset.request(body.email)
    return SuccessResponse(message="If the account exists, password reset instructions have been sent.")


@router.post("/auth/reset-password/{token}", response_model=SuccessResponse)
def reset_password(request: Request, token: str, body: ResetPasswordRequest) -> SuccessResponse:
    """Set a new password. Every existing session is revoked; the user logs in again."""
    request.app.state.password_reset.reset(token, body.password)
    return SuccessResponse(message="Password has been reset. Please log in.")


# ---------------------------------------------------------------------------
# Profile (authenticated)
# ---------------------------------------------------------------------------


@router.get("/auth/profile", response_model=AccountEnvelope)
def get_profile(account: Account = Depends(get_current_account)) -> AccountEnvelope:
    return AccountEnvelope(account=AccountResponse.from_account(account))


@router.put("/auth/profile", response_model=AccountEnvelope)
def update_profile(
    request: Request,
    body: ProfileUpdate,
    account: Account = Depends(get_current_account),
) -> AccountEnvelope:
    updated = _sessions(request).update_profile(account.id, **body.model_dump(exclude_none=True))
    return AccountEnvelope(message="Profile updated.", account=AccountResponse.from_account(updated))


# ---------------------------------------------------------------------------
# Google sign-in
# ---------------------------------------------------------------------------


def _google_client(request: Request):
    client = request.app.state.oauth.create_client("google")
    if client is None:
        raise NotFound("Google sign-in is not configured.")
    return client


@router.get("/auth/google", include_in_schema=False)
async def google_login(request: Request):
    client = _google_client(request)
    redirect_uri = str(request.url_for("google_callback"))
    return await client.authorize_redirect(request, redirect_uri)


@router.get("/auth/google/callback", name="google_callback", include_in_schema=False)
async def google_callback(request: Request) -> RedirectResponse:
    """Finish Google sign-in and hand the token pair to the frontend.

    Tokens travel in the URL fragment, which browsers never send to a server,
    so they do not end up in access logs or Referer headers.
    """
    client = _google_client(request)
    frontend = request.app.state.settings.frontend_url.rstrip("/")
    failed = RedirectResponse(f"{frontend}/auth/error?{urlencode({'code': 'GoogleAuthFailed'})}", status_code=302)
    try:
        token = await client.authorize_access_token(request)
        identity = google_identity_from_token(token)
    except (OAuthError, ValueError) as exc:
        logger.warning("Google sign-in failed: %s", exc)
        return failed

    try:
        result = await run_in_threadpool(
            _sessions(request).login_federated,
            identity.subject,
            identity.email,
            identity.first_name,
            identity.last_name,
        )
    except AuthError as exc:
        logger.warning("Google sign-in refused: %s", exc.code)
        return failed

    fragment = urlencode(
        {"accessToken": result.tokens.access_token, "refreshToken": result.tokens.refresh_token}
    )
    resp = RedirectResponse(f"{frontend}/auth/success#{fragment}", status_code=302)
    resp.headers["Cache-Control"] = "no-store"
    return resp
