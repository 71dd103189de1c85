"""
api/main.py -- FastAPI application entry point for the Nadlan API.

Run with:  uvicorn api.main:app --reload

Middleware stack (outermost to innermost):
  1. request_context     -- assigns X-Request-Id, logs method/path/status/latency
  2. SessionMiddleware   -- holds the OAuth state between redirect and callback

Lifespan builds every service from one Settings object and closes the store
on shutdown. Route handlers reach the services through request.app.state;
nothing below the assembly calls get_settings() itself.
"""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException
from starlette.middleware.sessions import SessionMiddleware

from api.models import ErrorResponse, HealthResponse
from api.routes.v1.admin import router as admin_router
from api.routes.v1.auth import router as auth_router
from auth.errors import AuthError
from auth.notifier import build_notifier
from auth.oauth import build_oauth
from auth.passwords import PasswordHasher
from auth.session import SessionService
from auth.store import AccountStore
from auth.tokens import TokenIssuer
from auth.workflows import PasswordResetWorkflow, VerificationWorkflow
from core.config import get_settings

API_VERSION = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("nadlan.api")

# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Wire the services onto app.state for the server lifetime.

    Startup order follows the dependency graph: store, then the components
    that only need settings, then the workflows, then the session service
    that composes them.
    """
    settings = get_settings()
    logger.info("Nadlan API starting up (debug=%s)", settings.debug)

    store = AccountStore(settings.database_url, timeout=settings.db_timeout_seconds)
    hasher = PasswordHasher(rounds=settings.bcrypt_rounds)
    issuer = TokenIssuer(settings)
    notifier = build_notifier(settings)
    verification = VerificationWorkflow(store, notifier, settings)

    app.state.settings = settings
    app.state.account_store = store
    app.state.token_issuer = issuer
    app.state.verification = verification
    app.state.password_reset = PasswordResetWorkflow(store, hasher, notifier, settings)
    app.state.sessions = SessionService(store, hasher, issuer, verification, admin_email=settings.admin_email)
    app.state.oauth = build_oauth(settings)
    logger.info(
        "Auth initialized (smtp=%s, google=%s)",
        settings.smtp_enabled,
        settings.google_enabled,
    )

    yield

    store.close()
    logger.info("Nadlan API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Nadlan API",
    description="Accounts, sessions and credentials for the Nadlan property marketplace.",
    version=API_VERSION,
    lifespan=lifespan,
)

# authlib keeps the OAuth 2.0 state value in the Starlette session between the
# authorization redirect and the callback; the callback rejects a mismatch.
# The cookie is signed with SECRET_KEY, so settings are read at import time here.
_settings = get_settings()
app.add_middleware(SessionMiddleware, secret_key=_settings.secret_key, https_only=not _settings.debug)


# ---------------------------------------------------------------------------
# Request context middleware
#
# Registered after SessionMiddleware, so it is the outermost layer and every
# response -- including error responses -- carries X-Request-Id.
# ---------------------------------------------------------------------------


@app.middleware("http")
async def request_context(request: Request, call_next):
    request_id = request.headers.get("X-Request-Id") or uuid.uuid4().hex
    request.state.request_id = request_id
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    response.headers["X-Request-Id"] = request_id
    logger.info(
        "%s %s %d %.1fms %s rid=%s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
        request_id,
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(admin_router, prefix="/api/v1", tags=["Admin"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# Every handler returns the same {success: false, message, code} envelope.
# 4xx bodies depend only on the error class and message, so two failures of
# the same kind are byte-identical; the correlation id travels in the
# X-Request-Id header instead.
# ---------------------------------------------------------------------------


def _error(status_code: int, message: str, code: str, **extra) -> JSONResponse:
    body = ErrorResponse(message=message, code=code, **extra)
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(mode="json", by_alias=True, exclude_none=True),
    )


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    resp = _error(exc.status_code, exc.message, exc.code)
    if exc.status_code == 401:
        resp.headers["WWW-Authenticate"] = "Bearer"
    elif exc.status_code == 503:
        resp.headers["Retry-After"] = "1"
    return resp


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 listing the offending fields.

    Input values are dropped from the detail so a rejected password is never
    echoed back.
    """
    detail = [{"loc": list(err.get("loc", ())), "msg": err.get("msg", "")} for err in exc.errors()]
    return _error(422, "Request validation failed.", "ValidationError", detail=detail)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return _error(exc.status_code, str(exc.detail), f"Http{exc.status_code}")


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unexpected server errors.

    The traceback goes to the log with the request id; the client only gets
    the id, so support can find the entry.
    """
    request_id = getattr(request.state, "request_id", None)
    logger.exception("Unhandled exception on %s %s rid=%s", request.method, request.url.path, request_id)
    return _error(500, "An unexpected error occurred.", "InternalError", request_id=request_id)


# ---------------------------------------------------------------------------
# Health endpoint
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return liveness plus a database round-trip check."""
    try:
        db_ok = request.app.state.account_store.ping()
    except AuthError:
        db_ok = False
    return HealthResponse(
        status="healthy" if db_ok else "degraded",
        version=API_VERSION,
        components={"app": "ok", "database": "ok" if db_ok else "error"},
    )
