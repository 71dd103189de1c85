"""
auth/errors.py -- Error taxonomy for the credential and session core.

Every business-rule failure is an AuthError subclass carrying a stable
machine-readable `code` and the HTTP status it maps to. Services raise them;
api/main.py has one exception handler that turns any AuthError into the
{success: false, message, code} envelope. The core itself never imports
FastAPI to report an error.

Messages are deliberately generic. InvalidCredentials has a single message
for unknown email, wrong password and inactive account so the response body
cannot be used to enumerate accounts.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class. Subclasses override status_code, code and default_message."""

    status_code: int = 400
    code: str = "AuthError"
    default_message: str = "Request could not be processed."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class DuplicateAccount(AuthError):
    status_code = 409
    code = "DuplicateAccount"
    default_message = "Registration could not be completed with the supplied details."


class InvalidCredentials(AuthError):
    status_code = 401
    code = "InvalidCredentials"
    default_message = "Invalid email or password."


class AccountInactive(AuthError):
    status_code = 401
    code = "AccountInactive"
    default_message = "Account is deactivated."


class InvalidOrExpiredToken(AuthError):
    """One-time token (verification/reset) or refresh token rejected.

    Covers bad signature, expiry, replay, and a rotated-out refresh token --
    callers cannot tell which.
    """

    status_code = 400
    code = "InvalidOrExpiredToken"
    default_message = "Token is invalid or has expired."

    def __init__(self, message: str | None = None, status_code: int | None = None) -> None:
        super().__init__(message)
        if status_code is not None:
            self.status_code = status_code


class MissingToken(AuthError):
    status_code = 401
    code = "MissingToken"
    default_message = "Access token not provided."


class TokenExpired(AuthError):
    status_code = 401
    code = "TokenExpired"
    default_message = "Token has expired."


class InvalidToken(AuthError):
    status_code = 401
    code = "InvalidToken"
    default_message = "Token is invalid."


class Forbidden(AuthError):
    status_code = 403
    code = "Forbidden"
    default_message = "Insufficient permissions."


class EmailNotVerified(AuthError):
    status_code = 403
    code = "EmailNotVerified"
    default_message = "Email address must be verified first."


class NotFound(AuthError):
    status_code = 404
    code = "NotFound"
    default_message = "Resource not found."


class InvalidOperation(AuthError):
    status_code = 400
    code = "InvalidOperation"
    default_message = "Operation not allowed."


class ServiceUnavailable(AuthError):
    """Backing store timed out or is unreachable. Safe for the client to retry."""

    status_code = 503
    code = "ServiceUnavailable"
    default_message = "Service temporarily unavailable. Please retry."
