"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication and authorization.

get_current_account() is the primary gate:
  Authorization: Bearer <access token> -> verify signature/expiry/typ ->
  load the account -> refuse deactivated accounts -> attach to request.state.
Failures raise AuthError subclasses (MissingToken, TokenExpired, InvalidToken,
AccountInactive); the exception handler in api/main.py renders them as 401.

Composable gates built on top of it:
  try_get_current_account()       -- optional auth; any failure yields None
  require_roles(*roles)           -- 403 unless the account's role is allowed
  require_owner_or_admin(field)   -- 403 unless admin or owner of the resource
                                     an upstream dependency put on
                                     request.state.resource
  require_verified()              -- 403 until the email address is verified

Layer rule: may import fastapi (this module is part of the DI system) but
not api/.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping

from fastapi import Depends, Request

from auth.errors import AccountInactive, AuthError, EmailNotVerified, Forbidden, InvalidToken, MissingToken
from auth.models import Account, Role

logger = logging.getLogger("nadlan.auth.dependencies")


def _bearer_token(request: Request) -> str | None:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def get_current_account(request: Request) -> Account:
    """Require a valid access token for an active account.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(account: Account = Depends(get_current_account)): ...
    """
    token = _bearer_token(request)
    if token is None:
        raise MissingToken()
    account_id = request.app.state.token_issuer.verify_access(token)
    account = request.app.state.account_store.get_by_id(account_id)
    if account is None:
        # Signed for an account that has since been deleted.
        raise InvalidToken()
    if not account.is_active:
        raise AccountInactive()
    request.state.account = account
    return account


def try_get_current_account(request: Request) -> Account | None:
    """Optional-auth variant for public endpoints that personalize when they can."""
    try:
        return get_current_account(request)
    except AuthError:
        return None


def require_roles(*roles: Role) -> Callable[..., Account]:
    """Build a dependency that admits only the given roles.

        @router.get("/admin/users")
        def route(account: Account = Depends(require_roles(Role.admin))): ...
    """
    allowed = frozenset(Role(r) for r in roles)

    def dependency(account: Account = Depends(get_current_account)) -> Account:
        if account.role not in allowed:
            raise Forbidden()
        return account

    return dependency


def is_owner_or_admin(account: Account, resource: object, owner_field: str = "owner") -> bool:
    """Predicate behind require_owner_or_admin; usable outside the DI system."""
    if account.role is Role.admin:
        return True
    if resource is None:
        return False
    if isinstance(resource, Mapping):
        owner = resource.get(owner_field)
    else:
        owner = getattr(resource, owner_field, None)
    return owner is not None and str(owner) == account.id


def require_owner_or_admin(owner_field: str = "owner") -> Callable[..., Account]:
    """Build a dependency that admits admins and the owner of request.state.resource.

    This gate never loads the resource. A loader dependency declared earlier
    on the route must set request.state.resource; if none did, the request is
    refused rather than let through.
    """

    def dependency(request: Request, account: Account = Depends(get_current_account)) -> Account:
        resource = getattr(request.state, "resource", None)
        if resource is None and account.role is not Role.admin:
            logger.error("Ownership gate on %s ran without a loaded resource", request.url.path)
        if not is_owner_or_admin(account, resource, owner_field):
            raise Forbidden()
        return account

    return dependency


def require_verified(account: Account = Depends(get_current_account)) -> Account:
    if not account.is_verified:
        raise EmailNotVerified()
    return account
