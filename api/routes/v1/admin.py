"""
api/routes/v1/admin.py -- Account administration endpoints (admin role only).

Routes:
  GET    /api/v1/admin/users       -- list all accounts
  PATCH  /api/v1/admin/users/{id}  -- change role and/or active flag
  DELETE /api/v1/admin/users/{id}  -- delete an account permanently

Guard rails: an admin cannot deactivate, demote or delete themselves, and the
last active admin cannot be deactivated or demoted. Deactivation clears the
stored refresh token, so the account's session ends immediately; its access
token is refused by get_current_account on the next request.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request

from api.models import AccountEnvelope, AccountPatch, AccountResponse, SuccessResponse
from auth.dependencies import require_roles
from auth.errors import InvalidOperation, NotFound
from auth.models import Account, Role

logger = logging.getLogger("nadlan.api.admin")

router = APIRouter()

_admin_only = require_roles(Role.admin)


def _load(request: Request, user_id: str) -> Account:
    target = request.app.state.account_store.get_by_id(user_id)
    if target is None:
        raise NotFound("Account not found.")
    return target


@router.get("/admin/users", response_model=list[AccountResponse])
def list_users(request: Request, admin: Account = Depends(_admin_only)) -> list[AccountResponse]:
    return [AccountResponse.from_account(a) for a in request.app.state.account_store.list_accounts()]


@router.patch("/admin/users/{user_id}", response_model=AccountEnvelope)
def patch_user(
    request: Request,
    user_id: str,
    body: AccountPatch,
    admin: Account = Depends(_admin_only),
) -> AccountEnvelope:
    """Change an account's role or active flag."""
    store = request.app.state.account_store
    target = _load(request, user_id)

    loses_admin = target.role is Role.admin and (
        body.is_active is False or (body.role is not None and body.role is not Role.admin)
    )
    if loses_admin:
        if target.id == admin.id:
            raise InvalidOperation("You cannot deactivate or demote your own account.")
        if target.is_active and store.count_active_admins() <= 1:
            raise InvalidOperation("Cannot remove the last active admin.")

    if body.role is not None and body.role is not target.role:
        store.set_role(target.id, body.role)
        logger.info("Admin %s set role of %s to %s", admin.id, target.id, body.role.value)
    if body.is_active is not None and body.is_active != target.is_active:
        store.set_active(target.id, body.is_active)
        logger.info("Admin %s set is_active=%s on %s", admin.id, body.is_active, target.id)

    return AccountEnvelope(message="Account updated.", account=AccountResponse.from_account(_load(request, user_id)))


@router.delete("/admin/users/{user_id}", response_model=SuccessResponse)
def delete_user(request: Request, user_id: str, admin: Account = Depends(_admin_only)) -> SuccessResponse:
    if user_id == admin.id:
        raise InvalidOperation("You cannot delete your own account.")
    target = _load(request, user_id)
    if target.role is Role.admin and target.is_active and request.app.state.account_store.count_active_admins() <= 1:
        raise InvalidOperation("Cannot remove the last active admin.")
    request.app.state.account_store.delete_account(target.id)
    logger.info("Admin %s deleted account %s", admin.id, target.id)
    return SuccessResponse(message="Account deleted.")
