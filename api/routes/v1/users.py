"""
api/routes/v1/users.py -- Profile and user management REST endpoints.

Routes:
  GET    /api/v1/users/profile          -- own profile (requires auth)
  PUT    /api/v1/users/profile          -- update own name/avatar (requires auth)
  GET    /api/v1/users                  -- list users, filter by role/active (admin only)
  GET    /api/v1/users/{id}             -- one user: full record for owner or admin, public subset otherwise
  PATCH  /api/v1/users/{id}             -- update name/role/is_active (admin only)
  DELETE /api/v1/users/{id}             -- soft delete: deactivate (admin only)
  DELETE /api/v1/users/{id}/permanent   -- hard delete with the user's media (admin only)

Security:
  Admin writes block self-deactivation and deactivating or deleting the
  last active admin, so the deployment always keeps a recovery path.
"""

from __future__ import annotations

import logging
from typing import Optional, Union

from fastapi import APIRouter, Depends, Query, Request

from api.models import MessageResponse, PrincipalResponse, ProfileUpdate, PublicPrincipalResponse, RoleEnum, UserPatch
from auth.access import is_owner_or_admin
from auth.dependencies import get_current_principal, require_admin, try_get_current_principal
from auth.errors import NotFound, ValidationFailed
from auth.models import Principal, Role
from auth.store import PrincipalStore

logger = logging.getLogger("mediavault.api.users")

# Auth policy:
# - /users/profile:  requires auth (get_current_principal)
# - GET /users/{id}: public; full record only for owner or admin (auth.access)
# - everything else: requires admin (require_admin)
router = APIRouter()


def _store(request: Request) -> PrincipalStore:
    return request.app.state.principals


def _get_or_404(store: PrincipalStore, user_id: int) -> Principal:
    target = store.get_by_id(user_id)
    if target is None:
        raise NotFound("User not found.")
    return target


def _guard_admin_removal(store: PrincipalStore, target: Principal, current: Principal, action: str) -> None:
    """Block an admin from locking themselves out or removing the last active admin."""
    if target.id == current.id:
        raise ValidationFailed(f"You cannot {action} your own account.", code="self_lockout")
    if target.is_admin and target.active and store.count_active_admins() <= 1:
        raise ValidationFailed(f"Cannot {action} the last active admin account.", code="last_admin")


# ---------------------------------------------------------------------------
# Own profile
# ---------------------------------------------------------------------------


@router.get("/users/profile", response_model=PrincipalResponse)
def get_profile(principal: Principal = Depends(get_current_principal)) -> PrincipalResponse:
    return PrincipalResponse.from_principal(principal)


@router.put("/users/profile", response_model=PrincipalResponse)
def update_profile(
    request: Request,
    body: ProfileUpdate,
    principal: Principal = Depends(get_current_principal),
) -> PrincipalResponse:
    """Update display name and avatar. Email, role and password have their own flows."""
    store = _store(request)
    updates = body.model_dump(exclude_none=True)
    if updates:
        store.update(principal.id, **updates)
    return PrincipalResponse.from_principal(_get_or_404(store, principal.id))


# ---------------------------------------------------------------------------
# Administration
# ---------------------------------------------------------------------------


@router.get("/users", response_model=list[PrincipalResponse])
def list_users(
    request: Request,
    role: Optional[RoleEnum] = Query(default=None),
    is_active: Optional[bool] = Query(default=None),
    current: Principal = Depends(require_admin),
) -> list[PrincipalResponse]:
    principals = _store(request).list_principals(
        role=role.value if role is not None else None,
        active=is_active,
    )
    return [PrincipalResponse.from_principal(p) for p in principals]


@router.get("/users/{user_id}", response_model=Union[PrincipalResponse, PublicPrincipalResponse])
def get_user(
    request: Request,
    user_id: int,
    current: Optional[Principal] = Depends(try_get_current_principal),
) -> Union[PrincipalResponse, PublicPrincipalResponse]:
    """Full record for the user themselves or an admin; the public subset for anyone else."""
    target = _get_or_404(_store(request), user_id)
    if is_owner_or_admin(current, user_id):
        return PrincipalResponse.from_principal(target)
    return PublicPrincipalResponse.from_principal(target)


@router.patch("/users/{user_id}", response_model=PrincipalResponse)
def update_user(
    request: Request,
    user_id: int,
    body: UserPatch,
    current: Principal = Depends(require_admin),
) -> PrincipalResponse:
    store = _store(request)
    target = _get_or_404(store, user_id)

    updates: dict = {}
    if body.name is not None:
        updates["name"] = body.name
    if body.role is not None:
        if body.role.value != Role.admin.value and target.is_admin:
            _guard_admin_removal(store, target, current, "demote")
        updates["role"] = body.role.value
    if body.is_active is not None:
        if not body.is_active:
            _guard_admin_removal(store, target, current, "deactivate")
        updates["active"] = body.is_active

    if not updates:
        raise ValidationFailed("No fields to update.", code="no_changes")

    store.update(user_id, **updates)
    logger.info("Admin %d updated user %d: %s", current.id, user_id, sorted(updates))
    return PrincipalResponse.from_principal(_get_or_404(store, user_id))


@router.delete("/users/{user_id}", response_model=MessageResponse)
def deactivate_user(
    request: Request,
    user_id: int,
    current: Principal = Depends(require_admin),
) -> MessageResponse:
    """Soft delete. The row and the user's media stay; the account can no longer sign in."""
    store = _store(request)
    target = _get_or_404(store, user_id)
    _guard_admin_removal(store, target, current, "deactivate")
    store.update(user_id, active=False)
    logger.info("Admin %d deactivated user %d", current.id, user_id)
    return MessageResponse(message="User deactivated successfully.")


@router.delete("/users/{user_id}/permanent", response_model=MessageResponse)
def delete_user(
    request: Request,
    user_id: int,
    current: Principal = Depends(require_admin),
) -> MessageResponse:
    """Hard delete the principal, the media they own, and shares granted to them."""
    store = _store(request)
    target = _get_or_404(store, user_id)
    _guard_admin_removal(store, target, current, "delete")

    removed = request.app.state.media.delete_by_owner(user_id)
    request.app.state.otp_store.clear(target.email)
    store.delete(user_id)
    logger.info("Admin %d permanently deleted user %d (%d media items)", current.id, user_id, removed)
    return MessageResponse(message="User permanently deleted.")
