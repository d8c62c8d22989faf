"""
auth/access.py -- Ownership, visibility and role decisions.

Every endpoint that touches a resource asks this module, and only this
module, whether the caller may see or change it. The rules:

  view:   owner OR admin OR principal.id in shared_with OR resource is public
  mutate: owner OR admin  (sharing never grants mutation)

The functions are pure: no state, no I/O. principal=None stands for an
anonymous caller, who may view public resources and mutate nothing.
"""

from __future__ import annotations

from collections.abc import Iterable

from auth.errors import Forbidden
from auth.models import Principal, ResourceAccess


def _is_owner(principal: Principal, owner_id: int) -> bool:
    return principal.id is not None and principal.id == owner_id


def can_view(principal: Principal | None, resource: ResourceAccess) -> bool:
    if resource.is_public:
        return True
    if principal is None:
        return False
    return (
        _is_owner(principal, resource.owner_id)
        or principal.is_admin
        or (principal.id is not None and principal.id in resource.shared_with)
    )


def can_mutate(principal: Principal | None, resource: ResourceAccess) -> bool:
    if principal is None:
        return False
    return _is_owner(principal, resource.owner_id) or principal.is_admin


def require_role(principal: Principal, allowed_roles: Iterable[str]) -> None:
    """Raise Forbidden unless principal.role is one of allowed_roles."""
    allowed = [str(getattr(r, "value", r)) for r in allowed_roles]
    if principal.role not in allowed:
        raise Forbidden(
            "You do not have permission to perform this action.",
            detail=f"required role(s): {', '.join(allowed)}",
        )


def is_owner_or_admin(principal: Principal | None, owner_id: int) -> bool:
    return principal is not None and (_is_owner(principal, owner_id) or principal.is_admin)


def require_owner_or_admin(principal: Principal, owner_id: int) -> None:
    if not is_owner_or_admin(principal, owner_id):
        raise Forbidden("You do not have permission to access this resource.")


def require_view(principal: Principal | None, resource: ResourceAccess) -> None:
    if not can_view(principal, resource):
        raise Forbidden("You do not have permission to view this resource.")


def require_mutate(principal: Principal | None, resource: ResourceAccess) -> None:
    if not can_mutate(principal, resource):
        raise Forbidden("Only the owner or an admin can modify this resource.")
