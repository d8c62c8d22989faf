"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication (the request guard).

Per request: extract the "Authorization: Bearer <token>" header, verify the
access token with the app's TokenService, load the principal from the
PrincipalStore, and hand it to the route. Role gates go through
auth.access.require_role so every role decision lives in one place.

try_get_current_principal() is the soft variant (returns None on failure),
used by routes that also serve anonymous callers (public media).
get_current_principal() raises Unauthorized / Forbidden.
require_roles(...) builds a dependency that also checks the role.

Layer rule: no imports from api/ or media/.
  auth/dependencies.py may import from fastapi (for Request) because this
  module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import Request

from auth.access import require_role
from auth.errors import AuthError, Forbidden, Unauthorized
from auth.models import Principal
from auth.store import PrincipalStore
from auth.tokens import TokenService, bearer_token


def _authenticate(request: Request) -> Principal:
    token = bearer_token(request.headers.get("Authorization"))
    if token is None:
        raise Unauthorized("No token provided. Use 'Authorization: Bearer <token>'.", code="missing_token")

    tokens: TokenService = request.app.state.tokens
    claims = tokens.verify_access_token(token)

    principals: PrincipalStore = request.app.state.principals
    principal = principals.get_by_id(claims.subject_id)
    if principal is None:
        raise Unauthorized("Account no longer exists.", code="unknown_subject")
    if not principal.active:
        raise Forbidden("Your account has been disabled.", code="account_disabled")
    return principal


def try_get_current_principal(request: Request) -> Principal | None:
    """Return the authenticated principal, or None if the request carries no usable token."""
    try:
        return _authenticate(request)
    except AuthError:
        return None


def get_current_principal(request: Request) -> Principal:
    """Require authentication.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(principal: Principal = Depends(get_current_principal)): ...
    """
    return _authenticate(request)


def require_roles(*roles: str) -> Callable[[Request], Principal]:
    """Build a dependency that requires authentication and one of roles.

        @router.get("/users", dependencies=[Depends(require_roles("admin"))])
    """

    def dependency(request: Request) -> Principal:
        principal = get_current_principal(request)
        require_role(principal, roles)
        return principal

    return dependency


require_admin = require_roles("admin")
