"""
auth/errors.py -- Typed failures raised by the auth core.

Every failure is request-scoped. The API layer registers a single exception
handler for AuthError that renders the standard ErrorResponse envelope, so
the core never touches HTTP types and route handlers never translate errors
by hand.

Each class carries a default machine-readable code and HTTP status. Call
sites pass a specific code when the client needs to tell two failures of the
same class apart (e.g. "token_expired" vs "token_invalid").
"""

from __future__ import annotations


class AuthError(Exception):
    status_code: int = 400
    default_code: str = "error"

    def __init__(self, message: str, code: str | None = None, detail: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.detail = detail


class ValidationFailed(AuthError):
    status_code = 400
    default_code = "validation_error"


class Conflict(AuthError):
    status_code = 409
    default_code = "conflict"


class Unauthorized(AuthError):
    status_code = 401
    default_code = "unauthorized"


class TokenExpired(Unauthorized):
    default_code = "token_expired"


class TokenInvalid(Unauthorized):
    default_code = "token_invalid"


class Forbidden(AuthError):
    status_code = 403
    default_code = "forbidden"


class NotFound(AuthError):
    status_code = 404
    default_code = "not_found"


class Expired(AuthError):
    status_code = 410
    default_code = "expired"


class Locked(AuthError):
    status_code = 423
    default_code = "locked"


class VerificationRequired(AuthError):
    status_code = 400
    default_code = "verification_required"


class DeliveryFailed(AuthError):
    status_code = 502
    default_code = "delivery_failed"
