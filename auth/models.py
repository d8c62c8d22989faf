"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and flows do
the work; these types only fix the domain shape. Mirrors media/models.py.

Layer rule: no imports from api/ or media/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class Role(str, Enum):
    user = "user"
    admin = "admin"


class OTPPurpose(str, Enum):
    registration = "registration"
    forgot_password = "forgot-password"
    verification = "verification"


class OTPStatus(str, Enum):
    """Outcome of OTPStore.verify()."""

    MATCH = "match"
    MISMATCH = "mismatch"
    LOCKED = "locked"
    EXPIRED = "expired"
    NOT_FOUND = "not_found"


@dataclass
class Principal:
    """An authenticated actor (ordinary user or admin).

    email is stored lower-cased; it is the subject key for OTP records.
    credential_hash is None for OAuth-only principals (no local password).
    external_id is the Google subject once the account has been linked. It is
    set once and never overwritten.
    """

    name: str
    email: str
    role: str = Role.user.value
    id: int | None = None
    credential_hash: str | None = None  # None = OAuth-only principal
    active: bool = True
    email_verified: bool = False
    external_id: str | None = None
    avatar: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == Role.admin.value


@dataclass
class OTPRecord:
    """A live one-time passcode for a subject. issued_at/expires_at are epoch seconds."""

    subject: str
    code: str
    purpose: str
    issued_at: float
    expires_at: float
    attempts: int = 0
    verified: bool = False

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at


@dataclass(frozen=True)
class IssuedOTP:
    """Result of OTPStore.generate(). sent=False means the email did not go out."""

    code: str
    purpose: str
    expires_at: float
    sent: bool


@dataclass(frozen=True)
class OTPVerification:
    status: OTPStatus
    purpose: str | None = None
    remaining_attempts: int | None = None

    @property
    def ok(self) -> bool:
        return self.status is OTPStatus.MATCH


@dataclass(frozen=True)
class TokenClaims:
    """Verified token payload. role is None for refresh tokens, type is None for access tokens."""

    subject_id: int
    issued_at: int
    expires_at: int
    role: str | None = None
    type: str | None = None


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    expires_in: int


@dataclass(frozen=True)
class ResourceAccess:
    """The ownership/visibility/share triple the evaluator decides on."""

    owner_id: int
    is_public: bool = False
    shared_with: frozenset[int] = field(default_factory=frozenset)


@dataclass
class AuthResult:
    """Returned by every session-issuing flow operation."""

    principal: Principal
    tokens: TokenPair
    otp_sent: bool | None = None
