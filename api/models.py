"""
API request and response models for MediaVault REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
media/models.py, which own the internal domain representation. Route handlers
map between the two via the from_* factory methods below.
"""

from enum import Enum
from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from auth.access import can_mutate
from auth.models import AuthResult, Principal
from media.models import MediaItem

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class RoleEnum(str, Enum):
    user = "user"
    admin = "admin"


class OTPPurposeEnum(str, Enum):
    registration = "registration"
    forgot_password = "forgot-password"
    verification = "verification"


# ---------------------------------------------------------------------------
# Errors and health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


# ---------------------------------------------------------------------------
# Auth -- requests
# ---------------------------------------------------------------------------

# Passwords are capped well below bcrypt's 72-byte truncation point in
# practice; the cap mainly stops multi-megabyte bodies reaching bcrypt.
_Password = Annotated[str, Field(min_length=1, max_length=128)]


class RegisterRequest(BaseModel):
    """Passwords are taken verbatim (no whitespace stripping); the flow normalises name and email."""

    name: str = Field(min_length=1, max_length=100)
    email: str = Field(min_length=3, max_length=255)
    password: _Password
    confirm_password: _Password


class LoginRequest(BaseModel):
    email: str = Field(min_length=3, max_length=255)
    password: _Password


class SendOTPRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=3, max_length=255)
    purpose: OTPPurposeEnum = OTPPurposeEnum.verification


class VerifyOTPRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=3, max_length=255)
    otp: str = Field(min_length=1, max_length=10)


class ForgotPasswordRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=3, max_length=255)


class ResetPasswordRequest(BaseModel):
    email: str = Field(min_length=3, max_length=255)
    otp: str = Field(min_length=1, max_length=10)
    new_password: _Password
    confirm_password: _Password


class RefreshRequest(BaseModel):
    refresh_token: str = Field(min_length=1, max_length=4096)


# ---------------------------------------------------------------------------
# Auth -- responses
# ---------------------------------------------------------------------------


class PrincipalResponse(BaseModel):
    """Public view of a principal. The credential hash is never serialized."""

    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    email: str
    role: str
    is_active: bool
    email_verified: bool
    avatar: Optional[str] = None
    oauth_linked: bool = False
    created_at: str = ""
    updated_at: str = ""

    @classmethod
    def from_principal(cls, principal: Principal) -> "PrincipalResponse":
        return cls(
            id=principal.id,
            name=principal.name,
            email=principal.email,
            role=principal.role,
            is_active=principal.active,
            email_verified=principal.email_verified,
            avatar=principal.avatar,
            oauth_linked=principal.external_id is not None,
            created_at=principal.created_at or "",
            updated_at=principal.updated_at or "",
        )


class PublicPrincipalResponse(BaseModel):
    """Another user's profile as anyone may see it. Email and account state stay private."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: int
    name: str
    role: str
    avatar: Optional[str] = None
    created_at: str = ""

    @classmethod
    def from_principal(cls, principal: Principal) -> "PublicPrincipalResponse":
        return cls(
            id=principal.id,
            name=principal.name,
            role=principal.role,
            avatar=principal.avatar,
            created_at=principal.created_at or "",
        )


class AuthResponse(BaseModel):
    """Returned by register, login and OAuth login."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str
    token_type: str = "bearer"  # noqa: S105 -- OAuth token type, not a password
    expires_in: int
    user: PrincipalResponse
    otp_sent: Optional[bool] = None

    @classmethod
    def from_result(cls, result: AuthResult) -> "AuthResponse":
        return cls(
            access_token=result.tokens.access_token,
            refresh_token=result.tokens.refresh_token,
            expires_in=result.tokens.expires_in,
            user=PrincipalResponse.from_principal(result.principal),
            otp_sent=result.otp_sent,
        )


class AccessTokenResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str = "bearer"  # noqa: S105
    expires_in: int


class OTPSentResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str
    expires_in: int


class OTPVerifiedResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str
    purpose: str


class OAuthProviderInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    label: str


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class ProfileUpdate(BaseModel):
    """Request body for PUT /api/v1/users/profile. Omitted fields are left unchanged."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    avatar: Optional[str] = Field(default=None, max_length=2048)


class UserPatch(BaseModel):
    """Request body for PATCH /api/v1/users/{id} (admin only)."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    role: Optional[RoleEnum] = None
    is_active: Optional[bool] = None


# ---------------------------------------------------------------------------
# Media
# ---------------------------------------------------------------------------


class MediaCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(min_length=1, max_length=100)
    description: str = Field(default="", max_length=500)
    tags: list[str] = Field(default_factory=list, max_length=20)
    image_url: str = Field(min_length=1, max_length=2048)
    # 5 MB, the gallery's upload ceiling
    file_size: int = Field(default=0, ge=0, le=5 * 1024 * 1024)
    is_public: bool = False


class MediaUpdate(BaseModel):
    """Request body for PUT /api/v1/media/{id}. Omitted fields are left unchanged."""

    model_config = ConfigDict(str_strip_whitespace=True)

    title: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    tags: Optional[list[str]] = Field(default=None, max_length=20)
    is_public: Optional[bool] = None


class ShareRequest(BaseModel):
    user_ids: list[int] = Field(min_length=1, max_length=50)

    @field_validator("user_ids")
    @classmethod
    def dedupe(cls, values: list[int]) -> list[int]:
        """Drop duplicate ids while preserving order."""
        return list(dict.fromkeys(values))


class MediaResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    owner_id: int
    title: str
    description: str
    tags: list[str]
    image_url: str
    file_size: int
    is_public: bool
    shared_with: list[int]
    created_at: str
    updated_at: str

    @classmethod
    def from_item(cls, item: MediaItem, viewer: Optional[Principal] = None) -> "MediaResponse":
        """shared_with is only listed for viewers who may change the item."""
        return cls(
            id=item.id,
            owner_id=item.owner_id,
            title=item.title,
            description=item.description,
            tags=item.tags,
            image_url=item.image_url,
            file_size=item.file_size,
            is_public=item.is_public,
            shared_with=item.shared_with if can_mutate(viewer, item.access) else [],
            created_at=item.created_at,
            updated_at=item.updated_at,
        )
