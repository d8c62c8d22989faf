"""
api/routes/v1/auth.py -- Account, OTP and session REST endpoints.

Routes:
  POST /api/v1/auth/register               -- create account; returns tokens, sends registration OTP
  POST /api/v1/auth/send-otp               -- (re)send a code for a purpose
  POST /api/v1/auth/verify-otp             -- check a code; registration codes verify the email
  POST /api/v1/auth/login                  -- password login; returns tokens
  POST /api/v1/auth/forgot-password        -- send a forgot-password code to a known email
  POST /api/v1/auth/reset-password         -- set a new password after verify-otp
  POST /api/v1/auth/refresh-token          -- new access token from a refresh token
  POST /api/v1/auth/logout                 -- drop pending OTP state (requires auth)
  GET  /api/v1/auth/me                     -- current principal (requires auth)
  GET  /api/v1/auth/providers              -- enabled OAuth providers (public)
  GET  /api/v1/auth/oauth/google/login     -- redirect to Google
  GET  /api/v1/auth/oauth/google/callback  -- exchange code, sign in, return tokens

Security:
  Login and every OTP-sending endpoint are rate-limited per client IP.
  Login reports the same bad_credentials error for unknown email and wrong password.
  Cache-Control: no-store on every response that carries a token.

Handlers do not translate errors: AuthenticationFlow raises AuthError
subclasses and the app-level handler renders them.
"""

from __future__ import annotations

import logging
import time

from authlib.integrations.starlette_client import OAuthError
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import BaseModel

from api.limiter import limiter
from api.models import (
    AccessTokenResponse,
    AuthResponse,
    ForgotPasswordRequest,
    LoginRequest,
    MessageResponse,
    OAuthProviderInfo,
    OTPSentResponse,
    OTPVerifiedResponse,
    PrincipalResponse,
    RefreshRequest,
    RegisterRequest,
    ResetPasswordRequest,
    SendOTPRequest,
    VerifyOTPRequest,
)
from auth.dependencies import get_current_principal
from auth.errors import NotFound, Unauthorized
from auth.flow import AuthenticationFlow
from auth.models import Principal
from auth.oauth import get_enabled_providers, get_google_identity
from core.config import get_settings

logger = logging.getLogger("mediavault.api.auth")

_settings = get_settings()

# Auth policy:
# - register, send-otp, verify-otp, login, forgot-password, reset-password,
#   refresh-token, providers, oauth/*: public
# - logout, me: requires auth (get_current_principal)
router = APIRouter()


def _flow(request: Request) -> AuthenticationFlow:
    return request.app.state.auth_flow


def _no_store(body: BaseModel, status_code: int = 200) -> JSONResponse:
    resp = JSONResponse(status_code=status_code, content=body.model_dump())
    resp.headers["Cache-Control"] = "no-store"
    return resp


def _otp_sent(message: str, expires_at: float) -> OTPSentResponse:
    return OTPSentResponse(message=message, expires_in=max(0, int(expires_at - time.time())))


# ---------------------------------------------------------------------------
# Registration and login
# ---------------------------------------------------------------------------


# Rate limits must sit ABOVE @router to preserve FastAPI introspection.
@limiter.limit(_settings.otp_rate_limit)
@router.post("/auth/register", response_model=AuthResponse, status_code=201)
def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create an account and start a session right away.

    The email stays unverified until the registration OTP is confirmed via
    /auth/verify-otp. otp_sent reports whether the code email went out; a
    delivery failure never fails registration.
    """
    result = _flow(request).register(body.name, body.email, body.password, body.confirm_password)
    return _no_store(AuthResponse.from_result(result), status_code=201)


@limiter.limit(_settings.login_rate_limit)
@router.post("/auth/login", response_model=AuthResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password.

    Unknown email and wrong password produce the same error so the response
    does not reveal which emails are registered.
    """
    result = _flow(request).login(body.email, body.password)
    return _no_store(AuthResponse.from_result(result))


# ---------------------------------------------------------------------------
# One-time codes and password reset
# ---------------------------------------------------------------------------


@limiter.limit(_settings.otp_rate_limit)
@router.post("/auth/send-otp", response_model=OTPSentResponse)
def send_otp(request: Request, body: SendOTPRequest) -> OTPSentResponse:
    """Issue a fresh code. Any previous code for the email is replaced."""
    expires_at = _flow(request).request_otp(body.email, body.purpose.value)
    return _otp_sent("OTP sent to your email.", expires_at)


@limiter.limit(_settings.otp_rate_limit)
@router.post("/auth/verify-otp", response_model=OTPVerifiedResponse)
def verify_otp(request: Request, body: VerifyOTPRequest) -> OTPVerifiedResponse:
    purpose = _flow(request).verify_otp_code(body.email, body.otp)
    return OTPVerifiedResponse(message="OTP verified successfully.", purpose=purpose)


@limiter.limit(_settings.otp_rate_limit)
@router.post("/auth/forgot-password", response_model=OTPSentResponse)
def forgot_password(request: Request, body: ForgotPasswordRequest) -> OTPSentResponse:
    expires_at = _flow(request).forgot_password(body.email)
    return _otp_sent("Password reset OTP sent to your email.", expires_at)


@limiter.limit(_settings.otp_rate_limit)
@router.post("/auth/reset-password", response_model=MessageResponse)
def reset_password(request: Request, body: ResetPasswordRequest) -> MessageResponse:
    """Requires a successful /auth/verify-otp for the same email first."""
    _flow(request).reset_password(body.email, body.otp, body.new_password, body.confirm_password)
    return MessageResponse(message="Password reset successfully. Please login with your new password.")


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


@router.post("/auth/refresh-token", response_model=AccessTokenResponse)
def refresh_token(request: Request, body: RefreshRequest) -> JSONResponse:
    flow = _flow(request)
    access_token = flow.refresh_access_token(body.refresh_token)
    return _no_store(AccessTokenResponse(access_token=access_token, expires_in=flow.tokens.access_ttl_seconds))


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request, principal: Principal = Depends(get_current_principal)) -> MessageResponse:
    """End the session server-side. Tokens are stateless; clients discard them."""
    _flow(request).logout(principal)
    return MessageResponse(message="Logged out successfully.")


@router.get("/auth/me", response_model=PrincipalResponse)
def me(principal: Principal = Depends(get_current_principal)) -> PrincipalResponse:
    return PrincipalResponse.from_principal(principal)


# ---------------------------------------------------------------------------
# OAuth
# ---------------------------------------------------------------------------


@router.get("/auth/providers", response_model=list[OAuthProviderInfo])
async def list_providers() -> list[OAuthProviderInfo]:
    """Return the configured OAuth providers. Empty when no client credentials are set."""
    return [OAuthProviderInfo(**p) for p in get_enabled_providers()]


def _google_client(request: Request):
    if "google" not in {p["name"] for p in get_enabled_providers()}:
        raise NotFound("Google sign-in is not configured.", code="provider_disabled")
    return request.app.state.oauth.create_client("google")


@router.get("/auth/oauth/google/login")
async def google_login(request: Request) -> RedirectResponse:
    """Redirect the browser to Google's authorization page."""
    client = _google_client(request)
    redirect_uri = str(request.url_for("google_callback"))
    return await client.authorize_redirect(request, redirect_uri)


@router.get("/auth/oauth/google/callback", response_model=AuthResponse, name="google_callback")
async def google_callback(request: Request) -> JSONResponse:
    """Exchange the authorization code, then sign in or link the verified Google identity.

    authlib checks the state parameter against the session (CSRF). The
    identity is only accepted when Google marks the email verified.
    """
    client = _google_client(request)
    try:
        token = await client.authorize_access_token(request)
    except OAuthError as exc:
        logger.warning("Google token exchange failed: %s", exc.error)
        raise Unauthorized("Google sign-in failed.", code="oauth_failed") from exc

    try:
        identity = get_google_identity(token)
    except ValueError as exc:
        logger.warning("Google login rejected: %s", exc)
        raise Unauthorized("Google did not confirm a verified email.", code="oauth_unverified") from exc

    result = _flow(request).oauth_login(identity.external_id, identity.email, identity.name, identity.avatar)
    return _no_store(AuthResponse.from_result(result))
