"""
auth/oauth.py -- Authlib Google OIDC configuration.

Reads configuration from core.config.get_settings() at module load. Google is
registered only when both client ID and secret are configured; the
/auth/providers endpoint reports what is available.

Security notes:
  [H1] Email verification is mandatory. get_google_identity() raises ValueError
       if the provider does not confirm the email is verified. The flow treats
       OAuth principals as pre-verified, so an unverified provider email must
       never reach AuthenticationFlow.oauth_login().

  OAuth state parameter (CSRF protection) is handled by authlib via
  Starlette SessionMiddleware. The session stores the state between the
  authorization redirect and the callback.

Layer rule: no imports from api/ or media/.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from authlib.integrations.starlette_client import OAuth

from core.config import get_settings

logger = logging.getLogger("mediavault.auth.oauth")

oauth = OAuth()

_cfg = get_settings()

if _cfg.google_client_id and _cfg.google_client_secret:
    oauth.register(
        name="google",
        client_id=_cfg.google_client_id,
        client_secret=_cfg.google_client_secret,
        server_metadata_url="https://accounts.google.com/.well-known/openid-configuration",
        client_kwargs={"scope": "openid email profile"},
    )
    logger.info("Google OAuth provider registered")


@dataclass(frozen=True)
class ExternalIdentity:
    """What oauth_login() needs from a provider: stable subject, verified email, display data."""

    external_id: str
    email: str
    name: str | None = None
    avatar: str | None = None


def get_enabled_providers() -> list[dict]:
    """Return {"name", "label"} for every configured provider."""
    cfg = get_settings()
    providers: list[dict] = []
    if cfg.google_client_id and cfg.google_client_secret:
        providers.append({"name": "google", "label": "Google"})
    return providers


def get_google_identity(token: dict) -> ExternalIdentity:
    """Extract the identity from a Google token response (authlib parses the id_token into userinfo).

    [H1] The email is only accepted when email_verified is True. A missing
    email_verified claim is treated as unverified.

    Raises:
        ValueError: If userinfo is missing, unverified, or lacks email/sub.
    """
    userinfo = token.get("userinfo")
    if not userinfo:
        raise ValueError("google OAuth: no userinfo in token response")

    if not userinfo.get("email_verified", False):
        raise ValueError(
            "google OAuth: email is not verified. "
            "The provider must confirm email ownership before login is allowed."
        )

    email = userinfo.get("email")
    subject_id = userinfo.get("sub")
    if not email or not subject_id:
        raise ValueError("google OAuth: missing email or sub claim in userinfo")

    return ExternalIdentity(
        external_id=str(subject_id),
        email=email,
        name=userinfo.get("name"),
        avatar=userinfo.get("picture"),
    )
