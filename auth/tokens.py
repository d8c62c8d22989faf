"""
auth/tokens.py -- Signed access and refresh tokens.

Security design decisions:
  JWT: python-jose with HS256, signed with SECRET_KEY.
       Access token payload:  {subject_id, role, iat, exp}       (1 hour)
       Refresh token payload: {subject_id, type: "refresh", iat, exp}  (7 days)

  Verification has exactly two outcomes: a TokenClaims value, or a raised
       TokenExpired / TokenInvalid. There is no "decode without verifying"
       fallback anywhere in this module -- an expired or tampered token is
       never turned back into claims.

  Token type separation: an access token is rejected by verify_refresh_token()
       (no type marker) and a refresh token is rejected by verify_access_token()
       (type marker present, no role). A leaked access token therefore cannot
       be used to mint new ones.

  Stateless: TokenService holds only its key and lifetimes, so one instance is
       shared by every request thread without locking. Tokens are never
       revoked server-side; they simply expire.

Layer rule: no imports from api/ or media/.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from jose import ExpiredSignatureError, JWTError, jwt

from auth.errors import TokenExpired, TokenInvalid
from auth.models import Role, TokenClaims, TokenPair
from core.config import Settings

logger = logging.getLogger("mediavault.auth.tokens")

ALGORITHM = "HS256"
REFRESH_TYPE = "refresh"

_ROLES = {r.value for r in Role}


class TokenService:
    """Issues and verifies access/refresh tokens.

    Usage:
        tokens = TokenService.from_settings(get_settings())
        pair = tokens.issue_pair(user_id, "user")
        claims = tokens.verify_access_token(pair.access_token)
    """

    def __init__(
        self,
        secret_key: str,
        access_ttl_seconds: int = 3600,
        refresh_ttl_seconds: int = 7 * 24 * 3600,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if access_ttl_seconds >= refresh_ttl_seconds:
            raise ValueError("access token lifetime must be shorter than refresh token lifetime")
        self._secret_key = secret_key
        self.access_ttl_seconds = access_ttl_seconds
        self.refresh_ttl_seconds = refresh_ttl_seconds
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings) -> TokenService:
        return cls(
            secret_key=settings.secret_key,
            access_ttl_seconds=settings.access_token_expire_seconds,
            refresh_ttl_seconds=settings.refresh_token_expire_seconds,
        )

    # ------------------------------------------------------------------
    # Issue
    # ------------------------------------------------------------------

    def _encode(self, claims: dict, ttl_seconds: int) -> str:
        now = int(self._clock())
        payload = {**claims, "iat": now, "exp": now + ttl_seconds}
        return jwt.encode(payload, self._secret_key, algorithm=ALGORITHM)

    def issue_access_token(self, subject_id: int, role: str) -> str:
        if role not in _ROLES:
            raise ValueError(f"unknown role: {role!r}")
        return self._encode({"subject_id": subject_id, "role": role}, self.access_ttl_seconds)

    def issue_refresh_token(self, subject_id: int) -> str:
        return self._encode({"subject_id": subject_id, "type": REFRESH_TYPE}, self.refresh_ttl_seconds)

    def issue_pair(self, subject_id: int, role: str) -> TokenPair:
        return TokenPair(
            access_token=self.issue_access_token(subject_id, role),
            refresh_token=self.issue_refresh_token(subject_id),
            expires_in=self.access_ttl_seconds,
        )

    # ------------------------------------------------------------------
    # Verify
    # ------------------------------------------------------------------

    def _decode(self, token: str, kind: str) -> dict:
        try:
            return jwt.decode(token, self._secret_key, algorithms=[ALGORITHM])
        except ExpiredSignatureError as exc:
            raise TokenExpired(f"{kind.capitalize()} token has expired.") from exc
        except JWTError as exc:
            raise TokenInvalid(f"Invalid {kind} token.") from exc

    @staticmethod
    def _subject_id(payload: dict, kind: str) -> int:
        subject_id = payload.get("subject_id")
        if isinstance(subject_id, bool) or not isinstance(subject_id, int):
            raise TokenInvalid(f"Invalid {kind} token.", detail="missing subject_id")
        return subject_id

    def verify_access_token(self, token: str) -> TokenClaims:
        """Return the claims of a valid access token. Raises TokenExpired or TokenInvalid."""
        payload = self._decode(token, "access")
        if payload.get("type") is not None or payload.get("role") not in _ROLES:
            raise TokenInvalid("Invalid access token.", detail="not an access token")
        return TokenClaims(
            subject_id=self._subject_id(payload, "access"),
            role=payload["role"],
            issued_at=payload["iat"],
            expires_at=payload["exp"],
        )

    def verify_refresh_token(self, token: str) -> TokenClaims:
        """Return the claims of a valid refresh token. Raises TokenExpired or TokenInvalid."""
        payload = self._decode(token, "refresh")
        if payload.get("type") != REFRESH_TYPE:
            raise TokenInvalid("Invalid refresh token.", detail="not a refresh token")
        return TokenClaims(
            subject_id=self._subject_id(payload, "refresh"),
            type=REFRESH_TYPE,
            issued_at=payload["iat"],
            expires_at=payload["exp"],
        )

    def rotate(self, refresh_token: str, resolve_role: Callable[[int], str] | None = None) -> str:
        """Verify a refresh token and mint a fresh access token for the same subject.

        resolve_role maps the subject id to its current role. It may raise an
        AuthError (e.g. the principal was deleted or disabled), which propagates.
        Without a resolver the new token carries the default "user" role.
        """
        claims = self.verify_refresh_token(refresh_token)
        role = resolve_role(claims.subject_id) if resolve_role is not None else Role.user.value
        logger.debug("Rotated access token for subject %d", claims.subject_id)
        return self.issue_access_token(claims.subject_id, role)


def bearer_token(authorization: str | None) -> str | None:
    """Extract the token from an "Authorization: Bearer <token>" header value."""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer":
        return None
    token = token.strip()
    return token or None
