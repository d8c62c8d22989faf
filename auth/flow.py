"""
auth/flow.py -- Account and session flows.

AuthenticationFlow composes the PrincipalStore (persistence), OTPStore
(one-time codes), TokenService (sessions) and password hashing into the
operations the API exposes: register, login, OAuth login, OTP request and
verification, password reset, access token refresh, and logout.

Every failure is raised as an AuthError subclass from auth/errors.py. The
route layer does not translate errors; the API's exception handler renders
them.

Policy decisions:
  - Registration issues tokens immediately. The account is usable before its
    email is verified; the OTP delivery result is reported as otp_sent and
    never fails registration.
  - OAuth identities are treated as pre-verified. A principal found by email
    is linked to the external id once; an existing link is never replaced.
  - Password reset requires a prior successful verify_otp_code() for the same
    email. Deactivated accounts may not reset unless
    allow_inactive_password_reset is set.
  - Refresh requires a valid refresh token. Access tokens, expired or not,
    are never accepted for refresh.
"""

from __future__ import annotations

import logging
import re

from sqlalchemy.exc import IntegrityError

from auth.errors import (
    Conflict,
    DeliveryFailed,
    Expired,
    Forbidden,
    Locked,
    NotFound,
    Unauthorized,
    ValidationFailed,
    VerificationRequired,
)
from auth.models import AuthResult, OTPPurpose, OTPStatus, Principal, Role
from auth.otp import OTPStore, normalize_subject
from auth.passwords import check_credentials, hash_password
from auth.store import PrincipalStore
from auth.tokens import TokenService

logger = logging.getLogger("mediavault.auth.flow")

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]{2,}$")
_PURPOSES = {p.value for p in OTPPurpose}


class AuthenticationFlow:
    def __init__(
        self,
        principals: PrincipalStore,
        otp_store: OTPStore,
        tokens: TokenService,
        password_min_length: int = 6,
        allow_inactive_password_reset: bool = False,
    ) -> None:
        self.principals = principals
        self.otp_store = otp_store
        self.tokens = tokens
        self.password_min_length = password_min_length
        self.allow_inactive_password_reset = allow_inactive_password_reset

    # ------------------------------------------------------------------
    # Validation helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _require(**fields: str | None) -> None:
        missing = [name for name, value in fields.items() if value is None or not str(value).strip()]
        if missing:
            raise ValidationFailed(
                f"Please provide {', '.join(missing)}.",
                code="missing_fields",
                detail=",".join(missing),
            )

    @staticmethod
    def _check_email(email: str) -> str:
        email = normalize_subject(email)
        if not _EMAIL_RE.match(email):
            raise ValidationFailed("Please provide a valid email address.", code="invalid_email")
        return email

    def _check_new_password(self, password: str, confirm_password: str) -> None:
        if password != confirm_password:
            raise ValidationFailed("Passwords do not match.", code="password_mismatch")
        if len(password) < self.password_min_length:
            raise ValidationFailed(
                f"Password must be at least {self.password_min_length} characters long.",
                code="password_too_short",
            )

    def _session(self, principal: Principal, otp_sent: bool | None = None) -> AuthResult:
        return AuthResult(
            principal=principal,
            tokens=self.tokens.issue_pair(principal.id, principal.role),
            otp_sent=otp_sent,
        )

    # ------------------------------------------------------------------
    # Registration and login
    # ------------------------------------------------------------------

    def register(self, name: str, email: str, password: str, confirm_password: str) -> AuthResult:
        """Create an unverified account, start a session, and send a registration OTP."""
        self._require(name=name, email=email, password=password, confirm_password=confirm_password)
        email = self._check_email(email)
        self._check_new_password(password, confirm_password)

        if self.principals.get_by_email(email) is not None:
            raise Conflict("Email already registered. Please login or use a different email.")

        principal = Principal(
            name=name.strip(),
            email=email,
            credential_hash=hash_password(password),
            role=Role.user.value,
            email_verified=False,
        )
        try:
            principal_id = self.principals.create(principal)
        except IntegrityError as exc:
            # Lost a race with a concurrent registration for the same email
            raise Conflict("Email already registered. Please login or use a different email.") from exc
        created = self.principals.get_by_id(principal_id)
        logger.info("Registered principal %d (%s)", principal_id, email)

        issued = self.otp_store.generate(email, OTPPurpose.registration)
        if not issued.sent:
            logger.warning("Registration OTP for %s was not delivered", email)
        return self._session(created, otp_sent=issued.sent)

    def login(self, email: str, password: str) -> AuthResult:
        self._require(email=email, password=password)
        principal = self.principals.get_by_email(email)
        if not check_credentials(principal, password):
            raise Unauthorized("Invalid email or password.", code="bad_credentials")
        if not principal.active:
            raise Forbidden("Your account has been disabled.", code="account_disabled")
        return self._session(principal)

    def oauth_login(self, external_id: str, email: str, name: str | None = None, avatar: str | None = None) -> AuthResult:
        """Sign in with an external identity, creating or linking the principal as needed.

        Lookup order: external id, then email. Never creates a second
        principal for an email that already exists.
        """
        self._require(external_id=external_id, email=email)
        email = self._check_email(email)

        principal = self.principals.get_by_external_id(external_id) or self.principals.get_by_email(email)
        if principal is None:
            principal = self._create_oauth_principal(external_id, email, name, avatar)
        elif principal.external_id is None:
            if self.principals.link_external_id(principal.id, external_id):
                logger.info("Linked external identity to principal %d", principal.id)
            principal = self.principals.get_by_id(principal.id)

        if not principal.active:
            raise Forbidden("Your account has been disabled.", code="account_disabled")
        return self._session(principal)

    def _create_oauth_principal(self, external_id: str, email: str, name: str | None, avatar: str | None) -> Principal:
        candidate = Principal(
            name=(name or "").strip() or email.split("@")[0],
            email=email,
            external_id=external_id,
            avatar=avatar,
            email_verified=True,
        )
        try:
            principal_id = self.principals.create(candidate)
        except IntegrityError:
            # A concurrent login created the row first; use theirs.
            existing = self.principals.get_by_external_id(external_id) or self.principals.get_by_email(email)
            if existing is None:
                raise
            return existing
        logger.info("Created principal %d from external identity (%s)", principal_id, email)
        return self.principals.get_by_id(principal_id)

    # ------------------------------------------------------------------
    # One-time codes
    # ------------------------------------------------------------------

    def request_otp(self, email: str, purpose: str = OTPPurpose.verification.value) -> float:
        """Issue and email a code. Returns the record's expiry (epoch seconds).

        forgot-password requires an existing principal; the other purposes
        do not. Raises DeliveryFailed when the email could not be sent.
        """
        self._require(email=email)
        email = self._check_email(email)
        purpose = getattr(purpose, "value", purpose)
        if purpose not in _PURPOSES:
            raise ValidationFailed(f"Unknown OTP purpose: {purpose}.", code="invalid_purpose")
        if purpose == OTPPurpose.forgot_password.value and self.principals.get_by_email(email) is None:
            raise NotFound("Email not found in our system.")

        issued = self.otp_store.generate(email, purpose)
        if not issued.sent:
            raise DeliveryFailed("Failed to send OTP. Please try again.")
        return issued.expires_at

    def forgot_password(self, email: str) -> float:
        return self.request_otp(email, OTPPurpose.forgot_password.value)

    def verify_otp_code(self, email: str, code: str) -> str:
        """Check a code; returns its purpose. Registration codes also mark the email verified."""
        self._require(email=email, otp=code)
        email = normalize_subject(email)
        result = self.otp_store.verify(email, code)

        if result.status is OTPStatus.NOT_FOUND:
            raise NotFound("No OTP found for this email. Please request a new one.", code="otp_not_found")
        if result.status is OTPStatus.EXPIRED:
            raise Expired("OTP has expired. Please request a new one.", code="otp_expired")
        if result.status is OTPStatus.LOCKED:
            raise Locked("Too many failed attempts. Please request a new OTP.", code="otp_locked")
        if result.status is OTPStatus.MISMATCH:
            raise ValidationFailed(
                f"Incorrect OTP. You have {result.remaining_attempts} attempts remaining.",
                code="otp_mismatch",
                detail=str(result.remaining_attempts),
            )

        if result.purpose == OTPPurpose.registration.value:
            principal = self.principals.get_by_email(email)
            if principal is not None and not principal.email_verified:
                self.principals.update(principal.id, email_verified=True)
                logger.info("Email verified for principal %d", principal.id)
        return result.purpose

    def reset_password(self, email: str, code: str, new_password: str, confirm_password: str) -> None:
        """Set a new password after verify_otp_code() succeeded for this email.

        code must be supplied but is not re-checked: the verified flag on the
        OTP record is what authorises the reset.
        """
        self._require(email=email, otp=code, new_password=new_password, confirm_password=confirm_password)
        email = normalize_subject(email)
        self._check_new_password(new_password, confirm_password)

        if not self.otp_store.is_verified(email):
            raise VerificationRequired("OTP verification required. Please verify your OTP first.")

        principal = self.principals.get_by_email(email)
        if principal is None:
            raise NotFound("User not found.")
        if not principal.active and not self.allow_inactive_password_reset:
            raise Forbidden("Your account has been disabled.", code="account_disabled")

        # One verification authorises exactly one reset.
        if not self.otp_store.consume_verified(email):
            raise VerificationRequired("OTP verification required. Please verify your OTP first.")

        self.principals.update(principal.id, credential_hash=hash_password(new_password))
        logger.info("Password reset for principal %d", principal.id)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def refresh_access_token(self, refresh_token: str) -> str:
        """Mint a new access token from a valid refresh token, using the principal's current role."""
        self._require(refresh_token=refresh_token)

        def resolve_role(subject_id: int) -> str:
            principal = self.principals.get_by_id(subject_id)
            if principal is None:
                raise Unauthorized("Account no longer exists.", code="unknown_subject")
            if not principal.active:
                raise Forbidden("Your account has been disabled.", code="account_disabled")
            return principal.role

        return self.tokens.rotate(refresh_token, resolve_role)

    def logout(self, principal: Principal) -> None:
        """Drop any live OTP for the principal. Tokens are stateless and simply expire."""
        self.otp_store.clear(principal.email)
