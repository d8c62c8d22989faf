"""
auth/mailer.py -- Outgoing email for OTP delivery.

SmtpMailer opens an authenticated STARTTLS connection per message and reports
success as a bool. It never raises: a failed send must not corrupt OTP state,
so OTPStore only records whether the code went out.

render_otp_email() builds the purpose-specific subject and HTML body
(registration, forgot-password, generic verification).
"""

from __future__ import annotations

import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Protocol

from core.config import Settings

logger = logging.getLogger("mediavault.auth.mailer")


class Mailer(Protocol):
    def send_email(self, to: str, subject: str, html_body: str) -> bool: ...


class SmtpMailer:
    """SMTP-backed Mailer. Delivery is disabled when SMTP_HOST or EMAIL_FROM is unset."""

    def __init__(self, settings: Settings, timeout: float = 15.0) -> None:
        self._settings = settings
        self._timeout = timeout

    def _connect(self) -> smtplib.SMTP:
        conn = smtplib.SMTP(self._settings.smtp_host, self._settings.smtp_port, timeout=self._timeout)
        conn.ehlo()
        conn.starttls()
        conn.ehlo()
        if self._settings.smtp_user:
            conn.login(self._settings.smtp_user, self._settings.smtp_password)
        return conn

    def send_email(self, to: str, subject: str, html_body: str) -> bool:
        if not self._settings.smtp_configured:
            logger.warning("SMTP not configured -- email %r to %s not sent", subject, to)
            return False

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = f"{self._settings.app_name} <{self._settings.email_from}>"
        msg["To"] = to
        msg.attach(MIMEText(html_body, "html", "utf-8"))

        try:
            with self._connect() as conn:
                conn.sendmail(self._settings.email_from, [to], msg.as_string())
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("Failed to send %r to %s: %s", subject, to, exc)
            return False

        logger.info("Sent %r to %s", subject, to)
        return True


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------

_TEMPLATES: dict[str, tuple[str, str, str]] = {
    # purpose: (subject suffix, heading, lead-in)
    "registration": ("Verify Your Email", "Welcome to {app}!", "Your code for email verification is:"),
    "forgot-password": ("Reset Your Password", "Password Reset Request", "Your code for password reset is:"),
    "verification": ("Your Verification Code", "Verification Code", "Your verification code is:"),
}

_BODY = """\
<h2>{heading}</h2>
<p>{lead}</p>
<h1 style="color: #007bff; letter-spacing: 2px;">{code}</h1>
<p>This code will expire in {minutes} minutes.</p>
<p>If you did not request this, please ignore this email.</p>
"""


def render_otp_email(purpose: str, code: str, ttl_seconds: int, app_name: str = "MediaVault") -> tuple[str, str]:
    """Return (subject, html_body) for an OTP email. Unknown purposes use the generic template."""
    suffix, heading, lead = _TEMPLATES.get(purpose, _TEMPLATES["verification"])
    subject = f"{suffix} - {app_name}"
    body = _BODY.format(
        heading=heading.format(app=app_name),
        lead=lead,
        code=code,
        minutes=max(1, ttl_seconds // 60),
    )
    return subject, body
