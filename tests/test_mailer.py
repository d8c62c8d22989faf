"""Unit tests for auth/mailer.py -- OTP templates and SMTP failure handling."""

from __future__ import annotations

import smtplib

import pytest

from auth.mailer import SmtpMailer, render_otp_email
from core.config import Settings

KEY = "k" * 32


@pytest.mark.parametrize(
    ("purpose", "subject"),
    [
        ("registration", "Verify Your Email - MediaVault"),
        ("forgot-password", "Reset Your Password - MediaVault"),
        ("verification", "Your Verification Code - MediaVault"),
        ("something-else", "Your Verification Code - MediaVault"),
    ],
)
def test_templates(purpose: str, subject: str) -> None:
    rendered_subject, body = render_otp_email(purpose, "123456", 600)
    assert rendered_subject == subject
    assert ">123456<" in body
    assert "10 minutes" in body


def test_unconfigured_smtp_returns_false() -> None:
    mailer = SmtpMailer(Settings(secret_key=KEY))
    assert mailer.send_email("ann@example.com", "Hi", "<p>hi</p>") is False


def test_smtp_error_returns_false(monkeypatch: pytest.MonkeyPatch) -> None:
    def refuse(*args, **kwargs):
        raise smtplib.SMTPConnectError(421, b"busy")

    monkeypatch.setattr(smtplib, "SMTP", refuse)
    mailer = SmtpMailer(Settings(secret_key=KEY, smtp_host="smtp.example.com", email_from="noreply@example.com"))
    assert mailer.send_email("ann@example.com", "Hi", "<p>hi</p>") is False


def test_smtp_success(monkeypatch: pytest.MonkeyPatch) -> None:
    sent = []

    class FakeSMTP:
        def __init__(self, host, port, timeout):
            self.host = host

        def ehlo(self):
            pass

        def starttls(self):
            pass

        def login(self, user, password):
            pass

        def sendmail(self, sender, recipients, message):
            sent.append((sender, recipients))

        def __enter__(self):
            return self

        def __exit__(self, *exc):
            return False

    monkeypatch.setattr(smtplib, "SMTP", FakeSMTP)
    mailer = SmtpMailer(
        Settings(secret_key=KEY, smtp_host="smtp.example.com", smtp_user="u", email_from="noreply@example.com")
    )
    assert mailer.send_email("ann@example.com", "Hi", "<p>hi</p>") is True
    assert sent == [("noreply@example.com", ["ann@example.com"])]
