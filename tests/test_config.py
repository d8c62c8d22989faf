"""Unit tests for core/config.py -- SECRET_KEY policy and lifetime validation."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from core.config import Settings

GOOD_KEY = "k" * 32


def test_debug_generates_secret_key() -> None:
    settings = Settings(debug=True, secret_key="")
    assert len(settings.secret_key) >= 32


def test_production_requires_secret_key() -> None:
    with pytest.raises(ValidationError, match="SECRET_KEY is required"):
        Settings(debug=False, secret_key="")


def test_short_secret_key_rejected() -> None:
    with pytest.raises(ValidationError, match="at least 32"):
        Settings(debug=True, secret_key="too-short")


def test_access_must_be_shorter_than_refresh() -> None:
    with pytest.raises(ValidationError):
        Settings(secret_key=GOOD_KEY, access_token_expire_seconds=3600, refresh_token_expire_seconds=3600)


@pytest.mark.parametrize("length", [3, 11])
def test_otp_length_bounds(length: int) -> None:
    with pytest.raises(ValidationError):
        Settings(secret_key=GOOD_KEY, otp_length=length)


def test_defaults() -> None:
    settings = Settings(secret_key=GOOD_KEY)
    assert settings.access_token_expire_seconds == 3600
    assert settings.refresh_token_expire_seconds == 7 * 24 * 3600
    assert (settings.otp_ttl_seconds, settings.otp_max_attempts, settings.otp_length) == (600, 5, 6)
    assert settings.allow_inactive_password_reset is False


def test_smtp_configured_needs_host_and_sender() -> None:
    assert not Settings(secret_key=GOOD_KEY, smtp_host="smtp.example.com").smtp_configured
    assert Settings(secret_key=GOOD_KEY, smtp_host="smtp.example.com", email_from="noreply@example.com").smtp_configured
