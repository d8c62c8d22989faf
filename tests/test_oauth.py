"""Unit tests for auth/oauth.py -- Google identity extraction [H1]."""

from __future__ import annotations

import pytest

from auth.oauth import get_enabled_providers, get_google_identity


def test_verified_identity() -> None:
    token = {
        "userinfo": {
            "sub": "10987",
            "email": "gina@example.com",
            "email_verified": True,
            "name": "Gina",
            "picture": "https://img/g.png",
        }
    }
    identity = get_google_identity(token)
    assert identity.external_id == "10987"
    assert identity.email == "gina@example.com"
    assert (identity.name, identity.avatar) == ("Gina", "https://img/g.png")


@pytest.mark.parametrize(
    "token",
    [
        {},
        {"userinfo": {"sub": "1", "email": "g@example.com"}},
        {"userinfo": {"sub": "1", "email": "g@example.com", "email_verified": False}},
        {"userinfo": {"sub": "1", "email_verified": True}},
        {"userinfo": {"email": "g@example.com", "email_verified": True}},
    ],
)
def test_rejected_identities(token: dict) -> None:
    with pytest.raises(ValueError):
        get_google_identity(token)


def test_no_providers_without_credentials() -> None:
    assert get_enabled_providers() == []
