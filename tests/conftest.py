"""
tests/conftest.py -- Shared test fixtures for MediaVault tests.

This module provides:
  - RecordingMailer: in-process Mailer that keeps every message (and can fail on demand)
  - make_principal_store() / make_media_store(): isolated in-memory DBs
  - _patch_lifespan(): wires test collaborators into app.state, bypassing real startup
  - api_env: module-scoped TestClient plus handles on every collaborator

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

DEBUG and ALLOWED_HOSTS must be set before any core/auth/api import:
get_settings() is cached on first call, DEBUG lets it auto-generate
SECRET_KEY, and TestClient sends Host: testserver.
"""

from __future__ import annotations

import asyncio
import itertools
import os
import re
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from unittest.mock import MagicMock

# CRITICAL: Set before any auth/core import (see module docstring).
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver"]')

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from auth.flow import AuthenticationFlow
from auth.models import Principal
from auth.otp import OTPStore
from auth.passwords import hash_password
from auth.store import PrincipalStore
from auth.tokens import TokenService
from media.store import MediaStore

TEST_SECRET = "test-secret-key-that-is-at-least-32-characters-long"

_CODE_RE = re.compile(r">(\d{4,10})<")
_db_counter = itertools.count()


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------


class RecordingMailer:
    """Mailer double. Keeps (to, subject, html_body) for every send attempt.

    Set fail=True to simulate a delivery failure (send_email returns False).
    """

    def __init__(self) -> None:
        self.sent: list[tuple[str, str, str]] = []
        self.fail = False

    def send_email(self, to: str, subject: str, html_body: str) -> bool:
        if self.fail:
            return False
        self.sent.append((to, subject, html_body))
        return True

    def last_code(self, to: str) -> str:
        """Return the code from the most recent message to `to`."""
        for recipient, _subject, body in reversed(self.sent):
            if recipient == to:
                match = _CODE_RE.search(body)
                assert match, f"no code in email body: {body!r}"
                return match.group(1)
        raise AssertionError(f"no email sent to {to}")


def _db_url(prefix: str) -> str:
    return f"sqlite:///file:{prefix}_{next(_db_counter)}?mode=memory&cache=shared&uri=true"


def make_principal_store() -> PrincipalStore:
    return PrincipalStore(_db_url("test_principals"))


def make_media_store() -> MediaStore:
    return MediaStore(_db_url("test_media"))


def add_principal(
    store: PrincipalStore,
    email: str,
    password: str = "secret123",
    role: str = "user",
    active: bool = True,
    name: str = "Test User",
) -> Principal:
    """Insert a principal directly and return the stored record."""
    principal_id = store.create(
        Principal(
            name=name,
            email=email,
            role=role,
            credential_hash=hash_password(password),
            active=active,
            email_verified=True,
        )
    )
    return store.get_by_id(principal_id)


# ---------------------------------------------------------------------------
# Unit-level fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def principal_store() -> Generator[PrincipalStore, None, None]:
    store = make_principal_store()
    yield store
    store.close()


@pytest.fixture()
def media_store() -> Generator[MediaStore, None, None]:
    store = make_media_store()
    yield store
    store.close()


@pytest.fixture()
def mailer() -> RecordingMailer:
    return RecordingMailer()


@pytest.fixture()
def token_service() -> TokenService:
    return TokenService(TEST_SECRET)


@pytest.fixture()
def flow(principal_store: PrincipalStore, mailer: RecordingMailer, token_service: TokenService) -> AuthenticationFlow:
    return AuthenticationFlow(
        principals=principal_store,
        otp_store=OTPStore(mailer=mailer),
        tokens=token_service,
    )


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------


@dataclass
class ApiEnv:
    client: TestClient
    principals: PrincipalStore
    media: MediaStore
    mailer: RecordingMailer
    otp_store: OTPStore
    tokens: TokenService
    admin: Principal

    def headers(self, principal: Principal) -> dict[str, str]:
        """Authorization header carrying a fresh access token for principal."""
        token = self.tokens.issue_access_token(principal.id, principal.role)
        return {"Authorization": f"Bearer {token}"}

    @property
    def admin_headers(self) -> dict[str, str]:
        return self.headers(self.admin)


def _patch_lifespan(env_parts: dict):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-created test collaborators into app.state so TestClient routes
    see isolated stores and the recording mailer. The OAuth registry is a
    MagicMock to prevent real network calls.

    The purge_task is a long-sleeping coroutine that keeps asyncio happy
    (a real asyncio.Task is required; MagicMock would fail on .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.principals = env_parts["principals"]
        app.state.media = env_parts["media"]
        app.state.otp_store = env_parts["otp_store"]
        app.state.tokens = env_parts["tokens"]
        app.state.auth_flow = AuthenticationFlow(
            principals=env_parts["principals"],
            otp_store=env_parts["otp_store"],
            tokens=env_parts["tokens"],
        )
        app.state.oauth = MagicMock()
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


@pytest.fixture(scope="module")
def api_env() -> Generator[ApiEnv, None, None]:
    """Yield an ApiEnv for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so tests
    hit real route handlers, middleware and exception handlers but use
    isolated in-memory stores. An active admin exists before the client
    starts. Rate limiting is disabled so tests can call endpoints freely.
    """
    mailer = RecordingMailer()
    parts = {
        "principals": make_principal_store(),
        "media": make_media_store(),
        "otp_store": OTPStore(mailer=mailer),
        "tokens": TokenService(TEST_SECRET),
    }
    admin = add_principal(parts["principals"], "admin@example.com", password="adminpass123", role="admin", name="Admin")

    app.router.lifespan_context = _patch_lifespan(parts)
    limiter.enabled = False

    with TestClient(app, raise_server_exceptions=True) as client:
        yield ApiEnv(client=client, mailer=mailer, admin=admin, **parts)

    limiter.enabled = True
    parts["media"].close()
    parts["principals"].close()
