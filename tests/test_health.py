"""
tests/test_health.py -- Integration tests for GET /api/v1/health and the error envelope.
"""

from __future__ import annotations

from api.main import VERSION


def test_health_returns_200(api_env):
    """Health endpoint returns status and version without authentication."""
    resp = api_env.client.get("/api/v1/health", headers={})
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "version": VERSION}


def test_unknown_route_uses_error_envelope(api_env):
    resp = api_env.client.get("/api/v1/does-not-exist")
    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "http_404"


def test_docs_require_auth(api_env):
    assert api_env.client.get("/docs").status_code == 401
    assert api_env.client.get("/docs", headers=api_env.admin_headers).status_code == 200


def test_untrusted_host_rejected(api_env):
    resp = api_env.client.get("/api/v1/health", headers={"Host": "evil.example"})
    assert resp.status_code == 400
