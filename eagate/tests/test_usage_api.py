"""Tests for the usage endpoints."""

import pytest

import eagate.api.generate as generate_api
from eagate.features.usage.service import get_usage, increment_usage
from eagate.models.identity import Identity, IdentityKind


@pytest.fixture
def admin_key(test_settings, monkeypatch):
    monkeypatch.setattr(test_settings, "ADMIN_KEY", "test-admin-key-123")
    return "test-admin-key-123"


def test_usage_for_new_caller(client, anon_headers):
    resp = client.get("/usage", headers=anon_headers())
    assert resp.status_code == 200
    assert resp.json() == {
        "identity_kind": "anonymous",
        "count": 0,
        "limit": 3,
        "remaining_free": 3,
        "has_paid": False,
    }


def test_usage_reflects_generations(client, anon_headers, monkeypatch):
    async def fake_generate(messages, language="mql4"):
        return "void OnTick() {}"

    monkeypatch.setattr(generate_api, "generate_ea", fake_generate)
    headers = anon_headers()
    body = {"messages": [{"role": "user", "content": "EA"}]}
    client.post("/generate", json=body, headers=headers)
    client.post("/generate", json=body, headers=headers)

    usage = client.get("/usage", headers=headers).json()
    assert usage["count"] == 2
    assert usage["remaining_free"] == 1


def test_authenticated_self_reset(client, auth_headers):
    user = Identity(kind=IdentityKind.AUTHENTICATED, key="trader@example.com")
    for _ in range(3):
        increment_usage(user)

    resp = client.post("/usage/reset", headers=auth_headers("trader@example.com"))

    assert resp.status_code == 200
    assert resp.json()["count"] == 0
    assert get_usage(user).count == 0


def test_anonymous_reset_is_forbidden(client, anon_headers):
    anon = Identity(kind=IdentityKind.ANONYMOUS, key="device-token-0001")
    increment_usage(anon)

    resp = client.post("/usage/reset", headers=anon_headers("device-token-0001"))

    assert resp.status_code == 403
    assert resp.json()["error"]["code"] == "forbidden"
    assert get_usage(anon).count == 1


def test_admin_reset_with_key(client, admin_key):
    anon = Identity(kind=IdentityKind.ANONYMOUS, key="device-token-0001")
    increment_usage(anon)

    resp = client.post(
        "/admin/usage/reset",
        json={"kind": "anonymous", "key": "device-token-0001"},
        headers={"X-Admin-Key": admin_key},
    )

    assert resp.status_code == 200
    assert get_usage(anon).count == 0


def test_admin_reset_with_admin_jwt(client, auth_headers):
    user = Identity(kind=IdentityKind.AUTHENTICATED, key="trader@example.com")
    increment_usage(user)

    resp = client.post(
        "/admin/usage/reset",
        json={"kind": "authenticated", "key": "Trader@Example.com"},
        headers=auth_headers("ops@example.com", role="admin"),
    )

    assert resp.status_code == 200
    assert get_usage(user).count == 0


def test_admin_reset_rejects_wrong_key(client, admin_key):
    resp = client.post(
        "/admin/usage/reset",
        json={"kind": "anonymous", "key": "device-token-0001"},
        headers={"X-Admin-Key": "wrong"},
    )
    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "admin_unauthorized"


def test_admin_reset_rejects_non_admin_jwt(client, auth_headers):
    resp = client.post(
        "/admin/usage/reset",
        json={"kind": "anonymous", "key": "device-token-0001"},
        headers=auth_headers("trader@example.com"),
    )
    assert resp.status_code == 401


def test_legacy_mode_ignores_admin_jwt(client, auth_headers, admin_key, test_settings, monkeypatch):
    monkeypatch.setattr(test_settings, "ADMIN_AUTH_MODE", "legacy")
    resp = client.post(
        "/admin/usage/reset",
        json={"kind": "anonymous", "key": "device-token-0001"},
        headers=auth_headers("ops@example.com", role="admin"),
    )
    assert resp.status_code == 401


def test_admin_auth_unconfigured(client, test_settings, monkeypatch):
    monkeypatch.setattr(test_settings, "CLERK_SECRET_KEY", None)
    resp = client.post(
        "/admin/usage/reset",
        json={"kind": "anonymous", "key": "device-token-0001"},
        headers={"X-Admin-Key": "anything"},
    )
    assert resp.status_code == 503
    assert resp.json()["error"]["code"] == "admin_auth_unconfigured"
