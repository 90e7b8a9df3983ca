"""
tests/test_auth_routes.py -- Integration tests for /api/v1/auth routes.

Coverage:
  - POST /login: valid credentials 200 + no-store, invalid 401 bad_credentials
  - POST /register: later accounts become analysts, duplicates 409, gate respected
  - GET /me with Bearer and with X-API-Key
  - API keys: create, list, revoke (revoked key no longer authenticates)
  - Admin user management: create, list, patch, delete, role enforcement,
    self-protection and last-admin guards

Login and register set the access_token cookie on the TestClient; tests
that call them clear the cookie jar afterwards so later requests are only
authenticated by the headers they send.
"""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

import api.routes.v1.auth as auth_routes
from conftest import auth_headers, make_user


@pytest.fixture
def admin(api_client: tuple[TestClient, str, int]):
    client, token, uid = api_client
    yield client, auth_headers(token), uid
    client.cookies.clear()


class TestLogin:
    def test_valid_credentials(self, admin) -> None:
        client, _headers, _uid = admin
        resp = client.post("/api/v1/auth/login", json={"username": "testadmin", "password": "testpass123"})
        assert resp.status_code == 200, resp.text
        data = resp.json()
        assert data["token_type"] == "bearer"
        assert data["role"] == "admin"
        assert data["expires_in"] > 0
        assert resp.headers["Cache-Control"] == "no-store"

        client.cookies.clear()
        me = client.get("/api/v1/auth/me", headers=auth_headers(data["access_token"]))
        assert me.json()["username"] == "testadmin"

    @pytest.mark.parametrize(
        "username,password",
        [("testadmin", "wrong-password"), ("nobody", "testpass123")],
    )
    def test_invalid_credentials(self, admin, username: str, password: str) -> None:
        client, _headers, _uid = admin
        resp = client.post("/api/v1/auth/login", json={"username": username, "password": password})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "bad_credentials", "Same error for unknown user and bad password"


class TestRegister:
    def test_second_account_is_analyst(self, admin) -> None:
        client, _headers, _uid = admin
        resp = client.post(
            "/api/v1/auth/register",
            json={"username": "newanalyst", "password": "longenough1", "email": "a@example.com"},
        )
        assert resp.status_code == 201, resp.text
        assert resp.json()["role"] == "analyst"

    def test_duplicate_username_409(self, admin) -> None:
        client, _headers, _uid = admin
        resp = client.post("/api/v1/auth/register", json={"username": "testadmin", "password": "longenough1"})
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "conflict"

    def test_short_password_422(self, admin) -> None:
        client, _headers, _uid = admin
        resp = client.post("/api/v1/auth/register", json={"username": "shorty", "password": "short"})
        assert resp.status_code == 422

    def test_disabled_after_first_user(self, admin, monkeypatch) -> None:
        client, _headers, _uid = admin
        monkeypatch.setattr(auth_routes._settings, "self_registration_enabled", False)
        resp = client.post("/api/v1/auth/register", json={"username": "latecomer", "password": "longenough1"})
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "registration_disabled"


class TestApiKeys:
    def test_create_use_revoke(self, admin) -> None:
        client, headers, _uid = admin
        resp = client.post("/api/v1/auth/api-keys", json={"name": "scanner"}, headers=headers)
        assert resp.status_code == 201, resp.text
        created = resp.json()
        raw_key = created["key"]
        assert raw_key.startswith(created["key_prefix"])

        listed = client.get("/api/v1/auth/api-keys", headers=headers).json()
        assert created["id"] in [k["id"] for k in listed]
        assert all("key" not in k for k in listed), "Raw key must never be listed"

        me = client.get("/api/v1/auth/me", headers={"X-API-Key": raw_key})
        assert me.status_code == 200
        assert me.json()["username"] == "testadmin"

        assert client.delete(f"/api/v1/auth/api-keys/{created['id']}", headers=headers).status_code == 204
        assert client.get("/api/v1/auth/me", headers={"X-API-Key": raw_key}).status_code == 401

    def test_revoke_unknown_404(self, admin) -> None:
        client, headers, _uid = admin
        resp = client.delete("/api/v1/auth/api-keys/99999", headers=headers)
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "not_found"


class TestUserManagement:
    def test_non_admin_forbidden(self, admin) -> None:
        client, _headers, _uid = admin
        _, token = make_user(client.app.state.user_store, "plainanalyst", "analyst")
        resp = client.get("/api/v1/auth/users", headers=auth_headers(token))
        assert resp.status_code == 403

    def test_last_admin_guard(self, admin) -> None:
        client, headers, uid = admin
        resp = client.patch(f"/api/v1/auth/users/{uid}", json={"role": "viewer"}, headers=headers)
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "last_admin"

    def test_self_protection(self, admin) -> None:
        client, headers, uid = admin
        resp = client.patch(f"/api/v1/auth/users/{uid}", json={"is_active": False}, headers=headers)
        assert resp.json()["error"]["code"] == "self_deactivation"
        resp = client.delete(f"/api/v1/auth/users/{uid}", headers=headers)
        assert resp.json()["error"]["code"] == "self_deletion"

    def test_create_patch_delete(self, admin) -> None:
        client, headers, _uid = admin
        resp = client.post(
            "/api/v1/auth/users",
            json={"username": "auditor", "password": "longenough1", "role": "viewer"},
            headers=headers,
        )
        assert resp.status_code == 201, resp.text
        user = resp.json()
        assert user["role"] == "viewer" and user["is_active"] is True

        assert "auditor" in [u["username"] for u in client.get("/api/v1/auth/users", headers=headers).json()]

        resp = client.patch(f"/api/v1/auth/users/{user['id']}", json={"role": "analyst"}, headers=headers)
        assert resp.json()["role"] == "analyst"

        resp = client.patch(f"/api/v1/auth/users/{user['id']}", json={}, headers=headers)
        assert resp.json()["error"]["code"] == "no_changes"

        assert client.delete(f"/api/v1/auth/users/{user['id']}", headers=headers).status_code == 204
        resp = client.patch(f"/api/v1/auth/users/{user['id']}", json={"role": "viewer"}, headers=headers)
        assert resp.status_code == 404

    def test_deactivated_user_rejected(self, admin) -> None:
        client, headers, _uid = admin
        user_id, token = make_user(client.app.state.user_store, "leaver", "analyst")
        client.patch(f"/api/v1/auth/users/{user_id}", json={"is_active": False}, headers=headers)
        assert client.get("/api/v1/auth/me", headers=auth_headers(token)).status_code == 401
