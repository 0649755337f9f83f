"""
tests/test_api_auth.py -- Integration tests for the /api/v1/auth routes.

These tests exercise the full stack: FastAPI routing -> dependency injection
-> AuthService -> TokenLifecycleManager/stores -> exception handlers ->
response model serialization.

Coverage:
  - Health: GET /health returns 200 without auth
  - Register: 201 happy path, 409 duplicate, 422 on mismatched passwords
  - Login: 200 with token pair, refresh cookie and no-store; 401 bad_credentials
  - Refresh: body and cookie transport, 401 token_reuse on replay,
    401 refresh_token_required with neither
  - Logout: revokes the refresh token and clears the cookie
  - /me: 200 with Bearer token, 401 unauthorized / token_malformed otherwise
  - Role guard: 403 for USER, 200 for ADMIN and SUPER_ADMIN, 404 unknown role
  - Token kinds: a refresh token is not a Bearer credential, even after
    logout; an access token cannot be used to refresh
  - Lifetimes: expires_in and the cookie Max-Age follow the service TTLs

Fixtures used (from conftest.py):
  - api_client: (client, service) -- TestClient over the real app and the
    AuthService wired into app.state, on a per-module shared-memory database
"""

from __future__ import annotations

import re
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from auth.service import AuthService

Client = tuple[TestClient, AuthService]


def _register(client: TestClient, username: str, password: str = "pw123456") -> dict:
    resp = client.post(
        "/api/v1/auth/register",
        json={
            "name": username.title(),
            "username": username,
            "email": f"{username}@example.com",
            "password": password,
            "confirm_password": password,
        },
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


def _login(client: TestClient, login: str, password: str = "pw123456") -> dict:
    resp = client.post("/api/v1/auth/login", json={"login": login, "password": password})
    assert resp.status_code == 200, resp.text
    return resp.json()


def _bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


class TestHealth:
    def test_health(self, api_client: Client) -> None:
        client, _service = api_client
        resp = client.get("/api/v1/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"


class TestRegister:
    def test_register(self, api_client: Client) -> None:
        client, _service = api_client
        body = _register(client, "reg_alice")
        assert body["username"] == "reg_alice"
        assert body["email"] == "reg_alice@example.com"
        assert body["role"] == "USER"
        assert "credential_hash" not in body

    def test_register_duplicate(self, api_client: Client) -> None:
        client, _service = api_client
        _register(client, "reg_dup")
        resp = client.post(
            "/api/v1/auth/register",
            json={
                "name": "Dup",
                "username": "reg_dup",
                "email": "fresh@example.com",
                "password": "pw",
                "confirm_password": "pw",
            },
        )
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "handle_taken"

    def test_register_password_mismatch(self, api_client: Client) -> None:
        client, _service = api_client
        resp = client.post(
            "/api/v1/auth/register",
            json={
                "name": "Mis",
                "username": "reg_mismatch",
                "email": "mis@example.com",
                "password": "one",
                "confirm_password": "two",
            },
        )
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "validation_error"

    @pytest.mark.parametrize("username", ["ab", "has space", "x" * 33])
    def test_register_bad_username(self, api_client: Client, username: str) -> None:
        client, _service = api_client
        resp = client.post(
            "/api/v1/auth/register",
            json={
                "name": "Bad",
                "username": username,
                "email": "bad@example.com",
                "password": "pw",
                "confirm_password": "pw",
            },
        )
        assert resp.status_code == 422


class TestLogin:
    def test_login_by_username_and_email(self, api_client: Client) -> None:
        client, _service = api_client
        _register(client, "login_bob")
        by_name = client.post("/api/v1/auth/login", json={"login": "login_bob", "password": "pw123456"})
        assert by_name.status_code == 200
        assert by_name.headers["cache-control"] == "no-store"
        assert "refresh_token=" in by_name.headers["set-cookie"]
        assert "httponly" in by_name.headers["set-cookie"].lower()
        body = by_name.json()
        assert body["token_type"] == "bearer"
        assert body["expires_in"] == 15 * 60

        by_email = _login(client, "LOGIN_BOB@example.com")
        assert by_email["refresh_token"] != body["refresh_token"]

    def test_login_wrong_password(self, api_client: Client) -> None:
        client, _service = api_client
        _register(client, "login_carol")
        resp = client.post("/api/v1/auth/login", json={"login": "login_carol", "password": "wrong"})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "bad_credentials"
        assert resp.headers["www-authenticate"] == "Bearer"

    def test_login_unknown_user(self, api_client: Client) -> None:
        client, _service = api_client
        resp = client.post("/api/v1/auth/login", json={"login": "ghost_user", "password": "pw"})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "bad_credentials"


class TestRefresh:
    def test_refresh_rotates_and_rejects_replay(self, api_client: Client) -> None:
        client, _service = api_client
        _register(client, "ref_dave")
        first = _login(client, "ref_dave")

        resp = client.post("/api/v1/auth/refresh", json={"refresh_token": first["refresh_token"]})
        assert resp.status_code == 200
        second = resp.json()
        assert second["refresh_token"] != first["refresh_token"]

        replay = client.post("/api/v1/auth/refresh", json={"refresh_token": first["refresh_token"]})
        assert replay.status_code == 401
        assert replay.json()["error"]["code"] == "token_reuse"

    def test_refresh_from_cookie(self, api_client: Client) -> None:
        client, _service = api_client
        _register(client, "ref_erin")
        pair = _login(client, "ref_erin")
        client.cookies.clear()
        resp = client.post("/api/v1/auth/refresh", headers={"Cookie": f"refresh_token={pair['refresh_token']}"})
        assert resp.status_code == 200
        assert resp.json()["refresh_token"] != pair["refresh_token"]

    def test_refresh_without_token(self, api_client: Client) -> None:
        client, _service = api_client
        client.cookies.clear()
        resp = client.post("/api/v1/auth/refresh")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "refresh_token_required"

    def test_refresh_garbage(self, api_client: Client) -> None:
        client, _service = api_client
        resp = client.post("/api/v1/auth/refresh", json={"refresh_token": "garbage"})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "token_malformed"


class TestLogout:
    def test_logout_revokes(self, api_client: Client) -> None:
        client, _service = api_client
        _register(client, "out_frank")
        pair = _login(client, "out_frank")

        resp = client.post("/api/v1/auth/logout", json={"refresh_token": pair["refresh_token"]})
        assert resp.status_code == 200
        assert 'refresh_token=""' in resp.headers["set-cookie"] or "Max-Age=0" in resp.headers["set-cookie"]

        again = client.post("/api/v1/auth/refresh", json={"refresh_token": pair["refresh_token"]})
        assert again.status_code == 401
        assert again.json()["error"]["code"] == "token_reuse"


class TestMe:
    def test_me(self, api_client: Client) -> None:
        client, _service = api_client
        _register(client, "me_grace")
        pair = _login(client, "me_grace")
        resp = client.get("/api/v1/auth/me", headers=_bearer(pair["access_token"]))
        assert resp.status_code == 200
        assert resp.json()["username"] == "me_grace"

    def test_me_without_token(self, api_client: Client) -> None:
        client, _service = api_client
        resp = client.get("/api/v1/auth/me")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "unauthorized"
        assert resp.headers["www-authenticate"] == "Bearer"

    def test_me_with_garbage_token(self, api_client: Client) -> None:
        client, _service = api_client
        resp = client.get("/api/v1/auth/me", headers=_bearer("not.a.jwt"))
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "token_malformed"


class TestRoleGuard:
    def test_user_is_forbidden(self, api_client: Client) -> None:
        client, _service = api_client
        _register(client, "guard_user")
        pair = _login(client, "guard_user")
        resp = client.get("/api/v1/auth/roles/USER/ancestry", headers=_bearer(pair["access_token"]))
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "forbidden"

    @pytest.mark.parametrize("role", ["ADMIN", "SUPER_ADMIN"])
    def test_admin_and_above_pass(self, api_client: Client, role: str) -> None:
        client, service = api_client
        username = f"guard_{role.lower()}"
        service.register(name=role, username=username, email=f"{username}@example.com", password="pw123456", role=role)
        pair = _login(client, username)
        resp = client.get("/api/v1/auth/roles/SUPER_ADMIN/ancestry", headers=_bearer(pair["access_token"]))
        assert resp.status_code == 200
        assert resp.json() == {"role": "SUPER_ADMIN", "chain": ["SUPER_ADMIN", "ADMIN", "MODERATOR", "USER"]}

    def test_unknown_role_is_404(self, api_client: Client) -> None:
        client, service = api_client
        service.register(name="Ops", username="guard_ops", email="ops@example.com", password="pw123456", role="ADMIN")
        pair = _login(client, "guard_ops")
        resp = client.get("/api/v1/auth/roles/PHARAOH/ancestry", headers=_bearer(pair["access_token"]))
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "role_not_found"


class TestTokenKinds:
    def test_refresh_token_rejected_as_bearer(self, api_client: Client) -> None:
        client, _service = api_client
        _register(client, "kind_heidi")
        pair = _login(client, "kind_heidi")

        resp = client.get("/api/v1/auth/me", headers=_bearer(pair["refresh_token"]))
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "token_malformed"

        client.post("/api/v1/auth/logout", json={"refresh_token": pair["refresh_token"]})
        after = client.get("/api/v1/auth/me", headers=_bearer(pair["refresh_token"]))
        assert after.status_code == 401

    def test_refresh_token_cannot_pass_role_guard(self, api_client: Client) -> None:
        client, service = api_client
        service.register(name="Ivan", username="kind_ivan", email="ivan@example.com", password="pw123456", role="ADMIN")
        pair = _login(client, "kind_ivan")
        resp = client.get("/api/v1/auth/roles/USER/ancestry", headers=_bearer(pair["refresh_token"]))
        assert resp.status_code == 401

    def test_access_token_cannot_refresh(self, api_client: Client) -> None:
        client, _service = api_client
        _register(client, "kind_judy")
        pair = _login(client, "kind_judy")
        resp = client.post("/api/v1/auth/refresh", json={"refresh_token": pair["access_token"]})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "token_malformed"


class TestLifetimes:
    def test_lifetimes_follow_service_ttls(self, api_client: Client, monkeypatch) -> None:
        client, service = api_client
        monkeypatch.setattr(service.lifecycle, "access_ttl", timedelta(minutes=5))
        monkeypatch.setattr(service.lifecycle, "refresh_ttl", timedelta(days=1))
        _register(client, "ttl_kim")

        resp = client.post("/api/v1/auth/login", json={"login": "ttl_kim", "password": "pw123456"})
        assert resp.status_code == 200
        assert abs(resp.json()["expires_in"] - 5 * 60) <= 1
        max_age = re.search(r"Max-Age=(\d+)", resp.headers["set-cookie"])
        assert max_age is not None
        assert abs(int(max_age.group(1)) - 24 * 60 * 60) <= 1
