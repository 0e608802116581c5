"""
tests/integration/test_sessions.py — HTTP tests for the session lifecycle.

Endpoints covered (url_prefix=/api/v1/users):
  POST /login            → 200 + accessToken/refreshToken cookies
  POST /refresh-token    → 200 + rotated cookies
  POST /logout           → 200, cookies cleared, stored token NULL
  POST /change-password  → 200
  GET  /current-user     → 200

Every 401 must look the same on the wire: {"code": "UNAUTHORIZED",
"message": "Authentication failed."}, whatever check failed internally.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from vidtube.app.extensions import TOKEN_CODEC_KEY
from vidtube.app.services.token_codec import ACCESS, REFRESH

from .conftest import (
    auth_headers,
    cookie_value,
    login,
    register,
    stored_refresh_token,
)

GENERIC_401 = {"code": "UNAUTHORIZED", "message": "Authentication failed."}


def _assert_generic_401(resp):
    assert resp.status_code == 401
    assert resp.get_json() == {"error": GENERIC_401}


# ═══════════════════════════════════════════════════════════════════════════
# End-to-end scenario
# ═══════════════════════════════════════════════════════════════════════════

class TestSessionScenario:

    def test_register_login_current_user_refresh_and_replay(self, app, client):
        profile = register(client, "alice", email="alice@x.com", password="pw123")
        assert profile["username"] == "alice"

        resp = client.post("/api/v1/users/login", json={
            "username": "alice", "password": "pw123",
        })
        assert resp.status_code == 200
        original_access = cookie_value(client, "accessToken")
        original_refresh = cookie_value(client, "refreshToken")
        assert original_access and original_refresh

        # The access cookie alone authenticates the request.
        resp = client.get("/api/v1/users/current-user")
        assert resp.status_code == 200
        user = resp.get_json()["data"]
        assert user["username"] == "alice"
        assert user["email"] == "alice@x.com"
        assert "password" not in user
        assert "password_hash" not in user
        assert "refresh_token" not in user

        resp = client.post("/api/v1/users/refresh-token")
        assert resp.status_code == 200
        new_access = cookie_value(client, "accessToken")
        new_refresh = cookie_value(client, "refreshToken")
        assert new_access != original_access
        assert new_refresh != original_refresh
        assert stored_refresh_token(app, "alice") == new_refresh

        # Replaying the superseded refresh cookie fails.
        client.set_cookie("refreshToken", original_refresh)
        _assert_generic_401(client.post("/api/v1/users/refresh-token"))

    def test_login_then_authenticate_yields_same_user_id(self, client):
        user_id = register(client, "bob")["id"]
        data = login(client, "bob")

        fresh = client.application.test_client()
        resp = fresh.get("/api/v1/users/current-user", headers=auth_headers(data["access_token"]))
        assert resp.status_code == 200
        assert resp.get_json()["data"]["id"] == user_id


# ═══════════════════════════════════════════════════════════════════════════
# POST /login
# ═══════════════════════════════════════════════════════════════════════════

class TestLogin:

    def test_login_returns_tokens_and_sets_http_only_secure_cookies(self, client):
        register(client, "alice")
        resp = client.post("/api/v1/users/login", json={
            "username": "alice", "password": "pw123",
        })
        assert resp.status_code == 200
        data = resp.get_json()["data"]
        assert data["user"]["username"] == "alice"
        assert "password_hash" not in data["user"]

        set_cookies = resp.headers.getlist("Set-Cookie")
        assert len(set_cookies) == 2
        for header in set_cookies:
            assert "HttpOnly" in header
            assert "Secure" in header
        assert cookie_value(client, "accessToken") == data["access_token"]
        assert cookie_value(client, "refreshToken") == data["refresh_token"]

    def test_login_by_email_alone(self, client):
        register(client, "alice", email="alice@x.com")
        resp = client.post("/api/v1/users/login", json={
            "email": "alice@x.com", "password": "pw123",
        })
        assert resp.status_code == 200

    def test_login_with_matching_username_and_email(self, client):
        register(client, "alice", email="alice@x.com")
        resp = client.post("/api/v1/users/login", json={
            "username": "alice", "email": "alice@x.com", "password": "pw123",
        })
        assert resp.status_code == 200

    def test_login_with_username_and_email_of_different_users_is_rejected(self, client):
        """Ambiguous identifier: both given but they name different users."""
        register(client, "alice", email="alice@x.com")
        register(client, "bob", email="bob@x.com")
        resp = client.post("/api/v1/users/login", json={
            "username": "alice", "email": "bob@x.com", "password": "pw123",
        })
        _assert_generic_401(resp)

    def test_username_is_case_insensitive(self, client):
        register(client, "alice")
        resp = client.post("/api/v1/users/login", json={
            "username": "ALICE", "password": "pw123",
        })
        assert resp.status_code == 200

    def test_wrong_password_returns_generic_401_and_leaves_token_null(self, app, client):
        register(client, "alice")
        resp = client.post("/api/v1/users/login", json={
            "username": "alice", "password": "wrong",
        })
        _assert_generic_401(resp)
        assert stored_refresh_token(app, "alice") is None
        assert resp.headers.getlist("Set-Cookie") == []

    def test_wrong_password_keeps_existing_session_token(self, app, client):
        register(client, "alice")
        data = login(client, "alice")
        client.post("/api/v1/users/login", json={"username": "alice", "password": "nope"})
        assert stored_refresh_token(app, "alice") == data["refresh_token"]

    def test_password_over_72_bytes_returns_generic_401(self, app, client):
        register(client, "alice")
        resp = client.post("/api/v1/users/login", json={
            "username": "alice", "password": "p" * 80,
        })
        _assert_generic_401(resp)
        assert stored_refresh_token(app, "alice") is None

    def test_unknown_user_is_indistinguishable_from_wrong_password(self, client):
        register(client, "alice")
        unknown = client.post("/api/v1/users/login", json={
            "username": "ghost", "password": "pw123",
        })
        wrong = client.post("/api/v1/users/login", json={
            "username": "alice", "password": "bad",
        })
        assert unknown.status_code == wrong.status_code == 401
        assert unknown.get_json() == wrong.get_json()

    def test_missing_identifier_returns_400(self, client):
        resp = client.post("/api/v1/users/login", json={"password": "pw123"})
        assert resp.status_code == 400
        assert resp.get_json()["error"]["code"] == "MISSING_FIELD"

    def test_missing_password_returns_400(self, client):
        resp = client.post("/api/v1/users/login", json={"username": "alice"})
        assert resp.status_code == 400
        assert resp.get_json()["error"]["code"] == "MISSING_FIELD"

    def test_second_login_supersedes_first_session(self, app, client):
        register(client, "alice")
        first = login(client, "alice")
        second = login(client, "alice")
        assert stored_refresh_token(app, "alice") == second["refresh_token"]

        other = app.test_client()
        resp = other.post("/api/v1/users/refresh-token", json={
            "refresh_token": first["refresh_token"],
        })
        _assert_generic_401(resp)


# ═══════════════════════════════════════════════════════════════════════════
# POST /refresh-token
# ═══════════════════════════════════════════════════════════════════════════

class TestRefresh:

    def test_refresh_with_body_token(self, app, client):
        register(client, "alice")
        data = login(client, "alice")

        other = app.test_client()  # no cookies
        resp = other.post("/api/v1/users/refresh-token", json={
            "refresh_token": data["refresh_token"],
        })
        assert resp.status_code == 200
        body = resp.get_json()["data"]
        assert body["refresh_token"] != data["refresh_token"]
        assert cookie_value(other, "refreshToken") == body["refresh_token"]

    def test_refresh_cookie_takes_precedence_over_body(self, client):
        register(client, "alice")
        login(client, "alice")
        resp = client.post("/api/v1/users/refresh-token", json={"refresh_token": "garbage"})
        assert resp.status_code == 200

    def test_refresh_token_is_single_use(self, app, client):
        register(client, "alice")
        data = login(client, "alice")
        other = app.test_client()
        payload = {"refresh_token": data["refresh_token"]}

        assert other.post("/api/v1/users/refresh-token", json=payload).status_code == 200
        _assert_generic_401(
            app.test_client().post("/api/v1/users/refresh-token", json=payload)
        )

    def test_missing_refresh_token_returns_400(self, client):
        resp = client.post("/api/v1/users/refresh-token", json={})
        assert resp.status_code == 400
        assert resp.get_json()["error"]["code"] == "MISSING_FIELD"

    def test_blank_refresh_token_returns_400(self, client):
        resp = client.post("/api/v1/users/refresh-token", json={"refresh_token": ""})
        assert resp.status_code == 400
        error = resp.get_json()["error"]
        assert error["code"] == "MISSING_FIELD"
        assert error["field"] == "refresh_token"

    def test_garbage_refresh_token_returns_401(self, client):
        resp = client.post("/api/v1/users/refresh-token", json={"refresh_token": "not-a-jwt"})
        _assert_generic_401(resp)

    def test_access_token_cannot_be_used_as_refresh_token(self, app, client):
        register(client, "alice")
        data = login(client, "alice")
        resp = app.test_client().post("/api/v1/users/refresh-token", json={
            "refresh_token": data["access_token"],
        })
        _assert_generic_401(resp)

    def test_expired_refresh_token_returns_401(self, app, client):
        user_id = register(client, "alice")["id"]
        login(client, "alice")
        codec = app.extensions[TOKEN_CODEC_KEY]
        expired = codec.issue(
            REFRESH, user_id,
            issued_at=datetime.now(timezone.utc) - codec.ttl(REFRESH) - timedelta(minutes=1),
        )
        resp = app.test_client().post("/api/v1/users/refresh-token", json={
            "refresh_token": expired,
        })
        _assert_generic_401(resp)


# ═══════════════════════════════════════════════════════════════════════════
# POST /logout
# ═══════════════════════════════════════════════════════════════════════════

class TestLogout:

    def test_logout_clears_cookies_and_stored_token(self, app, client):
        register(client, "alice")
        data = login(client, "alice")

        resp = client.post("/api/v1/users/logout")
        assert resp.status_code == 200
        assert "message" in resp.get_json()["data"]
        assert cookie_value(client, "accessToken") is None
        assert cookie_value(client, "refreshToken") is None
        assert stored_refresh_token(app, "alice") is None

        resp = app.test_client().post("/api/v1/users/refresh-token", json={
            "refresh_token": data["refresh_token"],
        })
        _assert_generic_401(resp)

    def test_logout_is_idempotent(self, app, client):
        register(client, "alice")
        data = login(client, "alice")
        headers = auth_headers(data["access_token"])
        other = app.test_client()

        assert other.post("/api/v1/users/logout", headers=headers).status_code == 200
        # Access tokens outlive logout; the second logout is a no-op success.
        assert other.post("/api/v1/users/logout", headers=headers).status_code == 200

    def test_access_token_still_valid_after_logout(self, app, client):
        register(client, "alice")
        data = login(client, "alice")
        other = app.test_client()
        other.post("/api/v1/users/logout", headers=auth_headers(data["access_token"]))

        resp = other.get("/api/v1/users/current-user", headers=auth_headers(data["access_token"]))
        assert resp.status_code == 200

    def test_logout_requires_auth(self, client):
        _assert_generic_401(client.post("/api/v1/users/logout"))


# ═══════════════════════════════════════════════════════════════════════════
# Authentication gate (GET /current-user)
# ═══════════════════════════════════════════════════════════════════════════

class TestAuthenticationGate:

    def test_header_path_authenticates(self, app, client):
        register(client, "alice")
        data = login(client, "alice")
        resp = app.test_client().get(
            "/api/v1/users/current-user",
            headers=auth_headers(data["access_token"]),
        )
        assert resp.status_code == 200
        assert resp.get_json()["data"]["username"] == "alice"

    def test_cookie_path_authenticates(self, client):
        register(client, "alice")
        login(client, "alice")
        assert client.get("/api/v1/users/current-user").status_code == 200

    def test_cookie_wins_over_header(self, client):
        register(client, "alice")
        register(client, "bob")
        bob = login(client, "bob")
        login(client, "alice")  # jar now holds alice's cookies

        resp = client.get("/api/v1/users/current-user", headers=auth_headers(bob["access_token"]))
        assert resp.get_json()["data"]["username"] == "alice"

    def test_missing_token_returns_401(self, client):
        _assert_generic_401(client.get("/api/v1/users/current-user"))

    def test_malformed_bearer_header_returns_401(self, client):
        resp = client.get("/api/v1/users/current-user", headers={"Authorization": "Token abc"})
        _assert_generic_401(resp)

    def test_tampered_token_returns_401(self, client):
        resp = client.get("/api/v1/users/current-user", headers=auth_headers("bad.token.here"))
        _assert_generic_401(resp)

    def test_expired_access_token_with_valid_signature_is_rejected(self, app, client):
        user_id = register(client, "alice")["id"]
        codec = app.extensions[TOKEN_CODEC_KEY]
        expired = codec.issue(
            ACCESS, user_id,
            issued_at=datetime.now(timezone.utc) - codec.ttl(ACCESS) - timedelta(seconds=30),
        )
        resp = client.get("/api/v1/users/current-user", headers=auth_headers(expired))
        _assert_generic_401(resp)

    def test_refresh_token_is_not_accepted_as_access_token(self, app, client):
        register(client, "alice")
        data = login(client, "alice")
        resp = app.test_client().get(
            "/api/v1/users/current-user",
            headers=auth_headers(data["refresh_token"]),
        )
        _assert_generic_401(resp)

    def test_token_for_deleted_user_returns_401(self, app, client):
        codec = app.extensions[TOKEN_CODEC_KEY]
        token = codec.issue(ACCESS, 987654)
        resp = client.get("/api/v1/users/current-user", headers=auth_headers(token))
        _assert_generic_401(resp)


# ═══════════════════════════════════════════════════════════════════════════
# POST /change-password
# ═══════════════════════════════════════════════════════════════════════════

class TestChangePassword:

    def test_change_password_then_login_with_new_one(self, client):
        register(client, "alice")
        login(client, "alice")
        resp = client.post("/api/v1/users/change-password", json={
            "old_password": "pw123", "new_password": "n3w-secret",
        })
        assert resp.status_code == 200

        app_client = client.application.test_client()
        assert app_client.post("/api/v1/users/login", json={
            "username": "alice", "password": "pw123",
        }).status_code == 401
        assert app_client.post("/api/v1/users/login", json={
            "username": "alice", "password": "n3w-secret",
        }).status_code == 200

    def test_wrong_old_password_returns_401(self, client):
        register(client, "alice")
        login(client, "alice")
        resp = client.post("/api/v1/users/change-password", json={
            "old_password": "nope", "new_password": "whatever",
        })
        _assert_generic_401(resp)

    def test_old_password_over_72_bytes_returns_401(self, client):
        register(client, "alice")
        login(client, "alice")
        resp = client.post("/api/v1/users/change-password", json={
            "old_password": "p" * 80, "new_password": "whatever",
        })
        _assert_generic_401(resp)

    def test_new_password_over_72_bytes_returns_400_and_keeps_old(self, client):
        register(client, "alice")
        login(client, "alice")
        resp = client.post("/api/v1/users/change-password", json={
            "old_password": "pw123", "new_password": "p" * 80,
        })
        assert resp.status_code == 400
        error = resp.get_json()["error"]
        assert error["code"] == "INVALID_FIELD"
        assert error["field"] == "new_password"

        assert client.application.test_client().post("/api/v1/users/login", json={
            "username": "alice", "password": "pw123",
        }).status_code == 200

    def test_change_password_keeps_refresh_token_by_default(self, app, client):
        register(client, "alice")
        data = login(client, "alice")
        client.post("/api/v1/users/change-password", json={
            "old_password": "pw123", "new_password": "other",
        })
        assert stored_refresh_token(app, "alice") == data["refresh_token"]

    @pytest.mark.parametrize("payload", [
        {},
        {"old_password": "pw123"},
        {"old_password": "pw123", "new_password": "   "},
    ])
    def test_missing_fields_return_400(self, client, payload):
        register(client, "alice")
        login(client, "alice")
        resp = client.post("/api/v1/users/change-password", json=payload)
        assert resp.status_code == 400
        assert resp.get_json()["error"]["code"] == "MISSING_FIELD"

    def test_requires_auth(self, client):
        resp = client.post("/api/v1/users/change-password", json={
            "old_password": "a", "new_password": "b",
        })
        _assert_generic_401(resp)
