"""
tests/integration/conftest.py — Shared app, client and request helpers.

One app per test session (TestingConfig: in-memory SQLite unless
TEST_DATABASE_URL says otherwise, media and staging dirs under pytest's tmp).
Tables are created once; rows are wiped after every test, subscriptions
first because they reference users.

The helpers (register, login, auth_headers, cookie_value,
stored_refresh_token) are plain functions so tests can pass whatever
arguments they need.
"""

from __future__ import annotations

import io

import pytest
from sqlalchemy import text

from vidtube.app import create_app
from vidtube.app.extensions import db as _db


# ═══════════════════════════════════════════════════════════════════════════
# Session-scoped app fixture
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture(scope="session")
def app(tmp_path_factory):
    """Testing app with throwaway media directories; tables created up front."""
    media_dir = tmp_path_factory.mktemp("media")
    staging_dir = tmp_path_factory.mktemp("staging")
    flask_app = create_app("testing", overrides={
        "MEDIA_ROOT": str(media_dir),
        "UPLOAD_STAGING_DIR": str(staging_dir),
    })

    with flask_app.app_context():
        _db.create_all()

    yield flask_app

    with flask_app.app_context():
        _db.drop_all()


# ═══════════════════════════════════════════════════════════════════════════
# Function-scoped test isolation
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture(autouse=True)
def clean_tables(app):
    """Wipes every row after each test."""
    yield  # run the test

    with app.app_context():
        _db.session.rollback()

        with _db.engine.connect() as conn:
            conn.execute(text("DELETE FROM subscriptions"))
            conn.execute(text("DELETE FROM users"))
            conn.commit()


# ═══════════════════════════════════════════════════════════════════════════
# Client fixture
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def client(app):
    """A fresh client, and so an empty cookie jar, per test."""
    return app.test_client()


# ═══════════════════════════════════════════════════════════════════════════
# Shared helper functions (not fixtures)
# ═══════════════════════════════════════════════════════════════════════════

def image_file(name: str = "avatar.png") -> tuple:
    """A small in-memory file suitable for a multipart upload field."""
    return (io.BytesIO(b"\x89PNG\r\n\x1a\nfake-image-bytes"), name)


def register_response(
    client,
    username: str = "alice",
    email: str | None = None,
    password: str = "pw123",
    full_name: str | None = None,
    avatar: bool = True,
    cover: bool = False,
):
    """Posts the multipart registration form and returns the raw response."""
    form = {
        "full_name": full_name or username.title(),
        "username": username,
        "email": email or f"{username}@x.com",
        "password": password,
    }
    if avatar:
        form["avatar"] = image_file("avatar.png")
    if cover:
        form["cover_image"] = image_file("cover.jpg")
    return client.post(
        "/api/v1/users/register",
        data=form,
        content_type="multipart/form-data",
    )


def register(client, username: str = "alice", password: str = "pw123", **kwargs) -> dict:
    """
    Registers a new user and returns the public profile from the response.
    """
    resp = register_response(client, username=username, password=password, **kwargs)
    assert resp.status_code == 201, f"register failed: {resp.get_json()}"
    return resp.get_json()["data"]


def login(client, username: str = "alice", password: str = "pw123") -> dict:
    """Logs in through the API and returns {"user": {...}, "access_token": "...", "refresh_token": "..."}; the client keeps the cookies."""
    resp = client.post(
        "/api/v1/users/login",
        json={"username": username, "password": password},
    )
    assert resp.status_code == 200, f"login failed: {resp.get_json()}"
    return resp.get_json()["data"]


def auth_headers(token: str) -> dict:
    """Bearer header for the given access token."""
    return {"Authorization": f"Bearer {token}"}


def cookie_value(client, name: str) -> str | None:
    cookie = client.get_cookie(name)
    return cookie.value if cookie is not None else None


def stored_refresh_token(app, username: str) -> str | None:
    """Reads users.refresh_token straight from the database."""
    with app.app_context():
        return _db.session.execute(
            text("SELECT refresh_token FROM users WHERE username = :u"),
            {"u": username},
        ).scalar_one()
