"""
routes/users.py — User, session and channel route handlers.

Layer rules:
  - Parse the request (JSON body, multipart form, cookies)
  - Validate with the appropriate schema (raises ValidationError on bad input)
  - Call exactly ONE service function
  - Commit the DB session
  - Return the standard response envelope: {"data": {...}, "warnings": []}

No business logic here. No DB queries.
AppError propagates to the global error handler in app/__init__.py — routes
never catch it.

Endpoints (url_prefix=/api/v1/users):
  POST   /register                 → 201
  POST   /login                    → 200 (+ access/refresh cookies)
  POST   /logout                   → 200 (clears both cookies)
  POST   /refresh-token            → 200 (+ rotated cookies)
  POST   /change-password          → 200
  GET    /current-user             → 200
  PATCH  /update-account           → 200
  PATCH  /avatar                   → 200
  PATCH  /cover-image              → 200
  GET    /c/<username>             → 200
  POST   /c/<username>/subscription → 200
"""

from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify, request

from vidtube.app.errors import ErrorCode, InputError
from vidtube.app.extensions import db, get_media_uploader, get_token_codec
from vidtube.app.middleware.auth_middleware import require_auth
from vidtube.app.schemas.user_schema import (
    ChangePasswordSchema,
    LoginSchema,
    RefreshTokenSchema,
    RegisterSchema,
    UpdateAccountSchema,
)
from vidtube.app.services import account_service, session_service
from vidtube.app.services.media_storage import discard_staged, stage_upload
from vidtube.app.services.token_codec import ACCESS, REFRESH

users_bp = Blueprint("users", __name__)


# ── Request / response helpers ─────────────────────────────────────────────

def _json_body() -> dict:
    return request.get_json(silent=True) or {}


def _staged_file(field: str) -> str | None:
    """Stages the uploaded file under `field`, or returns None if none was sent."""
    file = request.files.get(field)
    if file is None or not file.filename:
        return None
    return stage_upload(file, current_app.config["UPLOAD_STAGING_DIR"])


def _required_file(field: str, code: str = ErrorCode.FILE_REQUIRED) -> str:
    path = _staged_file(field)
    if path is None:
        raise InputError(code, f"The '{field}' file is required.", field=field)
    return path


def _cookie_options() -> dict:
    return {
        "httponly": True,
        "secure": current_app.config["AUTH_COOKIE_SECURE"],
        "samesite": current_app.config["AUTH_COOKIE_SAMESITE"],
        "path": "/",
    }


def _set_session_cookies(response, access_token: str, refresh_token: str):
    codec = get_token_codec()
    options = _cookie_options()
    response.set_cookie(
        current_app.config["ACCESS_COOKIE_NAME"],
        access_token,
        max_age=int(codec.ttl(ACCESS).total_seconds()),
        **options,
    )
    response.set_cookie(
        current_app.config["REFRESH_COOKIE_NAME"],
        refresh_token,
        max_age=int(codec.ttl(REFRESH).total_seconds()),
        **options,
    )
    return response


def _clear_session_cookies(response):
    for name in (
            current_app.config["ACCESS_COOKIE_NAME"],
            current_app.config["REFRESH_COOKIE_NAME"],
    ):
        response.delete_cookie(
            name,
            path="/",
            secure=current_app.config["AUTH_COOKIE_SECURE"],
            samesite=current_app.config["AUTH_COOKIE_SAMESITE"],
        )
    return response


def _ok(data, status: int = 200):
    return jsonify({"data": data, "warnings": []}), status


# ── Session endpoints ──────────────────────────────────────────────────────

@users_bp.route("/register", methods=["POST"])
def register():
    """POST /users/register — Create account from a multipart form. (No auth required.)"""
    data = RegisterSchema().load(request.form.to_dict())
    avatar_path = _staged_file("avatar")
    cover_path = _staged_file("cover_image")
    try:
        result = account_service.register_user(
            full_name=data["full_name"],
            username=data["username"],
            email=data["email"],
            password=data["password"],
            avatar_path=avatar_path,
            cover_path=cover_path,
            uploader=get_media_uploader(),
            session=db.session,
            rounds=current_app.config["BCRYPT_LOG_ROUNDS"],
        )
    finally:
        # The uploader removes what it consumed; drop anything a failed
        # registration left behind.
        discard_staged(avatar_path, cover_path)
    db.session.commit()
    return _ok(result, 201)


@users_bp.route("/login", methods=["POST"])
def login():
    """POST /users/login — Authenticate; return tokens and set cookies. (No auth required.)"""
    data = LoginSchema().load(_json_body())
    tokens = session_service.login(
        password=data["password"],
        username=data.get("username"),
        email=data.get("email"),
        session=db.session,
        codec=get_token_codec(),
    )
    db.session.commit()
    response = jsonify({"data": tokens.to_dict(), "warnings": []})
    return _set_session_cookies(response, tokens.access_token, tokens.refresh_token), 200


@users_bp.route("/logout", methods=["POST"])
@require_auth
def logout():
    """POST /users/logout — Revoke the stored refresh token; clear cookies. (Auth required.)"""
    session_service.logout(user_id=g.current_user.id, session=db.session)
    db.session.commit()
    response = jsonify({"data": {"message": "Logged out successfully."}, "warnings": []})
    return _clear_session_cookies(response), 200


@users_bp.route("/refresh-token", methods=["POST"])
def refresh_token():
    """
    POST /users/refresh-token — Rotate the refresh token; return a new pair.

    The refresh cookie is read first; the JSON body's refresh_token is the
    fallback for clients that do not keep cookies.
    """
    presented = request.cookies.get(current_app.config["REFRESH_COOKIE_NAME"])
    if not presented:
        presented = RefreshTokenSchema().load(_json_body())["refresh_token"]

    tokens = session_service.refresh(
        presented_refresh_token=presented,
        session=db.session,
        codec=get_token_codec(),
    )
    db.session.commit()
    response = jsonify({"data": tokens.to_dict(), "warnings": []})
    return _set_session_cookies(response, tokens.access_token, tokens.refresh_token), 200


@users_bp.route("/change-password", methods=["POST"])
@require_auth
def change_password():
    """POST /users/change-password — Replace the password. (Auth required.)"""
    data = ChangePasswordSchema().load(_json_body())
    session_service.change_password(
        user_id=g.current_user.id,
        old_password=data["old_password"],
        new_password=data["new_password"],
        session=db.session,
        rounds=current_app.config["BCRYPT_LOG_ROUNDS"],
        revoke_sessions=current_app.config["REVOKE_SESSIONS_ON_PASSWORD_CHANGE"],
    )
    db.session.commit()
    return _ok({"message": "Password changed successfully."})


# ── Profile endpoints ──────────────────────────────────────────────────────

@users_bp.route("/current-user", methods=["GET"])
@require_auth
def current_user():
    """GET /users/current-user — Return the authenticated user's profile."""
    result = account_service.get_current_user(
        user_id=g.current_user.id,
        session=db.session,
    )
    return _ok(result)


@users_bp.route("/update-account", methods=["PATCH"])
@require_auth
def update_account():
    """PATCH /users/update-account — Change display name and email."""
    data = UpdateAccountSchema().load(_json_body())
    result = account_service.update_account(
        user_id=g.current_user.id,
        full_name=data["full_name"],
        email=data["email"],
        session=db.session,
    )
    db.session.commit()
    return _ok(result)


@users_bp.route("/avatar", methods=["PATCH"])
@require_auth
def update_avatar():
    """PATCH /users/avatar — Replace the avatar (multipart file 'avatar')."""
    result = account_service.update_avatar(
        user_id=g.current_user.id,
        local_path=_required_file("avatar", ErrorCode.AVATAR_REQUIRED),
        uploader=get_media_uploader(),
        session=db.session,
    )
    db.session.commit()
    return _ok(result)


@users_bp.route("/cover-image", methods=["PATCH"])
@require_auth
def update_cover_image():
    """PATCH /users/cover-image — Replace the cover image (multipart file 'cover_image')."""
    result = account_service.update_cover_image(
        user_id=g.current_user.id,
        local_path=_required_file("cover_image"),
        uploader=get_media_uploader(),
        session=db.session,
    )
    db.session.commit()
    return _ok(result)


# ── Channel endpoints ──────────────────────────────────────────────────────

@users_bp.route("/c/<string:username>", methods=["GET"])
@require_auth
def channel_profile(username: str):
    """GET /users/c/<username> — Channel profile with subscriber counts."""
    result = account_service.get_channel_profile(
        username=username,
        viewer_id=g.current_user.id,
        session=db.session,
    )
    return _ok(result)


@users_bp.route("/c/<string:username>/subscription", methods=["POST"])
@require_auth
def toggle_subscription(username: str):
    """POST /users/c/<username>/subscription — Subscribe or unsubscribe."""
    result = account_service.toggle_subscription(
        subscriber_id=g.current_user.id,
        channel_username=username,
        session=db.session,
    )
    db.session.commit()
    return _ok(result)
