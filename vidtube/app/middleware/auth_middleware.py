"""
middleware/auth_middleware.py — Access-token authentication decorator.

The @require_auth decorator:
  1. Reads the access token: the access cookie first, then an
     "Authorization: Bearer <token>" header
  2. Verifies signature, kind and expiry through the app's TokenCodec
  3. Loads the user the token names, without password hash or refresh token
  4. Attaches that Principal to flask.g.current_user for the request
  5. Raises AuthError (401) if any step fails

Strict responsibility boundary:
  - Authentication only. Nothing here decides what a principal may do.
  - Raw token claims are never attached to the request; downstream code sees
    the Principal loaded from the store.

Internal failure codes (all sent to the client as the same 401):
  TOKEN_MISSING   — no cookie and no Authorization header
  TOKEN_MALFORMED — header not "Bearer <token>", or token unparseable
  TOKEN_INVALID   — bad signature, or a refresh token used as access token
  TOKEN_EXPIRED   — valid signature, exp in the past
  USER_NOT_FOUND  — the token's user has been deleted
"""

from __future__ import annotations

import functools
from typing import Callable, Mapping

from flask import current_app, g, request

from vidtube.app.errors import AuthError, ErrorCode
from vidtube.app.extensions import db, get_token_codec
from vidtube.app.services import credential_store
from vidtube.app.services.token_codec import ACCESS


def require_auth(f: Callable) -> Callable:
    """
    Route decorator that enforces access-token authentication.

    Usage:
        @users_bp.route("/current-user")
        @require_auth
        def current_user():
            principal = g.current_user  # credential_store.Principal
            ...
    """
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        _authenticate_request()
        return f(*args, **kwargs)

    return decorated


def extract_access_token(
        cookies: Mapping[str, str],
        headers: Mapping[str, str],
        cookie_name: str,
) -> str | None:
    """
    Returns the raw access token from the request, or None if absent.

    The cookie wins when both sources are present. A present but malformed
    Authorization header raises AuthError(TOKEN_MALFORMED).
    """
    cookie_token = cookies.get(cookie_name)
    if cookie_token:
        return cookie_token

    auth_header = headers.get("Authorization", "")
    if not auth_header:
        return None

    parts = auth_header.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise AuthError(
            ErrorCode.TOKEN_MALFORMED,
            "Authorization header must be in the format: Bearer <token>.",
        )
    return parts[1]


def _authenticate_request() -> None:
    """
    Performs the full authentication sequence and sets flask.g.current_user.

    Separated from the decorator wrapper so it can be called directly in tests
    without wrapping a real view function.
    """
    raw_token = extract_access_token(
        request.cookies,
        request.headers,
        current_app.config["ACCESS_COOKIE_NAME"],
    )
    if not raw_token:
        raise AuthError(
            ErrorCode.TOKEN_MISSING,
            "Authentication required. Send the access cookie or a Bearer token.",
        )

    verified = get_token_codec().verify(raw_token, ACCESS)

    user = credential_store.find_by_id(verified.principal_id, db.session)
    if user is None:
        raise AuthError(
            ErrorCode.USER_NOT_FOUND,
            f"User {verified.principal_id} from the access token no longer exists.",
        )

    g.current_user = credential_store.to_principal(user)
