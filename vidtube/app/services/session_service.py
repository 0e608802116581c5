"""
services/session_service.py — Login, refresh, logout and password change.

Responsibilities:
  - Credential check at login (username or email, plus password)
  - Issuing access + refresh token pairs through the TokenCodec
  - Keeping users.refresh_token equal to the most recently issued refresh
    token, or NULL after logout (one live session per user)
  - Refresh rotation with replay detection

Layer rules:
  - No Flask imports. Callers pass the SQLAlchemy session and the codec.
  - Commits are the route's responsibility — only flush here.
  - Every token and hash is computed before the single persisting write, so
    an aborted request never leaves the stored token cleared without the
    client having received its replacement.

State per user (implicit in users.refresh_token):
  anonymous (NULL) → authenticated (R1) → rotated (R2, R1 now stale)
  → logged out (NULL). Login from any state overwrites the stored token.

Access tokens have no server-side revocation: logout does not end them early.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.orm import Session

from vidtube.app.errors import AuthError, ErrorCode
from vidtube.app.models.user import User
from vidtube.app.services import credential_store
from vidtube.app.services.passwords import hash_password, verify_password
from vidtube.app.services.token_codec import ACCESS, REFRESH, TokenCodec

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionTokens:
    user: dict
    access_token: str
    refresh_token: str

    def to_dict(self) -> dict:
        return {
            "user": self.user,
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
        }


# ── Private helpers ────────────────────────────────────────────────────────

def _access_claims(user: User) -> dict:
    return {
        "username": user.username,
        "email": user.email,
        "full_name": user.full_name,
        "role": user.role,
    }


def _issue_pair(user: User, codec: TokenCodec) -> tuple[str, str]:
    return (
        codec.issue(ACCESS, user.id, _access_claims(user)),
        codec.issue(REFRESH, user.id),
    )


# ── Public service functions ───────────────────────────────────────────────

def login(
        password: str,
        session: Session,
        codec: TokenCodec,
        username: str | None = None,
        email: str | None = None,
) -> SessionTokens:
    """
    Validates credentials and starts a new session.

    Either `username` or `email` identifies the user; if both are given they
    must belong to the same user. The new refresh token replaces whatever was
    stored, which ends any previous session.

    Raises:
      AuthError(USER_NOT_FOUND)      — no user matches the identifier
      AuthError(INVALID_CREDENTIALS) — password does not match (including a
                                       password longer than bcrypt accepts)
    Both leave the server as the same generic 401.
    """
    user = credential_store.find_by_username_or_email(
        session, username=username, email=email,
    )
    if user is None:
        logger.info("Login rejected: no user for the supplied identifier")
        raise AuthError(ErrorCode.USER_NOT_FOUND, "No user matches the supplied identifier.")

    password_hash = credential_store.get_password_hash(user.id, session)
    if password_hash is None or not verify_password(password, password_hash):
        logger.info("Login rejected for user %s: wrong password", user.id)
        raise AuthError(ErrorCode.INVALID_CREDENTIALS, "The password is incorrect.")

    access_token, refresh_token = _issue_pair(user, codec)
    credential_store.update_refresh_token(user.id, refresh_token, session)

    logger.info("User %s logged in", user.id)
    return SessionTokens(
        user=credential_store.to_public_dict(user),
        access_token=access_token,
        refresh_token=refresh_token,
    )


def refresh(
        presented_refresh_token: str | None,
        session: Session,
        codec: TokenCodec,
) -> SessionTokens:
    """
    Exchanges a refresh token for a new access + refresh pair.

    The presented token must verify AND equal the stored one. On success the
    stored value is rotated with a conditional update, so the presented token
    can never be used again.

    Raises:
      AuthError(TOKEN_MISSING)                              — nothing presented
      AuthError(TOKEN_MALFORMED/TOKEN_INVALID/TOKEN_EXPIRED) — codec rejected it
      AuthError(USER_NOT_FOUND)                             — subject is gone
      AuthError(TOKEN_STALE) — superseded, logged out, or a concurrent refresh won
    """
    if not presented_refresh_token:
        raise AuthError(ErrorCode.TOKEN_MISSING, "A refresh token is required.")

    verified = codec.verify(presented_refresh_token, REFRESH)

    user = credential_store.find_by_id(verified.principal_id, session)
    if user is None:
        raise AuthError(ErrorCode.USER_NOT_FOUND, "The token subject no longer exists.")

    stored = credential_store.get_refresh_token(user.id, session)
    if stored is None or stored != presented_refresh_token:
        logger.warning("Refresh rejected for user %s: stale refresh token presented", user.id)
        raise AuthError(ErrorCode.TOKEN_STALE, "The refresh token has been superseded or revoked.")

    access_token, refresh_token = _issue_pair(user, codec)

    rotated = credential_store.rotate_refresh_token(
        user.id,
        expected=presented_refresh_token,
        new_token=refresh_token,
        session=session,
    )
    if not rotated:
        logger.warning("Refresh rejected for user %s: lost a concurrent rotation", user.id)
        raise AuthError(ErrorCode.TOKEN_STALE, "The refresh token has been superseded or revoked.")

    logger.info("Rotated refresh token for user %s", user.id)
    return SessionTokens(
        user=credential_store.to_public_dict(user),
        access_token=access_token,
        refresh_token=refresh_token,
    )


def logout(user_id: int, session: Session) -> None:
    """
    Clears the stored refresh token. Idempotent: logging out twice is fine.
    Outstanding access tokens stay valid until they expire.
    """
    credential_store.update_refresh_token(user_id, None, session)
    logger.info("User %s logged out", user_id)


def change_password(
        user_id: int,
        old_password: str,
        new_password: str,
        session: Session,
        rounds: int = 12,
        revoke_sessions: bool = False,
) -> None:
    """
    Replaces the password hash after checking the old password.

    The stored refresh token is left alone unless `revoke_sessions` is set
    (config REVOKE_SESSIONS_ON_PASSWORD_CHANGE). Access tokens are never
    revoked.

    Raises:
      AuthError(INVALID_CREDENTIALS) — old password wrong; nothing is written
      AuthError(USER_NOT_FOUND)      — user vanished mid-session
    """
    current_hash = credential_store.get_password_hash(user_id, session)
    if current_hash is None:
        raise AuthError(ErrorCode.USER_NOT_FOUND, "The user no longer exists.")

    if not verify_password(old_password, current_hash):
        logger.info("Password change rejected for user %s: wrong old password", user_id)
        raise AuthError(ErrorCode.INVALID_CREDENTIALS, "The current password is incorrect.")

    credential_store.update_password_hash(
        user_id,
        hash_password(new_password, rounds=rounds),
        session,
    )
    if revoke_sessions:
        credential_store.update_refresh_token(user_id, None, session)

    logger.info("User %s changed password", user_id)
