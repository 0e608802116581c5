"""
services/credential_store.py — Persistence of principals and their secrets.

Every read and write of users.password_hash and users.refresh_token goes
through this module. Anything handed to other layers is a projection
(Principal or to_public_dict) that leaves both secrets out.

Layer rules:
  - No Flask imports. Pure Python with a SQLAlchemy session parameter.
  - Commits are the route's responsibility — only flush here.
  - Database outages surface as DependencyError(STORE_UNAVAILABLE). They are
    never retried here: retrying a rotation could invalidate a token the
    client has not seen yet.
"""

from __future__ import annotations

import functools
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from sqlalchemy import or_, select, update
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from vidtube.app.errors import DependencyError, ErrorCode
from vidtube.app.models.user import User

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Principal:
    """The authenticated identity attached to a request. Carries no secrets."""

    id: int
    username: str
    email: str
    full_name: str
    avatar_url: str
    cover_image_url: str | None
    role: str
    created_at: datetime | None


def to_principal(user: User) -> Principal:
    return Principal(
        id=user.id,
        username=user.username,
        email=user.email,
        full_name=user.full_name,
        avatar_url=user.avatar_url,
        cover_image_url=user.cover_image_url,
        role=user.role,
        created_at=user.created_at,
    )


def to_public_dict(user: User | Principal) -> dict:
    """Serialises a user to a plain dict without password hash or refresh token."""
    return {
        "id": user.id,
        "username": user.username,
        "email": user.email,
        "full_name": user.full_name,
        "avatar_url": user.avatar_url,
        "cover_image_url": user.cover_image_url,
        "role": user.role,
        "created_at": user.created_at.isoformat() if user.created_at else None,
    }


def _store_call(f: Callable) -> Callable:
    @functools.wraps(f)
    def wrapper(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except (OperationalError, TimeoutError) as exc:
            logger.error("Credential store call %s failed: %s", f.__name__, exc)
            raise DependencyError(
                ErrorCode.STORE_UNAVAILABLE,
                "The credential store is temporarily unavailable.",
            ) from exc

    return wrapper


# ── Lookups ────────────────────────────────────────────────────────────────

@_store_call
def find_by_id(user_id: int, session: Session) -> User | None:
    return session.get(User, user_id)


@_store_call
def find_by_username(username: str, session: Session) -> User | None:
    return session.execute(
        select(User).where(User.username == username.lower())
    ).scalar_one_or_none()


@_store_call
def find_by_email(email: str, session: Session) -> User | None:
    return session.execute(
        select(User).where(User.email == email)
    ).scalar_one_or_none()


@_store_call
def find_by_username_or_email(
        session: Session,
        username: str | None = None,
        email: str | None = None,
) -> User | None:
    """
    Resolves a login identifier.

    Either value is enough on its own. When both are given they must point at
    the same user, otherwise nothing matches.
    """
    if not username and not email:
        return None

    criteria = []
    if username:
        criteria.append(User.username == username.lower())
    if email:
        criteria.append(User.email == email)

    users = session.execute(select(User).where(or_(*criteria))).scalars().all()
    if len(users) != 1:
        return None
    user = users[0]
    if username and user.username != username.lower():
        return None
    if email and user.email != email:
        return None
    return user


@_store_call
def get_password_hash(user_id: int, session: Session) -> str | None:
    return session.execute(
        select(User.password_hash).where(User.id == user_id)
    ).scalar_one_or_none()


@_store_call
def get_refresh_token(user_id: int, session: Session) -> str | None:
    return session.execute(
        select(User.refresh_token).where(User.id == user_id)
    ).scalar_one_or_none()


# ── Writes ─────────────────────────────────────────────────────────────────

@_store_call
def create(
        session: Session,
        *,
        username: str,
        email: str,
        full_name: str,
        password_hash: str,
        avatar_url: str,
        cover_image_url: str | None = None,
) -> User:
    user = User(
        username=username.lower(),
        email=email,
        full_name=full_name,
        password_hash=password_hash,
        avatar_url=avatar_url,
        cover_image_url=cover_image_url,
    )
    session.add(user)
    session.flush()  # populate user.id
    return user


@_store_call
def update_refresh_token(user_id: int, token: str | None, session: Session) -> None:
    """Unconditionally sets (or clears, with None) the stored refresh token."""
    session.execute(
        update(User).where(User.id == user_id).values(refresh_token=token)
    )
    session.flush()


@_store_call
def rotate_refresh_token(
        user_id: int,
        expected: str,
        new_token: str,
        session: Session,
) -> bool:
    """
    Compare-and-rotate in a single UPDATE.

    The row is only written while its refresh_token still equals `expected`,
    so of two concurrent refreshes presenting the same token exactly one wins.
    Returns False when nothing matched.
    """
    result = session.execute(
        update(User)
        .where(User.id == user_id, User.refresh_token == expected)
        .values(refresh_token=new_token)
    )
    session.flush()
    return result.rowcount == 1


@_store_call
def update_password_hash(user_id: int, password_hash: str, session: Session) -> None:
    session.execute(
        update(User).where(User.id == user_id).values(password_hash=password_hash)
    )
    session.flush()
