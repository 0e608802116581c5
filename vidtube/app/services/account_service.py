"""
services/account_service.py — Registration, profile updates and channel view.

Responsibilities:
  - Creating a user (uniqueness checks, avatar/cover upload, password hash)
  - Reading and updating the current user's public profile
  - Channel profile: a user's public profile plus subscriber counts
  - Subscribing to / unsubscribing from a channel

Layer rules:
  - No Flask imports. The media uploader is passed in as an argument.
  - Commits are the route's responsibility — only flush here.
  - Registration never issues tokens; the client logs in afterwards.
"""

from __future__ import annotations

import logging

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from vidtube.app.errors import ConflictError, ErrorCode, InputError, NotFoundError
from vidtube.app.models.subscription import Subscription
from vidtube.app.models.user import User
from vidtube.app.services import credential_store
from vidtube.app.services.passwords import hash_password

logger = logging.getLogger(__name__)


# ── Private helpers ────────────────────────────────────────────────────────

def _get_user_or_404(user_id: int, session: Session) -> User:
    user = credential_store.find_by_id(user_id, session)
    if user is None:
        raise NotFoundError(ErrorCode.USER_NOT_FOUND, f"User {user_id} not found.")
    return user


def _get_channel_or_404(username: str, session: Session) -> User:
    channel = credential_store.find_by_username(username, session)
    if channel is None:
        raise NotFoundError(
            ErrorCode.CHANNEL_NOT_FOUND,
            f"Channel '{username}' does not exist.",
        )
    return channel


def _ensure_unique(username: str, email: str, session: Session) -> None:
    if credential_store.find_by_email(email, session) is not None:
        raise ConflictError(
            ErrorCode.DUPLICATE_EMAIL,
            f"The email address '{email}' is already registered.",
            field="email",
        )
    if credential_store.find_by_username(username, session) is not None:
        raise ConflictError(
            ErrorCode.DUPLICATE_USERNAME,
            f"The username '{username.lower()}' is already taken.",
            field="username",
        )


def _duplicate_conflict(exc: IntegrityError, username: str, email: str) -> ConflictError:
    """Maps a unique-constraint violation from a concurrent registration to a 409."""
    if "email" in str(exc.orig).lower():
        return ConflictError(
            ErrorCode.DUPLICATE_EMAIL,
            f"The email address '{email}' is already registered.",
            field="email",
        )
    return ConflictError(
        ErrorCode.DUPLICATE_USERNAME,
        f"The username '{username.lower()}' is already taken.",
        field="username",
    )


def _delete_uploads(uploader, urls: list[str]) -> None:
    for url in urls:
        uploader.delete(url)


# ── Public service functions ───────────────────────────────────────────────

def register_user(
        full_name: str,
        username: str,
        email: str,
        password: str,
        avatar_path: str | None,
        uploader,
        session: Session,
        cover_path: str | None = None,
        rounds: int = 12,
) -> dict:
    """
    Creates a new user account.

    Uniqueness is checked before anything is uploaded; the avatar is required,
    the cover image optional. If a later step fails, files already uploaded
    for this registration are deleted again. A registration that loses a race
    for the same username/email hits the unique constraint and still gets 409.

    Raises:
      ConflictError(DUPLICATE_EMAIL / DUPLICATE_USERNAME, 409)
      InputError(AVATAR_REQUIRED, 400)
      DependencyError(UPLOAD_FAILED, 500) — from the uploader

    Returns the public profile of the new user.
    """
    _ensure_unique(username, email, session)

    if not avatar_path:
        raise InputError(ErrorCode.AVATAR_REQUIRED, "An avatar image is required.", field="avatar")

    password_hash = hash_password(password, rounds=rounds)

    uploaded: list[str] = []
    try:
        uploaded.append(uploader.upload(avatar_path))
        if cover_path:
            uploaded.append(uploader.upload(cover_path))

        user = credential_store.create(
            session,
            username=username,
            email=email,
            full_name=full_name,
            password_hash=password_hash,
            avatar_url=uploaded[0],
            cover_image_url=uploaded[1] if cover_path else None,
        )
    except IntegrityError as exc:
        _delete_uploads(uploader, uploaded)
        logger.info("Registration lost a uniqueness race: %s", exc.orig)
        raise _duplicate_conflict(exc, username, email) from exc
    except Exception:
        _delete_uploads(uploader, uploaded)
        raise

    logger.info("Registered user %s", user.id)
    return credential_store.to_public_dict(user)


def get_current_user(user_id: int, session: Session) -> dict:
    """
    Returns the profile of the currently authenticated user.

    Raises:
      NotFoundError(USER_NOT_FOUND, 404) — user deleted after the token was issued.
    """
    return credential_store.to_public_dict(_get_user_or_404(user_id, session))


def update_account(user_id: int, full_name: str, email: str, session: Session) -> dict:
    """Updates display name and email. Raises ConflictError if the email is taken."""
    user = _get_user_or_404(user_id, session)

    owner = credential_store.find_by_email(email, session)
    if owner is not None and owner.id != user.id:
        raise ConflictError(
            ErrorCode.DUPLICATE_EMAIL,
            f"The email address '{email}' is already registered.",
            field="email",
        )

    user.full_name = full_name
    user.email = email
    session.flush()
    return credential_store.to_public_dict(user)


def update_avatar(user_id: int, local_path: str, uploader, session: Session) -> dict:
    user = _get_user_or_404(user_id, session)
    user.avatar_url = uploader.upload(local_path)
    session.flush()
    return credential_store.to_public_dict(user)


def update_cover_image(user_id: int, local_path: str, uploader, session: Session) -> dict:
    user = _get_user_or_404(user_id, session)
    user.cover_image_url = uploader.upload(local_path)
    session.flush()
    return credential_store.to_public_dict(user)


def get_channel_profile(username: str, viewer_id: int, session: Session) -> dict:
    """
    Returns a channel's public profile with subscription aggregates.

    Keys added to the public profile:
      subscribers_count             — users subscribed to this channel
      channels_subscribed_to_count  — channels this user subscribes to
      is_subscribed                 — whether `viewer_id` subscribes to it
    """
    channel = _get_channel_or_404(username, session)

    subscribers_count = session.execute(
        select(func.count(Subscription.id)).where(Subscription.channel_id == channel.id)
    ).scalar_one()
    subscribed_to_count = session.execute(
        select(func.count(Subscription.id)).where(Subscription.subscriber_id == channel.id)
    ).scalar_one()
    is_subscribed = session.execute(
        select(Subscription.id).where(
            Subscription.channel_id == channel.id,
            Subscription.subscriber_id == viewer_id,
        )
    ).scalar_one_or_none() is not None

    profile = credential_store.to_public_dict(channel)
    # Email is private to its owner.
    if channel.id != viewer_id:
        profile.pop("email")
    profile.update({
        "subscribers_count": subscribers_count,
        "channels_subscribed_to_count": subscribed_to_count,
        "is_subscribed": is_subscribed,
    })
    return profile


def toggle_subscription(subscriber_id: int, channel_username: str, session: Session) -> dict:
    """
    Subscribes `subscriber_id` to the channel, or unsubscribes if already
    subscribed. Returns {"subscribed": bool}.

    Raises:
      NotFoundError(CHANNEL_NOT_FOUND, 404)
      InputError(SELF_SUBSCRIPTION, 400)
    """
    channel = _get_channel_or_404(channel_username, session)
    if channel.id == subscriber_id:
        raise InputError(ErrorCode.SELF_SUBSCRIPTION, "You cannot subscribe to your own channel.")

    existing = session.execute(
        select(Subscription).where(
            Subscription.channel_id == channel.id,
            Subscription.subscriber_id == subscriber_id,
        )
    ).scalar_one_or_none()

    if existing is not None:
        session.delete(existing)
        session.flush()
        return {"subscribed": False}

    session.add(Subscription(subscriber_id=subscriber_id, channel_id=channel.id))
    session.flush()
    return {"subscribed": True}
