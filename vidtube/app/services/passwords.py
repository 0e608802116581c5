"""
services/passwords.py — bcrypt hashing and verification.

The raw password is never stored and never logged.
A wrong password is an expected outcome and returns False. A stored hash that
bcrypt cannot parse is a data-integrity fault: bcrypt's ValueError propagates
and the request ends as a 500.

bcrypt only takes the first 72 bytes of its input (current releases refuse
anything longer), so new passwords are capped at MAX_PASSWORD_BYTES by the
schemas, and a longer candidate can never match a stored hash.
"""

from __future__ import annotations

import bcrypt

MAX_PASSWORD_BYTES = 72


def password_too_long(plaintext: str) -> bool:
    return len(plaintext.encode("utf-8")) > MAX_PASSWORD_BYTES


def hash_password(plaintext: str, rounds: int = 12) -> str:
    """Returns a salted bcrypt hash (cost factor `rounds`) as a str."""
    if password_too_long(plaintext):
        raise ValueError(f"Passwords are limited to {MAX_PASSWORD_BYTES} bytes.")
    return bcrypt.hashpw(
        plaintext.encode("utf-8"),
        bcrypt.gensalt(rounds=rounds),
    ).decode("utf-8")


def verify_password(plaintext: str, password_hash: str) -> bool:
    if password_too_long(plaintext):
        return False
    # bcrypt.checkpw compares in constant time.
    return bcrypt.checkpw(
        plaintext.encode("utf-8"),
        password_hash.encode("utf-8"),
    )
