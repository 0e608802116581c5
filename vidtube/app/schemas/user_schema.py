"""
schemas/user_schema.py — Marshmallow schemas for the /users endpoints.

Validation responsibility:
  - This file: presence, types, lengths, formats.
  - services/: uniqueness (DUPLICATE_EMAIL / DUPLICATE_USERNAME) and
    credential checks, because they need the database.

IMPORTANT: All schemas inherit from marshmallow.Schema directly.
           Do NOT use ma.Schema — it requires an active Flask app context
           and breaks unit tests. See extensions.py.
"""

from __future__ import annotations

from marshmallow import Schema, ValidationError, fields, validate, validates_schema

from vidtube.app.services.passwords import MAX_PASSWORD_BYTES, password_too_long


# Blank strings count as missing (MISSING_FIELD in the error handler).
_not_blank = validate.Regexp(r"^\s*\S", error="Missing data for required field: value is blank.")


def _required_str(validate_with: list | None = None, **kwargs) -> fields.Str:
    return fields.Str(
        required=True,
        validate=[_not_blank, *(validate_with or [])],
        **kwargs,
    )


def _fits_bcrypt(value: str) -> None:
    if password_too_long(value):
        raise ValidationError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes long.")


class RegisterSchema(Schema):
    """
    POST /users/register (multipart form fields; files are checked by the route)

    Field rules:
      full_name : 1–100 chars, not blank
      username  : 3–50 chars, letters, digits, underscore, dot, dash
      email     : valid email format
      password  : required, not blank, at most 72 bytes (UTF-8)
    """

    full_name = _required_str(validate_with=[validate.Length(max=100)])

    username = _required_str(
        validate_with=[
            validate.Length(
                min=3,
                max=50,
                error="Username must be between 3 and 50 characters.",
            ),
            validate.Regexp(
                r"^[a-zA-Z0-9_.-]+$",
                error="Username may only contain letters, numbers, '_', '.' and '-'.",
            ),
        ],
    )

    email = fields.Email(
        required=True,
        validate=validate.Length(max=255),
    )

    password = _required_str(validate_with=[_fits_bcrypt], load_only=True)


class LoginSchema(Schema):
    """
    POST /users/login

    Either username or email identifies the user; sending both is allowed
    only if they belong to the same user (checked in session_service).
    """

    username = fields.Str(load_default=None)
    email = fields.Email(load_default=None)
    password = _required_str(load_only=True)

    @validates_schema
    def require_identifier(self, data: dict, **kwargs) -> None:
        if not (data.get("username") or "").strip() and not data.get("email"):
            raise ValidationError(
                "Missing data for required field: username or email.",
                field_name="username",
            )


class RefreshTokenSchema(Schema):
    """
    POST /users/refresh-token (body fallback when the refresh cookie is absent)
    """

    refresh_token = _required_str()


class ChangePasswordSchema(Schema):
    """POST /users/change-password"""

    old_password = _required_str(load_only=True)
    new_password = _required_str(validate_with=[_fits_bcrypt], load_only=True)


class UpdateAccountSchema(Schema):
    """PATCH /users/update-account — both fields required."""

    full_name = _required_str(validate_with=[validate.Length(max=100)])
    email = fields.Email(
        required=True,
        validate=validate.Length(max=255),
    )
