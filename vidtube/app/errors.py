"""
errors.py — Typed API failures and the error code registry.

Services, middleware and routes raise one of the AppError subclasses below
with a code from ErrorCode; the app factory turns it into the JSON envelope.

Codes are part of the public contract and stay stable; messages are prose
and may change. AuthError is special: whatever its internal code
(TOKEN_STALE, INVALID_CREDENTIALS, ...), the client only ever sees
UNAUTHORIZED / "Authentication failed.". The internal code is for logs and
service-level tests.
"""

from __future__ import annotations


class AppError(Exception):

    def __init__(
            self,
            code: str,
            message: str,
            http_status: int,
            field: str | None = None,
    ) -> None:
        super().__init__(message)
        self.code        = code
        self.message     = message
        self.http_status = http_status
        self.field       = field  # offending request field, if any

    def to_dict(self) -> dict:
        payload = {
            "code":    self.code,
            "message": self.message,
        }
        if self.field is not None:
            payload["field"] = self.field
        return {"error": payload}

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(code={self.code!r}, "
            f"http_status={self.http_status}, "
            f"message={self.message!r})"
        )


class InputError(AppError):
    """Missing or malformed input the client can correct (400)."""

    def __init__(self, code: str, message: str, field: str | None = None) -> None:
        super().__init__(code, message, 400, field=field)


class AuthError(AppError):
    """
    Authentication failure (401).

    The public envelope is identical for every internal code so that a client
    cannot tell an unknown user from a wrong password or an expired token.
    """

    PUBLIC_MESSAGE = "Authentication failed."

    def __init__(self, code: str, message: str) -> None:
        super().__init__(code, message, 401)

    def to_dict(self) -> dict:
        return {
            "error": {
                "code":    ErrorCode.UNAUTHORIZED,
                "message": self.PUBLIC_MESSAGE,
            }
        }


class ConflictError(AppError):

    def __init__(self, code: str, message: str, field: str | None = None) -> None:
        super().__init__(code, message, 409, field=field)


class NotFoundError(AppError):

    def __init__(self, code: str, message: str) -> None:
        super().__init__(code, message, 404)


class DependencyError(AppError):
    """A collaborator (store, uploader) failed. Never retried automatically."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(code, message, 500)


# ── Error codes ────────────────────────────────────────────────────────────
# Values are sent verbatim in API responses; never rename one.

class ErrorCode:

    # ── Input (400) ───────────────────────────────────────────────────────
    MISSING_FIELD              = "MISSING_FIELD"
    INVALID_FIELD              = "INVALID_FIELD"
    AVATAR_REQUIRED            = "AVATAR_REQUIRED"
    FILE_REQUIRED              = "FILE_REQUIRED"
    SELF_SUBSCRIPTION          = "SELF_SUBSCRIPTION"

    # ── Conflict (409) ────────────────────────────────────────────────────
    DUPLICATE_EMAIL            = "DUPLICATE_EMAIL"
    DUPLICATE_USERNAME         = "DUPLICATE_USERNAME"

    # ── Not found (404) ───────────────────────────────────────────────────
    USER_NOT_FOUND             = "USER_NOT_FOUND"
    CHANNEL_NOT_FOUND          = "CHANNEL_NOT_FOUND"

    # ── Authentication (401) ──────────────────────────────────────────────
    # Internal codes. The wire always carries UNAUTHORIZED.
    UNAUTHORIZED               = "UNAUTHORIZED"
    INVALID_CREDENTIALS        = "INVALID_CREDENTIALS"
    TOKEN_MISSING              = "TOKEN_MISSING"
    TOKEN_MALFORMED            = "TOKEN_MALFORMED"
    TOKEN_INVALID              = "TOKEN_INVALID"
    TOKEN_EXPIRED              = "TOKEN_EXPIRED"
    TOKEN_STALE                = "TOKEN_STALE"

    # ── Collaborators (500) ───────────────────────────────────────────────
    STORE_UNAVAILABLE          = "STORE_UNAVAILABLE"
    UPLOAD_FAILED              = "UPLOAD_FAILED"

    # ── Unexpected (500) ──────────────────────────────────────────────────
    INTERNAL_ERROR             = "INTERNAL_ERROR"
