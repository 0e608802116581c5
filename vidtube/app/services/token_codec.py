"""
services/token_codec.py — Signing and verification of access/refresh JWTs.

Responsibilities:
  - issue(kind, principal_id, claims) → signed, expiring token string
  - verify(token, kind) → VerifiedToken, or AuthError with the failing reason

Layer rules:
  - No Flask imports, no database. Verification is pure and stateless.
  - Secrets and TTLs come in through TokenSettings at construction time;
    nothing is read from the environment or current_app here.

Token design:
  - HS256 (configurable), sub = principal id (str), typ = "access" | "refresh",
    iat, exp, jti (random, so two tokens minted in the same second differ).
  - Access and refresh tokens use independent secrets: holding one kind's
    secret never lets you forge the other kind.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping

import jwt

from vidtube.app.errors import AuthError, ErrorCode

ACCESS = "access"
REFRESH = "refresh"
TOKEN_KINDS = (ACCESS, REFRESH)

# Claims the codec owns; callers cannot override them through `claims`.
_RESERVED_CLAIMS = frozenset({"sub", "typ", "iat", "exp", "jti"})


@dataclass(frozen=True)
class TokenSettings:
    access_secret: str
    refresh_secret: str
    access_ttl: timedelta
    refresh_ttl: timedelta
    algorithm: str = "HS256"

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "TokenSettings":
        """Builds settings from a Flask config mapping."""
        return cls(
            access_secret=config["ACCESS_TOKEN_SECRET"],
            refresh_secret=config["REFRESH_TOKEN_SECRET"],
            access_ttl=config["ACCESS_TOKEN_EXPIRES"],
            refresh_ttl=config["REFRESH_TOKEN_EXPIRES"],
            algorithm=config.get("JWT_ALGORITHM", "HS256"),
        )


@dataclass(frozen=True)
class VerifiedToken:
    principal_id: int
    claims: dict = field(default_factory=dict)


class TokenCodec:

    def __init__(self, settings: TokenSettings) -> None:
        if not settings.access_secret or not settings.refresh_secret:
            raise ValueError("Both access and refresh signing secrets must be configured.")
        if settings.access_secret == settings.refresh_secret:
            raise ValueError("Access and refresh tokens must be signed with different secrets.")
        for kind, ttl in ((ACCESS, settings.access_ttl), (REFRESH, settings.refresh_ttl)):
            if ttl.total_seconds() <= 0:
                raise ValueError(f"The {kind} token lifetime must be positive.")
        self._settings = settings

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "TokenCodec":
        return cls(TokenSettings.from_config(config))

    def ttl(self, kind: str) -> timedelta:
        _check_kind(kind)
        return self._settings.access_ttl if kind == ACCESS else self._settings.refresh_ttl

    def _secret(self, kind: str) -> str:
        return self._settings.access_secret if kind == ACCESS else self._settings.refresh_secret

    def issue(
            self,
            kind: str,
            principal_id: int,
            claims: Mapping[str, Any] | None = None,
            issued_at: datetime | None = None,
    ) -> str:
        """
        Creates a signed token for `principal_id`.

        `issued_at` defaults to now; passing an earlier instant yields a token
        that may already be expired, which is how expiry is exercised in tests.
        """
        _check_kind(kind)
        now = issued_at or datetime.now(timezone.utc)
        payload = {
            key: value
            for key, value in (claims or {}).items()
            if key not in _RESERVED_CLAIMS
        }
        payload.update({
            "sub": str(principal_id),
            "typ": kind,
            "iat": now,
            "exp": now + self.ttl(kind),
            "jti": secrets.token_hex(8),
        })
        return jwt.encode(payload, self._secret(kind), algorithm=self._settings.algorithm)

    def verify(self, token: str, kind: str) -> VerifiedToken:
        """
        Checks signature, expiry and kind of `token`.

        Raises:
          AuthError(TOKEN_MALFORMED) — not a parseable JWT, or missing/bad `sub`
          AuthError(TOKEN_INVALID)   — wrong signature, or `typ` is not `kind`
          AuthError(TOKEN_EXPIRED)   — signature fine, exp in the past
        """
        _check_kind(kind)
        try:
            payload = jwt.decode(
                token,
                self._secret(kind),
                algorithms=[self._settings.algorithm],
                options={"require": ["sub", "exp", "iat"]},
            )
        except jwt.ExpiredSignatureError:
            raise AuthError(ErrorCode.TOKEN_EXPIRED, f"The {kind} token has expired.")
        except jwt.InvalidSignatureError:
            raise AuthError(ErrorCode.TOKEN_INVALID, f"The {kind} token signature does not match.")
        except jwt.DecodeError:
            raise AuthError(ErrorCode.TOKEN_MALFORMED, f"The {kind} token could not be parsed.")
        except jwt.MissingRequiredClaimError as exc:
            code = ErrorCode.TOKEN_MALFORMED if exc.claim == "sub" else ErrorCode.TOKEN_INVALID
            raise AuthError(code, f"The {kind} token has no '{exc.claim}' claim.")
        except jwt.InvalidSubjectError:
            raise AuthError(ErrorCode.TOKEN_MALFORMED, f"The 'sub' claim in the {kind} token is not a string.")
        except jwt.InvalidTokenError:
            # Missing required claims, immature iat, etc.
            raise AuthError(ErrorCode.TOKEN_INVALID, f"The {kind} token is invalid.")

        if payload.get("typ") != kind:
            raise AuthError(ErrorCode.TOKEN_INVALID, f"Expected a {kind} token.")

        try:
            principal_id = int(payload["sub"])
        except (TypeError, ValueError):
            raise AuthError(
                ErrorCode.TOKEN_MALFORMED,
                f"The 'sub' claim in the {kind} token is not a valid user ID.",
            )

        claims = {key: value for key, value in payload.items() if key not in _RESERVED_CLAIMS}
        return VerifiedToken(principal_id=principal_id, claims=claims)


def _check_kind(kind: str) -> None:
    if kind not in TOKEN_KINDS:
        raise ValueError(f"Unknown token kind {kind!r}; expected one of {TOKEN_KINDS}.")
