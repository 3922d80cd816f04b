"""Session Issuer: compact signed session cookie.

Payload (HS256 JWT, PyJWT):
    sub    canonical user id
    name   display name (optional)
    email  verified email (optional)
    iat    issued-at (epoch seconds)
    exp    iat + SESSION_DURATION_SECONDS

SECURITY:
- Only allowlisted display fields enter the payload; upstream provider tokens
  (access/refresh/id) are dropped whatever their spelling
- The encoded token is bounded well under the 4 KB per-cookie ceiling
- The issuer knows nothing about memberships: validation yields the user id
  and display fields, and nothing more
"""

import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional

import jwt
from fastapi import Response

from bndy_api.auth.errors import SessionExpired, SessionInvalid
from bndy_api.config import env

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"

# Display fields allowed into the signed payload
DISPLAY_FIELDS = ("name", "email")

# Upstream token field names (normalized: lower-case, separators removed)
_FORBIDDEN_FIELDS = frozenset({"accesstoken", "refreshtoken", "idtoken", "token", "providertoken"})

MAX_DISPLAY_FIELD_BYTES = 120
MAX_TOKEN_BYTES = 1024


def _normalize_field_name(name: str) -> str:
    return re.sub(r"[^a-z]", "", name.lower())


def _truncate_utf8(value: str, max_bytes: int) -> str:
    return value.encode("utf-8")[:max_bytes].decode("utf-8", errors="ignore")


def is_forbidden_field(name: str) -> bool:
    normalized = _normalize_field_name(name)
    return normalized in _FORBIDDEN_FIELDS or normalized.endswith("token")


@dataclass(frozen=True)
class CookieDescriptor:
    """Everything needed to set (or clear) the session cookie on a response."""

    name: str
    value: str
    max_age: int
    domain: Optional[str]
    secure: bool
    httponly: bool = True
    samesite: str = "lax"
    path: str = "/"

    def apply(self, response: Response) -> None:
        response.set_cookie(
            key=self.name,
            value=self.value,
            max_age=self.max_age,
            domain=self.domain,
            path=self.path,
            secure=self.secure,
            httponly=self.httponly,
            samesite=self.samesite,
        )


@dataclass(frozen=True)
class IssuedSession:
    token: str
    cookie: CookieDescriptor
    expires_at: int


@dataclass(frozen=True)
class SessionClaims:
    user_id: str
    name: Optional[str]
    email: Optional[str]
    issued_at: int
    expires_at: int


class SessionIssuer:
    """Mint, validate and revoke session cookies."""

    def __init__(
        self,
        secret: Optional[str] = None,
        cookie_name: Optional[str] = None,
        duration_seconds: Optional[int] = None,
        cookie_domain: Optional[str] = None,
        secure: Optional[bool] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.secret = secret or env.get_session_secret()
        self.cookie_name = cookie_name or env.get_session_cookie_name()
        self.duration_seconds = duration_seconds or env.get_session_duration_seconds()
        self.cookie_domain = cookie_domain if cookie_domain is not None else env.get_cookie_domain()
        self.secure = secure if secure is not None else env.is_cookie_secure()
        self.clock = clock

    def _cookie(self, value: str, max_age: int) -> CookieDescriptor:
        return CookieDescriptor(
            name=self.cookie_name,
            value=value,
            max_age=max_age,
            domain=self.cookie_domain,
            secure=self.secure,
        )

    @staticmethod
    def build_display_fields(display_fields: Optional[Mapping[str, Any]]) -> dict[str, str]:
        """Filter caller-supplied display fields down to the allowlist."""
        clean: dict[str, str] = {}
        for key, value in (display_fields or {}).items():
            if is_forbidden_field(key):
                logger.warning(
                    "Dropped upstream token field from session payload",
                    extra={"event": "session.payload.field_dropped", "field_name": key},
                )
                continue
            if key not in DISPLAY_FIELDS or value is None:
                continue
            clean[key] = _truncate_utf8(str(value), MAX_DISPLAY_FIELD_BYTES)
        return clean

    def issue(self, user_id: str, display_fields: Optional[Mapping[str, Any]] = None) -> IssuedSession:
        """Sign a session token for ``user_id`` and wrap it in a cookie descriptor.

        Raises:
            SessionInvalid: If the encoded token would exceed MAX_TOKEN_BYTES
        """
        if not user_id:
            raise SessionInvalid("Cannot issue a session without a user id")

        issued_at = int(self.clock())
        expires_at = issued_at + self.duration_seconds

        payload: dict[str, Any] = {"sub": user_id}
        payload.update(self.build_display_fields(display_fields))
        payload["iat"] = issued_at
        payload["exp"] = expires_at

        token = jwt.encode(payload, self.secret, algorithm=ALGORITHM)

        if len(token.encode("utf-8")) > MAX_TOKEN_BYTES:
            logger.error(
                "Session token exceeds size bound",
                extra={"event": "session.issue.oversize", "size_bytes": len(token)},
            )
            raise SessionInvalid("Session token too large")

        logger.info(
            "Session issued",
            extra={
                "event": "session.issued",
                "session_user_id": user_id,
                "size_bytes": len(token),
                "expires_at": expires_at,
            },
        )

        return IssuedSession(
            token=token,
            cookie=self._cookie(token, self.duration_seconds),
            expires_at=expires_at,
        )

    def validate(self, token: Optional[str]) -> SessionClaims:
        """Verify signature and expiry.

        Raises:
            SessionInvalid: Missing, malformed, or wrongly signed token
            SessionExpired: Valid signature but past exp
        """
        if not token:
            raise SessionInvalid("No session")

        try:
            payload = jwt.decode(
                token,
                self.secret,
                algorithms=[ALGORITHM],
                options={"require": ["sub", "iat", "exp"]},
            )
        except jwt.ExpiredSignatureError:
            raise SessionExpired("Session expired")
        except jwt.InvalidTokenError:
            raise SessionInvalid("Invalid session")

        if int(payload["exp"]) <= int(self.clock()):
            raise SessionExpired("Session expired")

        return SessionClaims(
            user_id=str(payload["sub"]),
            name=payload.get("name"),
            email=payload.get("email"),
            issued_at=int(payload["iat"]),
            expires_at=int(payload["exp"]),
        )

    def revoke(self) -> CookieDescriptor:
        """Cookie descriptor that clears the session (same name, domain and path)."""
        return self._cookie("", 0)


_issuer: Optional[SessionIssuer] = None


def get_session_issuer() -> SessionIssuer:
    """Get session issuer singleton (configured from env)."""
    global _issuer
    if _issuer is None:
        _issuer = SessionIssuer()
    return _issuer
