"""Log sanitizer: credentials, contact details and tracebacks.

Strings are handled by size:
 1. longer than MAX_STR_LOG        -> replaced by length + sha256 prefix
 2. longer than MAX_STR_FOR_REGEX  -> Bearer/Basic prefix check, then the
                                      contact-detail patterns only
 3. otherwise                      -> every pattern

Contact details (E.164 phones, email addresses) are scrubbed in every tier
that is logged at all; code paths should log the destination hash instead,
this is the backstop. Patterns are linear and compiled once at import.
"""

import hashlib
import re
import traceback
from typing import Any

MAX_STR_LOG: int = 2048
MAX_STR_FOR_REGEX: int = 512
MAX_DEPTH: int = 6

REDACTED = "[REDACTED]"

# Extra/dict keys whose values are never logged (compared lower-cased)
_SENSITIVE_KEYS: frozenset[str] = frozenset({
    # transport credentials
    "authorization", "cookie", "set-cookie", "password", "secret",
    "client_secret", "signature",
    # ephemeral credentials and upstream tokens
    "token", "request_token", "access_token", "refresh_token", "id_token",
    "code", "otp", "state",
    # contact details
    "email", "phone", "destination",
})

_SECRET_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"Bearer \S+"),
    re.compile(r"Basic \S+"),
    re.compile(r"(?:access|refresh|id)_token=[^&\s]+"),
    re.compile(r"client_secret=[^&\s]+"),
    re.compile(r"\bcode=[^&\s]+"),
    re.compile(r"\bstate=[^&\s]+"),
    re.compile(r"/auth/magic/[A-Za-z0-9_\-]+"),
)

_CONTACT_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"[A-Za-z0-9._%+-]{1,64}@[A-Za-z0-9-]{1,63}(?:\.[A-Za-z0-9-]{1,63})+"),
    re.compile(r"\+\d{8,15}"),
)

_CREDENTIAL_PREFIXES = ("Bearer ", "Basic ")


def _scrub(s: str, patterns: tuple[re.Pattern[str], ...]) -> str:
    for pattern in patterns:
        s = pattern.sub(REDACTED, s)
    return s


def sanitize_str(s: str) -> str:
    """Return ``s`` with credentials and contact details redacted (or truncated)."""
    if not isinstance(s, str):
        return s  # type: ignore[return-value]

    n = len(s)

    if n > MAX_STR_LOG:
        digest = hashlib.sha256(s.encode("utf-8", errors="replace")).hexdigest()[:16]
        return f"[TRUNCATED len={n} sha256={digest}]"

    if n > MAX_STR_FOR_REGEX:
        if s.startswith(_CREDENTIAL_PREFIXES):
            return REDACTED
        return _scrub(s, _CONTACT_PATTERNS)

    return _scrub(_scrub(s, _SECRET_PATTERNS), _CONTACT_PATTERNS)


def is_sensitive_key(key: str) -> bool:
    return key.lower() in _SENSITIVE_KEYS


def sanitize_obj(obj: Any, depth: int = 0) -> Any:
    """Recursively sanitize a log ``extra`` value (dicts, lists/tuples, strings)."""
    if depth >= MAX_DEPTH:
        return "[DEPTH_LIMIT]"

    if isinstance(obj, dict):
        return {
            key: REDACTED if isinstance(key, str) and is_sensitive_key(key) else sanitize_obj(value, depth + 1)
            for key, value in obj.items()
        }

    if isinstance(obj, (list, tuple)):
        return [sanitize_obj(item, depth + 1) for item in obj]

    if isinstance(obj, str):
        return sanitize_str(obj)

    return obj


def sanitize_exc(exc_info: tuple) -> str:
    """Sanitized traceback text for an exc_info tuple.

    Frame locals are never captured: they routinely hold codes, tokens and
    destinations.
    """
    _type, value, _tb = exc_info
    if value is None:
        return ""
    try:
        te = traceback.TracebackException.from_exception(value, capture_locals=False)
        return sanitize_str("".join(te.format()))
    except Exception:
        return "[TRACEBACK_FORMAT_ERROR]"
