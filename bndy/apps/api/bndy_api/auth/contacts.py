"""Contact normalization and secret hashing.

Phones and emails are PII. They are normalized once at the edge, stored in
the users table only after verification, and referenced everywhere else
(Redis keys, throttle counters, logs) by an HMAC digest.
"""

import base64
import hashlib
import hmac
import re
import secrets

from email_validator import EmailNotValidError, validate_email

from bndy_api.auth.errors import InvalidInput
from bndy_api.config.env import get_destination_pepper

_E164 = re.compile(r"^\+[1-9]\d{7,14}$")
_PHONE_SEPARATORS = re.compile(r"[\s\-().]")

OTP_DIGITS = 6


def normalize_phone(raw: str) -> str:
    """Normalize a phone number to E.164.

    Separators are stripped, "00" becomes "+", and a leading "0" is read as a
    UK national number ("07700 900123" -> "+447700900123").

    Raises:
        InvalidInput: If the result is not a plausible E.164 number
    """
    if not raw or not isinstance(raw, str):
        raise InvalidInput("Phone number is required")

    phone = _PHONE_SEPARATORS.sub("", raw.strip())
    if phone.startswith("00"):
        phone = "+" + phone[2:]
    elif phone.startswith("0"):
        phone = "+44" + phone[1:]

    if not _E164.match(phone):
        raise InvalidInput("Phone number must be in international format, e.g. +447700900123")
    return phone


def normalize_email(raw: str) -> str:
    """Validate and lower-case an email address (syntax only, no DNS lookup).

    Raises:
        InvalidInput: If the address is malformed
    """
    if not raw or not isinstance(raw, str):
        raise InvalidInput("Email address is required")
    try:
        result = validate_email(raw.strip(), check_deliverability=False)
    except EmailNotValidError:
        raise InvalidInput("Email address is not valid")
    return result.normalized.lower()


def peppered_hash(value: str) -> str:
    """HMAC-SHA256 of a normalized phone/email (or opaque token), base64url without padding."""
    digest = hmac.new(
        key=get_destination_pepper().encode("utf-8"),
        msg=value.encode("utf-8"),
        digestmod=hashlib.sha256,
    ).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")


def generate_opaque_token() -> str:
    """32 random bytes (256 bits), base64url without padding."""
    return base64.urlsafe_b64encode(secrets.token_bytes(32)).decode("ascii").rstrip("=")


def generate_otp_code() -> str:
    """Uniformly random zero-padded 6-digit code."""
    return f"{secrets.randbelow(10 ** OTP_DIGITS):0{OTP_DIGITS}d}"


def mask_phone(phone: str) -> str:
    """"+447700900123" -> "+44*******123" for user-facing confirmations."""
    if len(phone) <= 6:
        return "*" * len(phone)
    return phone[:3] + "*" * (len(phone) - 6) + phone[-3:]
