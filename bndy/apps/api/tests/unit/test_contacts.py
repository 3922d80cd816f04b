"""Tests for contact normalization and hashing."""

import pytest

from bndy_api.auth.contacts import (
    generate_opaque_token,
    generate_otp_code,
    mask_phone,
    normalize_email,
    normalize_phone,
    peppered_hash,
)
from bndy_api.auth.errors import InvalidInput


@pytest.mark.parametrize(
    "raw",
    ["+447700900123", "+44 7700 900123", "07700 900123", "07700-900-123", "00447700900123"],
)
def test_normalize_phone_to_e164(raw: str) -> None:
    assert normalize_phone(raw) == "+447700900123"


@pytest.mark.parametrize("raw", ["", "12345", "+0447700900123", "+44abc", "not a phone"])
def test_normalize_phone_rejects_malformed(raw: str) -> None:
    with pytest.raises(InvalidInput) as exc_info:
        normalize_phone(raw)
    assert exc_info.value.error_code == "invalid_input"
    assert exc_info.value.status_code == 400


def test_normalize_email_lowercases() -> None:
    assert normalize_email("  Alex.Rivers@Example.COM ") == "alex.rivers@example.com"


@pytest.mark.parametrize("raw", ["", "alex", "alex@", "@example.com", "alex@@example.com"])
def test_normalize_email_rejects_malformed(raw: str) -> None:
    with pytest.raises(InvalidInput):
        normalize_email(raw)


def test_peppered_hash_is_stable_and_opaque() -> None:
    digest = peppered_hash("+447700900123")
    assert digest == peppered_hash("+447700900123")
    assert digest != peppered_hash("+447700900124")
    assert "447700900123" not in digest
    assert "=" not in digest


def test_peppered_hash_depends_on_pepper(monkeypatch) -> None:
    before = peppered_hash("alex@example.com")
    monkeypatch.setenv("DESTINATION_PEPPER", "another-pepper-value-0123456789abcdef")
    assert peppered_hash("alex@example.com") != before


def test_otp_codes_are_six_digits() -> None:
    codes = {generate_otp_code() for _ in range(200)}
    assert all(len(code) == 6 and code.isdigit() for code in codes)
    # 200 draws from 10^6 values: collisions are possible, total repetition is not
    assert len(codes) > 150


def test_opaque_tokens_are_unique_and_urlsafe() -> None:
    tokens = {generate_opaque_token() for _ in range(100)}
    assert len(tokens) == 100
    for token in tokens:
        assert len(token) == 43
        assert all(ch.isalnum() or ch in "-_" for ch in token)


def test_mask_phone() -> None:
    assert mask_phone("+447700900123") == "+44*******123"
