"""Tests for the Redis ephemeral credential store."""

from concurrent.futures import ThreadPoolExecutor

import pytest

from bndy_api.auth.credential_store import (
    EXPIRED_GRACE_SECONDS,
    MAX_ATTEMPTS,
    VALIDITY_SECONDS,
    CredentialKind,
    EphemeralCredentialStore,
)
from bndy_api.auth.errors import CredentialExpired, CredentialMismatch, CredentialNotFound

PHONE = "+447700900123"


def _redis_values(fake_redis) -> list[str]:
    values = []
    for key in fake_redis.scan_iter("bndy:cred:*"):
        values.append(key)
        values.extend(fake_redis.hgetall(key).values())
    return values


def test_issue_then_consume_returns_destination(store: EphemeralCredentialStore) -> None:
    issued = store.issue(CredentialKind.OTP, destination=PHONE, secret="123456")

    consumed = store.consume(CredentialKind.OTP, issued.token, secret="123456")

    assert consumed.destination == PHONE
    assert consumed.kind is CredentialKind.OTP
    assert consumed.destination_hash


def test_record_never_holds_destination_token_or_code_in_clear(store, fake_redis) -> None:
    issued = store.issue(CredentialKind.OTP, destination=PHONE, secret="987654")

    stored = " ".join(_redis_values(fake_redis))
    assert PHONE not in stored
    assert "987654" not in stored
    assert issued.token not in stored


def test_redis_ttl_covers_window_plus_grace(store, fake_redis) -> None:
    store.issue(CredentialKind.MAGIC_LINK, destination="alex@example.com")

    (key,) = list(fake_redis.scan_iter("bndy:cred:magic:*"))
    ttl = fake_redis.ttl(key)
    expected = VALIDITY_SECONDS[CredentialKind.MAGIC_LINK] + EXPIRED_GRACE_SECONDS
    assert expected - 5 <= ttl <= expected


def test_second_consume_is_not_found(store) -> None:
    issued = store.issue(CredentialKind.MAGIC_LINK, destination="alex@example.com")
    store.consume(CredentialKind.MAGIC_LINK, issued.token)

    with pytest.raises(CredentialNotFound):
        store.consume(CredentialKind.MAGIC_LINK, issued.token)


def test_unknown_token_is_not_found(store) -> None:
    with pytest.raises(CredentialNotFound):
        store.consume(CredentialKind.OTP, "never-issued", secret="000000")


def test_empty_token_is_not_found(store) -> None:
    with pytest.raises(CredentialNotFound):
        store.consume(CredentialKind.OTP, "", secret="000000")


def test_expired_even_with_correct_secret(store, clock) -> None:
    issued = store.issue(CredentialKind.OTP, destination=PHONE, secret="123456")
    clock.advance(VALIDITY_SECONDS[CredentialKind.OTP] + 60)

    with pytest.raises(CredentialExpired):
        store.consume(CredentialKind.OTP, issued.token, secret="123456")

    # Expired entries are removed on first sight
    with pytest.raises(CredentialNotFound):
        store.consume(CredentialKind.OTP, issued.token, secret="123456")


def test_valid_up_to_the_window_end(store, clock) -> None:
    issued = store.issue(CredentialKind.OTP, destination=PHONE, secret="123456")
    clock.advance(VALIDITY_SECONDS[CredentialKind.OTP] - 1)

    assert store.consume(CredentialKind.OTP, issued.token, secret="123456").destination == PHONE


def test_wrong_code_is_mismatch_and_keeps_credential(store) -> None:
    issued = store.issue(CredentialKind.OTP, destination=PHONE, secret="123456")

    with pytest.raises(CredentialMismatch):
        store.consume(CredentialKind.OTP, issued.token, secret="000000")

    assert store.exists(CredentialKind.OTP, issued.token)
    assert store.consume(CredentialKind.OTP, issued.token, secret="123456").destination == PHONE


def test_credential_burned_after_max_attempts(store) -> None:
    issued = store.issue(CredentialKind.OTP, destination=PHONE, secret="123456")

    for _ in range(MAX_ATTEMPTS):
        with pytest.raises(CredentialMismatch):
            store.consume(CredentialKind.OTP, issued.token, secret="000000")

    with pytest.raises(CredentialNotFound):
        store.consume(CredentialKind.OTP, issued.token, secret="123456")


def test_code_is_bound_to_its_request_token(store) -> None:
    first = store.issue(CredentialKind.OTP, destination=PHONE, secret="111111")
    second = store.issue(CredentialKind.OTP, destination=PHONE, secret="222222")

    with pytest.raises(CredentialMismatch):
        store.consume(CredentialKind.OTP, first.token, secret="222222")
    assert store.consume(CredentialKind.OTP, second.token, secret="222222").destination == PHONE


def test_kinds_are_separate_namespaces(store) -> None:
    issued = store.issue(CredentialKind.MAGIC_LINK, destination="alex@example.com")

    with pytest.raises(CredentialNotFound):
        store.consume(CredentialKind.OAUTH_STATE, issued.token)
    assert store.exists(CredentialKind.MAGIC_LINK, issued.token)


def test_oauth_state_carries_provider_and_redirect(store) -> None:
    issued = store.issue(CredentialKind.OAUTH_STATE, redirect="/gigs/42", provider="google")

    consumed = store.consume(CredentialKind.OAUTH_STATE, issued.token)

    assert consumed.provider == "google"
    assert consumed.redirect == "/gigs/42"
    assert consumed.destination is None


def test_shared_redis_across_instances(fake_redis, clock) -> None:
    """A credential issued by one API instance is consumable by another."""
    instance_a = EphemeralCredentialStore(fake_redis, clock=clock)
    instance_b = EphemeralCredentialStore(fake_redis, clock=clock)

    issued = instance_a.issue(CredentialKind.MAGIC_LINK, destination="alex@example.com")

    assert instance_b.consume(CredentialKind.MAGIC_LINK, issued.token).destination == "alex@example.com"
    with pytest.raises(CredentialNotFound):
        instance_a.consume(CredentialKind.MAGIC_LINK, issued.token)


def test_concurrent_consumes_succeed_exactly_once(fake_redis, clock) -> None:
    store = EphemeralCredentialStore(fake_redis, clock=clock)
    issued = store.issue(CredentialKind.OTP, destination=PHONE, secret="123456")

    def attempt(_):
        try:
            store.consume(CredentialKind.OTP, issued.token, secret="123456")
            return "ok"
        except CredentialNotFound:
            return "not_found"

    with ThreadPoolExecutor(max_workers=8) as pool:
        outcomes = list(pool.map(attempt, range(16)))

    assert outcomes.count("ok") == 1
    assert outcomes.count("not_found") == 15


def test_record_sealed_under_other_key_is_unusable(store, monkeypatch) -> None:
    issued = store.issue(CredentialKind.MAGIC_LINK, destination="alex@example.com")
    monkeypatch.setenv("CREDENTIAL_SEAL_KEY", "rotated-credential-seal-key-0123456789")

    with pytest.raises(CredentialNotFound):
        store.consume(CredentialKind.MAGIC_LINK, issued.token)
