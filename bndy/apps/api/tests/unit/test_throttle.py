"""Tests for the per-destination credential request throttle."""

import pytest

from bndy_api.auth.errors import RateLimited
from bndy_api.auth.throttle import RequestThrottle


def test_allows_up_to_limit(throttle: RequestThrottle) -> None:
    counts = [throttle.hit("phone", "dest-hash") for _ in range(5)]
    assert counts == [1, 2, 3, 4, 5]


def test_rejects_over_limit_with_retry_after(throttle: RequestThrottle) -> None:
    for _ in range(5):
        throttle.hit("phone", "dest-hash")

    with pytest.raises(RateLimited) as exc_info:
        throttle.hit("phone", "dest-hash")

    err = exc_info.value
    assert err.status_code == 429
    assert err.error_code == "rate_limited"
    assert 1 <= err.retry_after <= 900


def test_counters_are_per_destination_and_channel(throttle: RequestThrottle) -> None:
    for _ in range(5):
        throttle.hit("phone", "dest-a")

    assert throttle.hit("phone", "dest-b") == 1
    assert throttle.hit("email", "dest-a") == 1


def test_window_expiry_is_set_on_first_hit(throttle: RequestThrottle, fake_redis) -> None:
    throttle.hit("email", "dest-hash")
    assert 0 < fake_redis.ttl("bndy:throttle:email:dest-hash") <= 900


def test_counter_without_expiry_is_rearmed(throttle: RequestThrottle, fake_redis) -> None:
    fake_redis.set("bndy:throttle:phone:dest-hash", 5)

    with pytest.raises(RateLimited) as exc_info:
        throttle.hit("phone", "dest-hash")

    assert exc_info.value.retry_after == 900
    assert fake_redis.ttl("bndy:throttle:phone:dest-hash") > 0


def test_limits_read_from_env(fake_redis, monkeypatch) -> None:
    monkeypatch.setenv("CREDENTIAL_REQUEST_LIMIT", "2")
    monkeypatch.setenv("CREDENTIAL_REQUEST_WINDOW_SECONDS", "60")

    limited = RequestThrottle(fake_redis)
    limited.hit("phone", "dest-hash")
    limited.hit("phone", "dest-hash")

    with pytest.raises(RateLimited) as exc_info:
        limited.hit("phone", "dest-hash")
    assert exc_info.value.retry_after <= 60
