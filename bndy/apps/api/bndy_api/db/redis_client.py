"""Shared Redis connection.

Redis holds every piece of short-lived auth state: OTP records, magic-link
tokens, OAuth state and the per-destination request counters. All API
instances must be configured with the same REDIS_URL, otherwise a code
issued on one instance cannot be verified on another.
"""

import logging
import os
from typing import Any, Optional
from urllib.parse import urlparse

import redis

from bndy_api.config.env import is_production_env

logger = logging.getLogger(__name__)

_LOCAL_REDIS_URL = "redis://localhost:6379/0"


def _connection_kwargs(redis_url: str) -> dict[str, Any]:
    timeout = float(os.getenv("REDIS_TIMEOUT_SECONDS", "2"))
    kwargs: dict[str, Any] = {
        "decode_responses": True,
        "socket_connect_timeout": timeout,
        "socket_timeout": timeout,
        "health_check_interval": 30,
    }

    # REDIS_PASSWORD only fills in a password missing from the URL
    password = os.getenv("REDIS_PASSWORD")
    if password and not urlparse(redis_url).password:
        kwargs["password"] = password
    return kwargs


class RedisClient:
    """Process-wide Redis client, built lazily from REDIS_URL."""

    _instance: Optional[redis.Redis] = None

    @classmethod
    def get_client(cls) -> redis.Redis:
        """Return the shared client.

        Raises:
            ValueError: REDIS_URL unset in production (a per-instance
                localhost Redis would silently break cross-instance verification)
        """
        if cls._instance is None:
            redis_url = os.getenv("REDIS_URL")
            if not redis_url:
                if is_production_env():
                    raise ValueError("REDIS_URL is required in production.")
                redis_url = _LOCAL_REDIS_URL

            cls._instance = redis.from_url(redis_url, **_connection_kwargs(redis_url))
            logger.debug(
                "Redis client created",
                extra={"event": "redis.client.created", "scheme": urlparse(redis_url).scheme},
            )

        return cls._instance

    @classmethod
    def reset(cls) -> None:
        if cls._instance is not None:
            cls._instance.close()
            cls._instance = None


def get_redis() -> redis.Redis:
    """FastAPI dependency: the shared Redis client."""
    return RedisClient.get_client()


def redis_key(*parts: str) -> str:
    """Build a namespaced key: redis_key("cred", "otp", digest) -> "bndy:cred:otp:<digest>".

    REDIS_KEY_PREFIX lets several environments share one Redis without collisions.
    """
    prefix = os.getenv("REDIS_KEY_PREFIX", "bndy")
    return ":".join((prefix, *parts))
