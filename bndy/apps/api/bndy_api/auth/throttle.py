"""Credential request throttling.

Fixed-window counter per (channel, destination hash):
  INCR first, set EXPIRE on the first hit of a window, compare to the limit.
The counter key lives in the shared Redis, so the limit holds across
instances. The destination is only ever referenced by its HMAC digest.
"""

import logging
from typing import Optional

import redis

from bndy_api.auth.errors import RateLimited
from bndy_api.config.env import (
    get_credential_request_limit,
    get_credential_request_window_seconds,
)
from bndy_api.db.redis_client import redis_key

logger = logging.getLogger(__name__)


class RequestThrottle:
    """Limit how often one destination can be sent a code or link."""

    def __init__(
        self,
        redis_client: redis.Redis,
        limit: Optional[int] = None,
        window_seconds: Optional[int] = None,
    ):
        self.redis = redis_client
        self.limit = limit if limit is not None else get_credential_request_limit()
        self.window_seconds = (
            window_seconds if window_seconds is not None else get_credential_request_window_seconds()
        )

    def hit(self, channel: str, destination_hash: str) -> int:
        """Count one request; raise once the window's limit is exceeded.

        Returns:
            Requests counted in the current window (including this one)

        Raises:
            RateLimited: With retry_after set to the seconds left in the window
        """
        key = redis_key("throttle", channel, destination_hash)

        count = self.redis.incr(key)
        if count == 1:
            self.redis.expire(key, self.window_seconds)

        if count > self.limit:
            ttl = self.redis.ttl(key)
            if ttl < 0:
                # Key lost its expiry (crash between INCR and EXPIRE): re-arm it
                self.redis.expire(key, self.window_seconds)
                ttl = self.window_seconds
            retry_after = max(1, ttl)

            logger.warning(
                "Credential request throttled",
                extra={
                    "event": "credential.throttled",
                    "channel": channel,
                    "destination_hash": destination_hash,
                    "count": count,
                    "limit": self.limit,
                    "retry_after": retry_after,
                },
            )
            raise RateLimited(
                f"Too many requests. Try again in {retry_after} seconds.",
                retry_after=retry_after,
            )

        return count
