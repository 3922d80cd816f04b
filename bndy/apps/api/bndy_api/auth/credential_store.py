"""Ephemeral credential store (Redis).

Single-use, self-expiring records for OTP codes, magic-link tokens and OAuth
state. Every API instance shares the same Redis, so a credential issued by
one instance can be verified by any other.

Layout: one Redis HASH per credential at ``bndy:cred:{kind}:{HMAC(token)}``.

    kind               otp | magic | oauth_state
    destination_hash   HMAC of the normalized phone/email
    destination_sealed JWE-sealed phone/email (never stored in clear)
    secret_hash        HMAC(token:code), OTP only
    created_at         epoch seconds
    expires_at         epoch seconds (validity window end)
    attempts           wrong-code counter, OTP only
    redirect           post-auth redirect target (magic link, OAuth state)
    provider           identity provider name (OAuth state)

The Redis TTL is the validity window plus a grace period. Within the grace
period an entry still exists but is past ``expires_at``, so a late
verification reports CredentialExpired instead of CredentialNotFound. After
the grace period Redis drops the key on its own.

Consumption is one Lua script: lookup, expiry check, secret check and delete
run atomically, so two concurrent verifications of the same token can never
both succeed.
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

import redis

from bndy_api.auth.contacts import generate_opaque_token, peppered_hash
from bndy_api.auth.errors import CredentialExpired, CredentialMismatch, CredentialNotFound
from bndy_api.auth.sealing import SealError, seal, unseal
from bndy_api.db.redis_client import redis_key

logger = logging.getLogger(__name__)


class CredentialKind(str, Enum):
    OTP = "otp"
    MAGIC_LINK = "magic"
    OAUTH_STATE = "oauth_state"


VALIDITY_SECONDS: dict[CredentialKind, int] = {
    CredentialKind.OTP: 5 * 60,
    CredentialKind.MAGIC_LINK: 5 * 60,
    CredentialKind.OAUTH_STATE: 10 * 60,
}

# Extra Redis TTL so "expired" stays distinguishable from "never existed"
EXPIRED_GRACE_SECONDS = 10 * 60

# Wrong OTP codes tolerated before the credential is burned
MAX_ATTEMPTS = 5

# KEYS[1] = credential key
# ARGV[1] = presented secret hash ("" when the kind has no secret)
# ARGV[2] = now (epoch seconds)
# ARGV[3] = max attempts
CONSUME_SCRIPT = """
if redis.call('EXISTS', KEYS[1]) == 0 then
  return {'not_found'}
end
local expires_at = tonumber(redis.call('HGET', KEYS[1], 'expires_at'))
if expires_at == nil or expires_at <= tonumber(ARGV[2]) then
  redis.call('DEL', KEYS[1])
  return {'expired'}
end
local stored = redis.call('HGET', KEYS[1], 'secret_hash')
if stored and stored ~= ARGV[1] then
  local attempts = redis.call('HINCRBY', KEYS[1], 'attempts', 1)
  if attempts >= tonumber(ARGV[3]) then
    redis.call('DEL', KEYS[1])
  end
  return {'mismatch'}
end
local record = redis.call('HGETALL', KEYS[1])
redis.call('DEL', KEYS[1])
return {'ok', record}
"""


@dataclass(frozen=True)
class IssuedCredential:
    """Freshly stored credential. ``token`` is the only copy of the opaque token."""

    kind: CredentialKind
    token: str
    expires_at: float


@dataclass(frozen=True)
class ConsumedCredential:
    kind: CredentialKind
    destination: Optional[str]
    destination_hash: Optional[str]
    redirect: Optional[str]
    provider: Optional[str]
    created_at: float


def _secret_hash(token: str, secret: str) -> str:
    # Bound to the token so one code can never verify another request
    return peppered_hash(f"{token}:{secret}")


class EphemeralCredentialStore:
    """Issue and atomically consume single-use credentials."""

    def __init__(self, redis_client: redis.Redis, clock: Callable[[], float] = time.time):
        self.redis = redis_client
        self.clock = clock
        self._consume_script = redis_client.register_script(CONSUME_SCRIPT)

    @staticmethod
    def _key(kind: CredentialKind, token: str) -> str:
        return redis_key("cred", kind.value, peppered_hash(token))

    def issue(
        self,
        kind: CredentialKind,
        destination: Optional[str] = None,
        secret: Optional[str] = None,
        redirect: Optional[str] = None,
        provider: Optional[str] = None,
    ) -> IssuedCredential:
        """Store a new credential under a fresh opaque token.

        Args:
            kind: Credential kind (selects the validity window)
            destination: Normalized phone/email the credential was sent to
            secret: Secret the verifier must present (OTP code)
            redirect: Post-auth redirect target to hand back on consume
            provider: Identity provider name (OAuth state)

        Returns:
            IssuedCredential carrying the opaque token
        """
        token = generate_opaque_token()
        now = self.clock()
        window = VALIDITY_SECONDS[kind]
        expires_at = now + window

        record: dict[str, str] = {
            "kind": kind.value,
            "created_at": repr(now),
            "expires_at": repr(expires_at),
        }
        if destination is not None:
            record["destination_hash"] = peppered_hash(destination)
            record["destination_sealed"] = seal(destination)
        if secret is not None:
            record["secret_hash"] = _secret_hash(token, secret)
            record["attempts"] = "0"
        if redirect is not None:
            record["redirect"] = redirect
        if provider is not None:
            record["provider"] = provider

        key = self._key(kind, token)
        pipe = self.redis.pipeline(transaction=True)
        pipe.hset(key, mapping=record)
        pipe.expire(key, window + EXPIRED_GRACE_SECONDS)
        pipe.execute()

        logger.info(
            "Ephemeral credential issued",
            extra={
                "event": "credential.issued",
                "kind": kind.value,
                "destination_hash": record.get("destination_hash"),
                "ttl_seconds": window,
            },
        )

        return IssuedCredential(kind=kind, token=token, expires_at=expires_at)

    def consume(
        self,
        kind: CredentialKind,
        token: str,
        secret: Optional[str] = None,
    ) -> ConsumedCredential:
        """Atomically verify and delete a credential.

        Raises:
            CredentialNotFound: Unknown, already consumed, or burned token
            CredentialExpired: Past its validity window (even if the secret matches)
            CredentialMismatch: Wrong secret (the attempt is counted)
        """
        if not token:
            raise CredentialNotFound("Credential not found")

        presented = _secret_hash(token, secret) if secret is not None else ""
        result = self._consume_script(
            keys=[self._key(kind, token)],
            args=[presented, repr(self.clock()), MAX_ATTEMPTS],
        )
        status = _as_str(result[0])

        if status == "not_found":
            raise CredentialNotFound("Credential not found or already used")
        if status == "expired":
            logger.info(
                "Ephemeral credential expired",
                extra={"event": "credential.expired", "kind": kind.value},
            )
            raise CredentialExpired("Credential has expired")
        if status == "mismatch":
            logger.info(
                "Ephemeral credential mismatch",
                extra={"event": "credential.mismatch", "kind": kind.value},
            )
            raise CredentialMismatch("Code does not match")

        fields = _pairs_to_dict(result[1])

        destination = None
        sealed = fields.get("destination_sealed")
        if sealed:
            try:
                destination = unseal(sealed)
            except SealError:
                # Record written under a different seal key: unusable, already deleted
                logger.warning(
                    "Ephemeral credential destination could not be unsealed",
                    extra={"event": "credential.unseal_failed", "kind": kind.value},
                )
                raise CredentialNotFound("Credential not found or already used")

        logger.info(
            "Ephemeral credential consumed",
            extra={
                "event": "credential.consumed",
                "kind": kind.value,
                "destination_hash": fields.get("destination_hash"),
            },
        )

        return ConsumedCredential(
            kind=kind,
            destination=destination,
            destination_hash=fields.get("destination_hash"),
            redirect=fields.get("redirect"),
            provider=fields.get("provider"),
            created_at=float(fields.get("created_at", "0")),
        )

    def exists(self, kind: CredentialKind, token: str) -> bool:
        """Read-only presence check (never consumes)."""
        return bool(self.redis.exists(self._key(kind, token)))


def _as_str(value) -> str:
    return value.decode("utf-8") if isinstance(value, bytes) else value


def _pairs_to_dict(flat: list) -> dict[str, str]:
    items = [_as_str(v) for v in flat]
    return dict(zip(items[::2], items[1::2]))
