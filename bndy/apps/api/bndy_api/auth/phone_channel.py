"""Phone Channel: one-time code delivered by SMS.

FLOW:
1. request_code(phone) -> opaque request token (the code itself goes by SMS)
2. verify_code(token, code) -> canonical user (code consumed atomically)

SECURITY:
- The code is never returned to the caller or logged
- The request token and the code are both required; the code hash is bound
  to the token
- Wrong codes count towards MAX_ATTEMPTS, after which the code is burned
"""

import logging
from dataclasses import dataclass

from sqlalchemy.orm import Session

from bndy_api.auth.contacts import generate_otp_code, mask_phone, normalize_phone, peppered_hash
from bndy_api.auth.credential_store import CredentialKind, EphemeralCredentialStore
from bndy_api.auth.errors import CredentialNotFound, DeliveryFailed
from bndy_api.auth.identity_store import PhoneProof, ResolvedIdentity, resolve_or_create
from bndy_api.auth.notifier import Notifier
from bndy_api.auth.throttle import RequestThrottle

logger = logging.getLogger(__name__)

SMS_TEMPLATE = "Your bndy code is {code}. It expires in 5 minutes. Never share it."


@dataclass(frozen=True)
class CodeRequest:
    request_token: str
    sent_to: str
    expires_at: float


class PhoneChannel:
    def __init__(
        self,
        store: EphemeralCredentialStore,
        throttle: RequestThrottle,
        notifier: Notifier,
    ):
        self.store = store
        self.throttle = throttle
        self.notifier = notifier

    def request_code(self, raw_phone: str) -> CodeRequest:
        """Send a 6-digit code to ``raw_phone``.

        Raises:
            InvalidInput: Malformed phone number
            RateLimited: Too many requests for this phone in the current window
            DeliveryFailed: SMS could not be sent (the code stays valid until expiry)
        """
        phone = normalize_phone(raw_phone)
        destination_hash = peppered_hash(phone)

        self.throttle.hit("phone", destination_hash)

        code = generate_otp_code()
        issued = self.store.issue(CredentialKind.OTP, destination=phone, secret=code)

        try:
            delivered = self.notifier.send(phone, SMS_TEMPLATE.format(code=code))
        except Exception as e:
            logger.error(
                "SMS notifier raised",
                extra={
                    "event": "auth.otp.delivery_error",
                    "destination_hash": destination_hash,
                    "error_type": type(e).__name__,
                },
            )
            delivered = False

        if not delivered:
            raise DeliveryFailed("We couldn't send a text to that number. Please try again.")

        logger.info(
            "OTP requested",
            extra={"event": "auth.otp.requested", "destination_hash": destination_hash},
        )

        return CodeRequest(
            request_token=issued.token,
            sent_to=mask_phone(phone),
            expires_at=issued.expires_at,
        )

    def verify_code(self, db: Session, request_token: str, code: str) -> ResolvedIdentity:
        """Consume the code and resolve the phone to the canonical user.

        Raises:
            CredentialNotFound: Unknown, used or burned request token
            CredentialExpired: Code past its 5-minute window
            CredentialMismatch: Wrong code
        """
        consumed = self.store.consume(CredentialKind.OTP, request_token, secret=(code or "").strip())

        if not consumed.destination:
            raise CredentialNotFound("Credential not found or already used")

        resolved = resolve_or_create(db, PhoneProof(phone=consumed.destination))

        logger.info(
            "OTP verified",
            extra={
                "event": "auth.otp.verified",
                "destination_hash": consumed.destination_hash,
                "resolved_user_id": resolved.user_id,
                "created": resolved.created,
            },
        )
        return resolved
