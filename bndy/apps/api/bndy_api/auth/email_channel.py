"""Email Channel: time-limited magic link.

FLOW:
1. request_link(email) emails {API_BASE_URL}/auth/magic/{token}
2. consume_link(token) deletes the token (true one-time use) and resolves
   the email to the canonical user

identity_preview() only reads the users table to choose between a "welcome"
and a "welcome back" message; it never creates or consumes a credential.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from bndy_api.auth import identity_store
from bndy_api.auth.contacts import normalize_email, normalize_phone, peppered_hash
from bndy_api.auth.credential_store import CredentialKind, EphemeralCredentialStore
from bndy_api.auth.errors import CredentialExpired, CredentialNotFound, DeliveryFailed, InvalidInput
from bndy_api.auth.identity_store import EmailProof, IdentityPreview, ResolvedIdentity
from bndy_api.auth.notifier import Notifier
from bndy_api.auth.redirects import post_auth_redirect, safe_redirect_path
from bndy_api.auth.throttle import RequestThrottle
from bndy_api.config.env import get_api_base_url

logger = logging.getLogger(__name__)

EMAIL_TEMPLATE = (
    "Hi,\n\n"
    "Use the link below to sign in to bndy. It works once and expires in 5 minutes.\n\n"
    "{link}\n\n"
    "If you didn't ask for this, you can ignore this email."
)


@dataclass(frozen=True)
class LinkSignIn:
    identity: ResolvedIdentity
    redirect_url: str


class EmailChannel:
    def __init__(
        self,
        store: EphemeralCredentialStore,
        throttle: RequestThrottle,
        notifier: Notifier,
        link_base_url: Optional[str] = None,
    ):
        self.store = store
        self.throttle = throttle
        self.notifier = notifier
        self.link_base_url = (link_base_url or get_api_base_url()).rstrip("/")

    def magic_link(self, token: str) -> str:
        return f"{self.link_base_url}/auth/magic/{token}"

    def request_link(self, raw_email: str, redirect: Optional[str] = None) -> float:
        """Email a one-time sign-in link.

        Returns:
            Link expiry (epoch seconds)

        Raises:
            InvalidInput: Malformed email
            RateLimited: Too many requests for this address in the current window
            DeliveryFailed: Email could not be sent (the link stays valid until expiry)
        """
        email = normalize_email(raw_email)
        destination_hash = peppered_hash(email)

        self.throttle.hit("email", destination_hash)

        issued = self.store.issue(
            CredentialKind.MAGIC_LINK,
            destination=email,
            redirect=safe_redirect_path(redirect),
        )

        try:
            delivered = self.notifier.send(email, EMAIL_TEMPLATE.format(link=self.magic_link(issued.token)))
        except Exception as e:
            logger.error(
                "Email notifier raised",
                extra={
                    "event": "auth.magic.delivery_error",
                    "destination_hash": destination_hash,
                    "error_type": type(e).__name__,
                },
            )
            delivered = False

        if not delivered:
            raise DeliveryFailed("We couldn't send an email to that address. Please try again.")

        logger.info(
            "Magic link requested",
            extra={"event": "auth.magic.requested", "destination_hash": destination_hash},
        )
        return issued.expires_at

    def identity_preview(
        self,
        db: Session,
        raw_email: Optional[str] = None,
        raw_phone: Optional[str] = None,
    ) -> IdentityPreview:
        """Does an account exist for this email/phone? Read-only.

        Raises:
            InvalidInput: Neither value given, or the given value is malformed
        """
        if raw_email:
            return identity_store.preview(db, email=normalize_email(raw_email))
        if raw_phone:
            return identity_store.preview(db, phone=normalize_phone(raw_phone))
        raise InvalidInput("Provide an email address or a phone number")

    def consume_link(self, db: Session, token: str) -> LinkSignIn:
        """Consume the magic-link token and resolve the email to the canonical user.

        Raises:
            CredentialNotFound: Unknown or already used link (error code invalid_code)
            CredentialExpired: Link past its 5-minute window (error code expired_link)
        """
        try:
            consumed = self.store.consume(CredentialKind.MAGIC_LINK, token)
        except CredentialExpired:
            raise CredentialExpired("This sign-in link has expired", error_code="expired_link")

        if not consumed.destination:
            raise CredentialNotFound("Credential not found or already used")

        resolved = identity_store.resolve_or_create(db, EmailProof(email=consumed.destination))

        logger.info(
            "Magic link consumed",
            extra={
                "event": "auth.magic.consumed",
                "destination_hash": consumed.destination_hash,
                "resolved_user_id": resolved.user_id,
                "created": resolved.created,
            },
        )

        return LinkSignIn(
            identity=resolved,
            redirect_url=post_auth_redirect(consumed.redirect, resolved.user.profile_completed),
        )
