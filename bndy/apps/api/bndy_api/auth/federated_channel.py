"""Federated Channel: OAuth 2.0 authorization-code sign-in.

CSRF defense: initiate() stores a single-use state in the shared Redis store
(10 minutes). callback() validates and consumes that state BEFORE the
provider is contacted; an unknown, expired or replayed state never reaches
the Identity Provider Bridge.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from bndy_api.auth.credential_store import CredentialKind, EphemeralCredentialStore
from bndy_api.auth.errors import (
    CredentialExpired,
    CredentialNotFound,
    InvalidInput,
    InvalidState,
    ProviderExchangeFailed,
)
from bndy_api.auth.identity_store import FederatedProof, ResolvedIdentity, resolve_or_create
from bndy_api.auth.provider_bridge import ProviderRegistry
from bndy_api.auth.redirects import post_auth_redirect, safe_redirect_path

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FederatedSignIn:
    identity: ResolvedIdentity
    provider: str
    redirect_url: str


class FederatedChannel:
    def __init__(self, store: EphemeralCredentialStore, providers: ProviderRegistry):
        self.store = store
        self.providers = providers

    def initiate(self, provider: str, redirect: Optional[str] = None) -> str:
        """Create an OAuth state and return the provider authorization URL.

        Raises:
            InvalidInput: Provider not configured
        """
        bridge = self.providers.get(provider)
        if bridge is None:
            raise InvalidInput(f"Unknown identity provider: {provider}")

        issued = self.store.issue(
            CredentialKind.OAUTH_STATE,
            redirect=safe_redirect_path(redirect),
            provider=bridge.name,
        )

        logger.info(
            "Federated sign-in initiated",
            extra={"event": "auth.federated.initiated", "provider": bridge.name},
        )
        return bridge.authorization_url(issued.token)

    def callback(self, db: Session, code: Optional[str], state: Optional[str]) -> FederatedSignIn:
        """Validate state, exchange the code, resolve the canonical user.

        Raises:
            InvalidState: State missing, unknown, expired or already used
            ProviderExchangeFailed: Missing code, or the provider exchange failed
        """
        if not state:
            raise InvalidState("Missing state")

        try:
            consumed = self.store.consume(CredentialKind.OAUTH_STATE, state)
        except (CredentialNotFound, CredentialExpired) as e:
            logger.warning(
                "OAuth state rejected",
                extra={"event": "auth.federated.invalid_state", "reason": type(e).__name__},
            )
            raise InvalidState("Sign-in request is invalid or has expired")

        bridge = self.providers.get(consumed.provider or "")
        if bridge is None:
            raise InvalidState("Sign-in request references an unknown provider")

        if not code:
            raise ProviderExchangeFailed("Authorization code missing")

        claims = bridge.exchange(code)

        resolved = resolve_or_create(
            db,
            FederatedProof(
                provider=claims.provider,
                subject=claims.subject,
                email=claims.email.lower() if claims.email else None,
                email_verified=claims.email_verified,
                name=claims.name,
                given_name=claims.given_name,
                family_name=claims.family_name,
                avatar_url=claims.picture,
            ),
        )

        logger.info(
            "Federated sign-in completed",
            extra={
                "event": "auth.federated.completed",
                "provider": claims.provider,
                "resolved_user_id": resolved.user_id,
                "created": resolved.created,
            },
        )

        return FederatedSignIn(
            identity=resolved,
            provider=claims.provider,
            redirect_url=post_auth_redirect(consumed.redirect, resolved.user.profile_completed),
        )
