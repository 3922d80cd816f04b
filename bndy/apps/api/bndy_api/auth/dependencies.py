"""FastAPI dependencies for the authentication boundary.

Channel handlers are assembled per request from shared, stateless
collaborators (Redis, notifiers, provider registry). Tests swap any of them
through ``app.dependency_overrides``.
"""

import logging
from typing import Optional

import redis
from fastapi import Depends, Request
from sqlalchemy.orm import Session

from bndy_api.auth import identity_store
from bndy_api.auth.credential_store import EphemeralCredentialStore
from bndy_api.auth.email_channel import EmailChannel
from bndy_api.auth.errors import SessionInvalid
from bndy_api.auth.federated_channel import FederatedChannel
from bndy_api.auth.notifier import Notifier, get_email_notifier, get_sms_notifier
from bndy_api.auth.phone_channel import PhoneChannel
from bndy_api.auth.provider_bridge import ProviderRegistry, get_provider_registry
from bndy_api.auth.session_issuer import SessionClaims, SessionIssuer, get_session_issuer
from bndy_api.auth.throttle import RequestThrottle
from bndy_api.context import user_id_var
from bndy_api.db.models import User
from bndy_api.db.redis_client import get_redis
from bndy_api.db.session import get_db

logger = logging.getLogger(__name__)


def get_credential_store(redis_client: redis.Redis = Depends(get_redis)) -> EphemeralCredentialStore:
    return EphemeralCredentialStore(redis_client)


def get_request_throttle(redis_client: redis.Redis = Depends(get_redis)) -> RequestThrottle:
    return RequestThrottle(redis_client)


def get_phone_channel(
    store: EphemeralCredentialStore = Depends(get_credential_store),
    throttle: RequestThrottle = Depends(get_request_throttle),
    notifier: Notifier = Depends(get_sms_notifier),
) -> PhoneChannel:
    return PhoneChannel(store, throttle, notifier)


def get_email_channel(
    store: EphemeralCredentialStore = Depends(get_credential_store),
    throttle: RequestThrottle = Depends(get_request_throttle),
    notifier: Notifier = Depends(get_email_notifier),
) -> EmailChannel:
    return EmailChannel(store, throttle, notifier)


def get_federated_channel(
    store: EphemeralCredentialStore = Depends(get_credential_store),
    providers: ProviderRegistry = Depends(get_provider_registry),
) -> FederatedChannel:
    return FederatedChannel(store, providers)


def get_session_claims(
    request: Request,
    issuer: SessionIssuer = Depends(get_session_issuer),
) -> SessionClaims:
    """Validate the session cookie.

    Raises:
        SessionInvalid: No cookie, or a cookie that fails verification
        SessionExpired: Cookie past its expiry
    """
    token: Optional[str] = request.cookies.get(issuer.cookie_name)
    claims = issuer.validate(token)
    user_id_var.set(claims.user_id)
    return claims


def get_current_user_id(claims: SessionClaims = Depends(get_session_claims)) -> str:
    return claims.user_id


def get_current_user(
    claims: SessionClaims = Depends(get_session_claims),
    db: Session = Depends(get_db),
) -> User:
    """Load the session's user. A session for a deleted account is invalid."""
    user = identity_store.get_user(db, claims.user_id)
    if user is None:
        logger.warning(
            "Session references missing user",
            extra={"event": "session.user_missing", "session_user_id": claims.user_id},
        )
        raise SessionInvalid("Invalid session")
    return user
