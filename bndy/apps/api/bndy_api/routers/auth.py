"""Auth endpoints: phone OTP, email magic link, federated OAuth, logout.

Endpoints:
- POST /auth/phone/request-otp: Send a 6-digit code by SMS (202)
- POST /auth/phone/verify-otp: Verify the code, set the session cookie
- POST /auth/email/request-magic: Email a one-time sign-in link (202)
- GET /auth/magic/{token}: Consume the link, set cookie, 303 to the app
- POST /auth/check-identity: Does an account exist for this email/phone?
- GET /auth/callback: OAuth callback, set cookie, 303 to the app
- GET /auth/{provider}: 302 to the provider's consent page
- POST /auth/logout: Clear the session cookie

SECURITY:
- Redirect endpoints never render error detail; failures land on the login
  page with a coarse ``?error=<code>``
- JSON endpoints return RFC 9457 problem details (see main.py handlers)
- The session cookie is the only credential ever returned to the browser
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Response, status
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from bndy_api.auth.credential_store import VALIDITY_SECONDS, CredentialKind
from bndy_api.auth.dependencies import get_email_channel, get_federated_channel, get_phone_channel
from bndy_api.auth.email_channel import EmailChannel
from bndy_api.auth.errors import AuthError, InvalidInput
from bndy_api.auth.federated_channel import FederatedChannel
from bndy_api.auth.phone_channel import PhoneChannel
from bndy_api.auth.redirects import login_error_redirect
from bndy_api.auth.session_issuer import SessionIssuer, get_session_issuer
from bndy_api.context import auth_channel_var
from bndy_api.db.models import User
from bndy_api.db.session import get_db
from bndy_api.schemas import (
    CheckIdentityRequest,
    CheckIdentityResponse,
    MagicLinkRequest,
    MagicLinkResponse,
    MeResponse,
    OkResponse,
    OtpRequest,
    OtpRequestResponse,
    OtpVerifyRequest,
    UserResponse,
)

router = APIRouter(prefix="/auth", tags=["auth"])
logger = logging.getLogger(__name__)


def _start_session(issuer: SessionIssuer, user: User, response: Response) -> None:
    """Sign a session for ``user`` and attach the cookie to ``response``."""
    issued = issuer.issue(user.id, {"name": user.display_name, "email": user.email})
    issued.cookie.apply(response)


# ============================================================================
# Phone channel
# ============================================================================


@router.post("/phone/request-otp", status_code=status.HTTP_202_ACCEPTED, response_model=OtpRequestResponse)
def request_otp(
    body: OtpRequest,
    channel: PhoneChannel = Depends(get_phone_channel),
) -> OtpRequestResponse:
    """Send a one-time code by SMS.

    The code is never part of the response; the client keeps the opaque
    request token and sends it back with the code.
    """
    auth_channel_var.set("phone")
    result = channel.request_code(body.phone)
    return OtpRequestResponse(
        request_token=result.request_token,
        sent_to=result.sent_to,
        expires_in=VALIDITY_SECONDS[CredentialKind.OTP],
    )


@router.post("/phone/verify-otp", response_model=MeResponse)
def verify_otp(
    body: OtpVerifyRequest,
    response: Response,
    channel: PhoneChannel = Depends(get_phone_channel),
    issuer: SessionIssuer = Depends(get_session_issuer),
    db: Session = Depends(get_db),
) -> MeResponse:
    auth_channel_var.set("phone")
    resolved = channel.verify_code(db, body.request_token, body.code)
    _start_session(issuer, resolved.user, response)
    return MeResponse(user=UserResponse.from_user(resolved.user))


# ============================================================================
# Email channel
# ============================================================================


@router.post("/email/request-magic", status_code=status.HTTP_202_ACCEPTED, response_model=MagicLinkResponse)
def request_magic_link(
    body: MagicLinkRequest,
    channel: EmailChannel = Depends(get_email_channel),
) -> MagicLinkResponse:
    auth_channel_var.set("email")
    channel.request_link(body.email, body.redirect)
    return MagicLinkResponse(sent=True, expires_in=VALIDITY_SECONDS[CredentialKind.MAGIC_LINK])


@router.get("/magic/{token}")
def consume_magic_link(
    token: str,
    channel: EmailChannel = Depends(get_email_channel),
    issuer: SessionIssuer = Depends(get_session_issuer),
    db: Session = Depends(get_db),
) -> RedirectResponse:
    """Landing URL from the email. Always answers with a 303 redirect."""
    auth_channel_var.set("email")
    try:
        sign_in = channel.consume_link(db, token)
    except AuthError as e:
        logger.info(
            "Magic link rejected",
            extra={"event": "auth.magic.rejected", "error_code": e.error_code},
        )
        return RedirectResponse(login_error_redirect(e.error_code), status_code=status.HTTP_303_SEE_OTHER)

    redirect = RedirectResponse(sign_in.redirect_url, status_code=status.HTTP_303_SEE_OTHER)
    _start_session(issuer, sign_in.identity.user, redirect)
    return redirect


@router.post("/check-identity", response_model=CheckIdentityResponse)
def check_identity(
    body: CheckIdentityRequest,
    channel: EmailChannel = Depends(get_email_channel),
    db: Session = Depends(get_db),
) -> CheckIdentityResponse:
    """Read-only existence check used to pick the welcome copy."""
    found = channel.identity_preview(db, raw_email=body.email, raw_phone=body.phone)
    return CheckIdentityResponse(exists=found.exists, display_name=found.display_name)


# ============================================================================
# Federated channel
# ============================================================================


# Declared before /{provider} so "callback" is never taken for a provider name
@router.get("/callback")
def oauth_callback(
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    channel: FederatedChannel = Depends(get_federated_channel),
    issuer: SessionIssuer = Depends(get_session_issuer),
    db: Session = Depends(get_db),
) -> RedirectResponse:
    """Provider redirect target. Always answers with a 303 redirect."""
    auth_channel_var.set("federated")
    if error:
        # Consent denied or provider-side failure; the state is still burned below
        logger.info("Provider returned an error", extra={"event": "auth.federated.provider_denied"})
        code = None

    try:
        sign_in = channel.callback(db, code, state)
    except AuthError as e:
        logger.info(
            "Federated callback rejected",
            extra={"event": "auth.federated.rejected", "error_code": e.error_code},
        )
        return RedirectResponse(login_error_redirect(e.error_code), status_code=status.HTTP_303_SEE_OTHER)

    redirect = RedirectResponse(sign_in.redirect_url, status_code=status.HTTP_303_SEE_OTHER)
    _start_session(issuer, sign_in.identity.user, redirect)
    return redirect


@router.get("/{provider}")
def oauth_initiate(
    provider: str,
    redirect: Optional[str] = None,
    channel: FederatedChannel = Depends(get_federated_channel),
) -> RedirectResponse:
    auth_channel_var.set("federated")
    try:
        authorization_url = channel.initiate(provider, redirect)
    except InvalidInput:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown identity provider: {provider}")
    return RedirectResponse(authorization_url, status_code=status.HTTP_302_FOUND)


# ============================================================================
# Logout
# ============================================================================


@router.post("/logout", response_model=OkResponse)
def logout(response: Response, issuer: SessionIssuer = Depends(get_session_issuer)) -> OkResponse:
    """Clear the session cookie. Succeeds with or without a session."""
    issuer.revoke().apply(response)
    logger.info("Logged out", extra={"event": "session.revoked"})
    return OkResponse()
