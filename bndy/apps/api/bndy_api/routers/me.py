"""Current user endpoints.

/api/me returns the canonical user only. Membership data lives behind
/api/memberships/me (separate router, separate package).
"""

import logging

from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session

from bndy_api.auth import identity_store
from bndy_api.auth.dependencies import get_current_user
from bndy_api.auth.session_issuer import SessionIssuer, get_session_issuer
from bndy_api.db.models import User
from bndy_api.db.session import get_db
from bndy_api.schemas import MeResponse, OkResponse, ProfileUpdateRequest, UserResponse

router = APIRouter(prefix="/api/me", tags=["me"])
logger = logging.getLogger(__name__)


@router.get("", response_model=MeResponse)
def get_me(user: User = Depends(get_current_user)) -> MeResponse:
    return MeResponse(user=UserResponse.from_user(user))


@router.put("", response_model=MeResponse)
def update_me(
    body: ProfileUpdateRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> MeResponse:
    """Update profile fields and recompute ``profileCompleted``.

    Only fields present in the request body are touched.
    """
    changes = body.model_dump(exclude_unset=True)
    user = identity_store.update_profile(db, user, changes)
    return MeResponse(user=UserResponse.from_user(user))


@router.delete("", response_model=OkResponse)
def delete_me(
    response: Response,
    user: User = Depends(get_current_user),
    issuer: SessionIssuer = Depends(get_session_issuer),
    db: Session = Depends(get_db),
) -> OkResponse:
    """Delete the account (provider links and memberships cascade) and sign out."""
    identity_store.delete_user(db, user)
    issuer.revoke().apply(response)
    return OkResponse()
