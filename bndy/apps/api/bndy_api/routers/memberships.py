"""Membership endpoints (band context).

Separate from /api/me: authentication only proves who the caller is, this
router answers which artists they belong to and how they appear in each.
"""

import logging

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from bndy_api.auth.dependencies import get_current_user_id
from bndy_api.db.session import get_db
from bndy_api.memberships import resolver
from bndy_api.memberships.resolver import ArtistData, ResolvedMembership
from bndy_api.schemas import (
    ArtistCreateRequest,
    ArtistMembersResponse,
    ArtistSummary,
    MembershipProfilePatch,
    MembershipUserRef,
    MyMembershipsResponse,
    OverrideFlags,
    ResolvedMembershipResponse,
)

router = APIRouter(prefix="/api", tags=["memberships"])
logger = logging.getLogger(__name__)


def _serialize(resolved: ResolvedMembership) -> ResolvedMembershipResponse:
    membership = resolved.membership
    artist = resolved.artist
    return ResolvedMembershipResponse(
        id=membership.id,
        membership_id=membership.id,
        user_id=membership.user_id,
        artist_id=membership.artist_id,
        role=membership.role,
        membership_type=membership.membership_type,
        status=membership.status,
        display_name=resolved.value("display_name"),
        avatar_url=resolved.value("avatar_url"),
        instrument=resolved.value("instrument"),
        bio=resolved.value("bio"),
        icon=membership.icon,
        color=membership.color,
        overrides=OverrideFlags(**resolved.overrides()),
        joined_at=membership.joined_at,
        artist=ArtistSummary(
            id=artist.id,
            name=artist.name,
            slug=artist.slug,
            artist_type=artist.artist_type,
            location=artist.location,
            bio=artist.bio,
            genres=list(artist.genres or []),
        ),
    )


@router.get("/memberships/me", response_model=MyMembershipsResponse)
def my_memberships(
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> MyMembershipsResponse:
    """Every artist the caller belongs to, with inherited profile fields resolved."""
    memberships = resolver.list_memberships(db, user_id)
    return MyMembershipsResponse(
        user=MembershipUserRef(id=user_id),
        artists=[_serialize(m) for m in memberships],
    )


@router.patch("/memberships/{membership_id}", response_model=ResolvedMembershipResponse)
def patch_membership(
    membership_id: str,
    body: MembershipProfilePatch,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> ResolvedMembershipResponse:
    """Set or clear per-artist overrides.

    Omitted fields are unchanged; ``null`` clears the override so the value is
    inherited from the user profile again.
    """
    changes = body.model_dump(exclude_unset=True)
    resolved = resolver.update_membership_profile(db, user_id, membership_id, changes)
    return _serialize(resolved)


@router.post("/artists", status_code=status.HTTP_201_CREATED, response_model=ResolvedMembershipResponse)
def create_artist(
    body: ArtistCreateRequest,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> ResolvedMembershipResponse:
    """Create an artist with the caller as owner (artist + membership, one transaction)."""
    overrides = {
        "display_name": body.member_display_name,
        "avatar_url": body.member_avatar_url,
        "instrument": body.member_instrument,
        "bio": body.member_bio,
        "icon": body.member_icon,
        "color": body.member_color,
    }
    resolved = resolver.create_artist_with_owner_membership(
        db,
        user_id,
        ArtistData(
            name=body.name,
            artist_type=body.artist_type,
            location=body.location,
            bio=body.bio,
            genres=tuple(body.genres),
        ),
        profile_overrides={k: v for k, v in overrides.items() if v is not None},
        membership_type=body.membership_type,
    )
    return _serialize(resolved)


@router.get("/artists/{artist_id}/members", response_model=ArtistMembersResponse)
def artist_members(
    artist_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> ArtistMembersResponse:
    members = resolver.list_artist_members(db, user_id, artist_id)
    return ArtistMembersResponse(artist_id=artist_id, members=[_serialize(m) for m in members])
