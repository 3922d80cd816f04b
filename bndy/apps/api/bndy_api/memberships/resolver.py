"""Membership Resolver.

Profile inheritance: each override column on a membership (display_name,
avatar_url, instrument, bio) is NULL unless the member chose a per-group
value. Reads resolve ``membership.field ?? user.field`` and report where the
value came from; writes never copy user values into the membership, so
clearing an override (back to NULL) restores inheritance.
"""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from bndy_api.db.models import ArtistGroup, Membership, User
from bndy_api.memberships.errors import (
    ArtistSlugConflict,
    InvalidArtistData,
    MembershipForbidden,
    MembershipNotFound,
)

logger = logging.getLogger(__name__)

OVERRIDE_FIELDS = ("display_name", "avatar_url", "instrument", "bio")

# Membership-only presentation fields (no user-level default)
MEMBERSHIP_FIELDS = ("icon", "color")

ARTIST_TYPES = ("band", "solo", "duo", "group", "dj")
MEMBERSHIP_TYPES = ("performer", "agent", "manager", "guest")
ROLES = ("owner", "admin", "member", "pending")

# Fresh slug picks before a concurrent-create conflict is reported
SLUG_ATTEMPTS = 3


class FieldSource(str, Enum):
    OVERRIDE = "override"  # membership value set
    DEFAULT = "default"    # inherited from the user
    ABSENT = "absent"      # neither set


@dataclass(frozen=True)
class ResolvedField:
    value: Optional[str]
    source: FieldSource

    @property
    def overridden(self) -> bool:
        return self.source is FieldSource.OVERRIDE


def resolve_field(override: Optional[str], default: Optional[str]) -> ResolvedField:
    if override is not None:
        return ResolvedField(override, FieldSource.OVERRIDE)
    if default is not None:
        return ResolvedField(default, FieldSource.DEFAULT)
    return ResolvedField(None, FieldSource.ABSENT)


@dataclass(frozen=True)
class ResolvedMembership:
    membership: Membership
    artist: ArtistGroup
    fields: dict[str, ResolvedField]

    def value(self, name: str) -> Optional[str]:
        return self.fields[name].value

    def overrides(self) -> dict[str, bool]:
        return {name: resolved.overridden for name, resolved in self.fields.items()}


@dataclass(frozen=True)
class ArtistData:
    name: str
    artist_type: str = "band"
    location: Optional[str] = None
    bio: Optional[str] = None
    genres: Sequence[str] = field(default_factory=tuple)


def resolve_membership(membership: Membership, user: User, artist: ArtistGroup) -> ResolvedMembership:
    return ResolvedMembership(
        membership=membership,
        artist=artist,
        fields={
            name: resolve_field(getattr(membership, name), getattr(user, name))
            for name in OVERRIDE_FIELDS
        },
    )


def list_memberships(db: Session, user_id: str) -> list[ResolvedMembership]:
    """All memberships of ``user_id`` with profile fields resolved.

    One query for memberships joined to their artists, one fetch of the user.
    """
    user = db.get(User, user_id)
    if user is None:
        return []

    rows = db.execute(
        select(Membership, ArtistGroup)
        .join(ArtistGroup, Membership.artist_id == ArtistGroup.id)
        .where(Membership.user_id == user_id)
        .order_by(Membership.joined_at, Membership.id)
    ).all()

    return [resolve_membership(membership, user, artist) for membership, artist in rows]


def slugify(name: str) -> str:
    """"The Midnight Ramblers!" -> "the-midnight-ramblers"."""
    return re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")


def _unique_slug(db: Session, name: str) -> str:
    base = slugify(name) or "artist"
    taken = set(
        db.scalars(
            select(ArtistGroup.slug).where(
                (ArtistGroup.slug == base) | ArtistGroup.slug.like(f"{base}-%")
            )
        )
    )
    if base not in taken:
        return base
    suffix = 2
    while f"{base}-{suffix}" in taken:
        suffix += 1
    return f"{base}-{suffix}"


def _is_slug_conflict(error: IntegrityError) -> bool:
    # sqlite: "UNIQUE constraint failed: artists.slug"; postgres names uq_artists_slug
    return "slug" in str(error.orig)


def _clean(value: Any) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _build_owner_membership(
    user_id: str,
    artist_id: str,
    profile_overrides: Mapping[str, Optional[str]],
    membership_type: str,
) -> Membership:
    membership = Membership(
        user_id=user_id,
        artist_id=artist_id,
        membership_type=membership_type,
        role="owner",
        status="active",
    )
    for name in OVERRIDE_FIELDS + MEMBERSHIP_FIELDS:
        if name in profile_overrides:
            setattr(membership, name, _clean(profile_overrides[name]))
    return membership


def create_artist_with_owner_membership(
    db: Session,
    user_id: str,
    artist_data: ArtistData,
    profile_overrides: Optional[Mapping[str, Optional[str]]] = None,
    membership_type: str = "performer",
) -> ResolvedMembership:
    """Create an artist and its owner membership in one transaction.

    If the membership cannot be created the artist insert is rolled back too;
    no ownerless artist is ever left behind.

    Raises:
        InvalidArtistData: Blank name or unknown artist/membership type
        MembershipNotFound: ``user_id`` does not exist
        ArtistSlugConflict: Every slug tried was taken by concurrent creates
    """
    name = _clean(artist_data.name)
    if not name:
        raise InvalidArtistData("Artist name is required")
    if artist_data.artist_type not in ARTIST_TYPES:
        raise InvalidArtistData(f"Artist type must be one of: {', '.join(ARTIST_TYPES)}")
    if membership_type not in MEMBERSHIP_TYPES:
        raise InvalidArtistData(f"Membership type must be one of: {', '.join(MEMBERSHIP_TYPES)}")

    user = db.get(User, user_id)
    if user is None:
        raise MembershipNotFound("User not found")

    for attempt in range(1, SLUG_ATTEMPTS + 1):
        try:
            artist = ArtistGroup(
                name=name,
                slug=_unique_slug(db, name),
                artist_type=artist_data.artist_type,
                owner_user_id=user_id,
                location=_clean(artist_data.location),
                bio=_clean(artist_data.bio),
                genres=[g.strip() for g in artist_data.genres if g and g.strip()],
            )
            db.add(artist)
            db.flush()

            membership = _build_owner_membership(user_id, artist.id, profile_overrides or {}, membership_type)
            db.add(membership)
            db.flush()

            db.commit()
            break
        except IntegrityError as e:
            db.rollback()
            if not _is_slug_conflict(e):
                logger.error(
                    "Artist creation rolled back",
                    extra={"event": "membership.artist_create.rolled_back", "owner_user_id": user_id},
                    exc_info=True,
                )
                raise
            logger.warning(
                "Artist slug taken by a concurrent create",
                extra={
                    "event": "membership.artist_create.slug_conflict",
                    "owner_user_id": user_id,
                    "attempt": attempt,
                },
            )
        except Exception:
            db.rollback()
            logger.error(
                "Artist creation rolled back",
                extra={"event": "membership.artist_create.rolled_back", "owner_user_id": user_id},
                exc_info=True,
            )
            raise
    else:
        raise ArtistSlugConflict("Another artist with this name was created at the same time. Please try again.")

    db.refresh(membership)
    db.refresh(artist)

    logger.info(
        "Artist created with owner membership",
        extra={
            "event": "membership.artist_created",
            "artist_id": artist.id,
            "membership_id": membership.id,
            "owner_user_id": user_id,
        },
    )
    return resolve_membership(membership, user, artist)


def require_membership(
    db: Session,
    user_id: str,
    artist_id: str,
    roles: Optional[Sequence[str]] = None,
) -> Membership:
    """Active membership of ``user_id`` in ``artist_id``, optionally with one of ``roles``.

    Raises:
        MembershipNotFound: Not an active member
        MembershipForbidden: Member, but without a required role
    """
    membership = db.scalar(
        select(Membership).where(
            Membership.user_id == user_id,
            Membership.artist_id == artist_id,
            Membership.status == "active",
        )
    )
    if membership is None:
        raise MembershipNotFound("Not a member of this artist")
    if roles and membership.role not in roles:
        raise MembershipForbidden(f"Requires role: {', '.join(roles)}")
    return membership


def list_artist_members(db: Session, user_id: str, artist_id: str) -> list[ResolvedMembership]:
    """All members of an artist, each resolved against their own user profile.

    The caller must be an active member.
    """
    require_membership(db, user_id, artist_id)

    artist = db.get(ArtistGroup, artist_id)
    rows = db.execute(
        select(Membership, User)
        .join(User, Membership.user_id == User.id)
        .where(Membership.artist_id == artist_id)
        .order_by(Membership.joined_at, Membership.id)
    ).all()

    return [resolve_membership(membership, member, artist) for membership, member in rows]


def update_membership_profile(
    db: Session,
    user_id: str,
    membership_id: str,
    changes: Mapping[str, Optional[str]],
) -> ResolvedMembership:
    """Set or clear per-membership overrides.

    ``changes`` holds only the fields the caller sent: a string sets the
    override, None (or a blank string) clears it so the user default applies
    again, and absent fields are left untouched.

    Raises:
        MembershipNotFound: No such membership owned by ``user_id``
    """
    membership = db.get(Membership, membership_id)
    if membership is None or membership.user_id != user_id:
        raise MembershipNotFound("Membership not found")

    applied = []
    for name, value in changes.items():
        if name not in OVERRIDE_FIELDS + MEMBERSHIP_FIELDS:
            continue
        setattr(membership, name, _clean(value))
        applied.append(name)

    db.commit()
    db.refresh(membership)

    logger.info(
        "Membership profile updated",
        extra={
            "event": "membership.profile.updated",
            "membership_id": membership_id,
            "fields": sorted(applied),
            "cleared": sorted(n for n in applied if getattr(membership, n) is None),
        },
    )
    return resolve_membership(membership, membership.user, membership.artist)
