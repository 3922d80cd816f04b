"""Pydantic schemas for API requests/responses.

Request bodies use the web client's camelCase field names through aliases;
responses are serialized by alias as well.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# ============================================================================
# RFC 9457 Problem Details
# ============================================================================


class ProblemDetail(BaseModel):
    """RFC 9457 Problem Details for HTTP API errors.

    ``error_code`` is the coarse, user-visible code (invalid_code,
    expired_link, invalid_state, provider_error, ...).
    """

    type: str = Field(..., description="URI reference identifying the problem type")
    title: str = Field(..., description="Short, human-readable summary")
    status: int = Field(..., description="HTTP status code")
    detail: str | dict[str, Any] = Field(..., description="Human-readable explanation")
    instance: Optional[str] = Field(None, description="URI reference identifying the specific occurrence")
    error_code: Optional[str] = Field(None, description="Coarse machine-readable error code")


# ============================================================================
# Phone channel
# ============================================================================


class OtpRequest(BaseModel):
    """Request body for POST /auth/phone/request-otp."""

    phone: str = Field(..., min_length=1, max_length=32, description="Phone number (E.164 or UK national)")


class OtpRequestResponse(CamelModel):
    request_token: str = Field(..., alias="requestToken", description="Opaque token to verify against")
    sent_to: str = Field(..., alias="sentTo", description="Masked destination")
    expires_in: int = Field(..., alias="expiresIn", description="Seconds until the code expires")


class OtpVerifyRequest(CamelModel):
    """Request body for POST /auth/phone/verify-otp."""

    request_token: str = Field(..., alias="requestToken", min_length=1, max_length=128)
    code: str = Field(..., min_length=1, max_length=12)


# ============================================================================
# Email channel
# ============================================================================


class MagicLinkRequest(BaseModel):
    """Request body for POST /auth/email/request-magic."""

    email: str = Field(..., min_length=3, max_length=320)
    redirect: Optional[str] = Field(None, max_length=512, description="Relative path to land on after sign-in")


class MagicLinkResponse(CamelModel):
    sent: bool = True
    expires_in: int = Field(..., alias="expiresIn")


class CheckIdentityRequest(BaseModel):
    """Request body for POST /auth/check-identity (exactly one of email/phone)."""

    email: Optional[str] = Field(None, max_length=320)
    phone: Optional[str] = Field(None, max_length=32)


class CheckIdentityResponse(CamelModel):
    exists: bool
    display_name: Optional[str] = Field(None, alias="displayName")


# ============================================================================
# Session / profile
# ============================================================================


class UserResponse(CamelModel):
    """Canonical user, as returned by /api/me. Contains no membership data."""

    id: str
    phone: Optional[str] = None
    email: Optional[str] = None
    display_name: Optional[str] = Field(None, alias="displayName")
    first_name: Optional[str] = Field(None, alias="firstName")
    last_name: Optional[str] = Field(None, alias="lastName")
    avatar_url: Optional[str] = Field(None, alias="avatarUrl")
    instrument: Optional[str] = None
    bio: Optional[str] = None
    hometown: Optional[str] = None
    profile_completed: bool = Field(False, alias="profileCompleted")
    created_at: datetime = Field(..., alias="createdAt")

    @classmethod
    def from_user(cls, user: Any) -> "UserResponse":
        return cls(
            id=user.id,
            phone=user.phone,
            email=user.email,
            display_name=user.display_name,
            first_name=user.first_name,
            last_name=user.last_name,
            avatar_url=user.avatar_url,
            instrument=user.instrument,
            bio=user.bio,
            hometown=user.hometown,
            profile_completed=bool(user.profile_completed),
            created_at=user.created_at,
        )


class MeResponse(BaseModel):
    user: UserResponse


class ProfileUpdateRequest(CamelModel):
    """Request body for PUT /api/me."""

    first_name: Optional[str] = Field(None, alias="firstName", max_length=100)
    last_name: Optional[str] = Field(None, alias="lastName", max_length=100)
    display_name: Optional[str] = Field(None, alias="displayName", max_length=100)
    hometown: Optional[str] = Field(None, max_length=200)
    instrument: Optional[str] = Field(None, max_length=100)
    avatar_url: Optional[str] = Field(None, alias="avatarUrl", max_length=2048)
    bio: Optional[str] = Field(None, max_length=2000)


class OkResponse(BaseModel):
    ok: bool = True


# ============================================================================
# Memberships
# ============================================================================


class ArtistSummary(CamelModel):
    id: str
    name: str
    slug: str
    artist_type: str = Field(..., alias="artistType")
    location: Optional[str] = None
    bio: Optional[str] = None
    genres: list[str] = Field(default_factory=list)


class OverrideFlags(CamelModel):
    display_name: bool = Field(False, alias="displayName")
    avatar_url: bool = Field(False, alias="avatarUrl")
    instrument: bool = False
    bio: bool = False


class ResolvedMembershipResponse(CamelModel):
    """One membership with inherited/overridden profile fields resolved."""

    id: str
    membership_id: str = Field(..., alias="membershipId")
    user_id: str = Field(..., alias="userId")
    artist_id: str = Field(..., alias="artistId")
    role: str
    membership_type: str = Field(..., alias="membershipType")
    status: str
    display_name: Optional[str] = Field(None, alias="displayName")
    avatar_url: Optional[str] = Field(None, alias="avatarUrl")
    instrument: Optional[str] = None
    bio: Optional[str] = None
    icon: Optional[str] = None
    color: Optional[str] = None
    overrides: OverrideFlags
    joined_at: datetime = Field(..., alias="joinedAt")
    artist: ArtistSummary


class MembershipUserRef(BaseModel):
    id: str


class MyMembershipsResponse(BaseModel):
    user: MembershipUserRef
    artists: list[ResolvedMembershipResponse]


class ArtistMembersResponse(CamelModel):
    artist_id: str = Field(..., alias="artistId")
    members: list[ResolvedMembershipResponse]


class MembershipProfilePatch(CamelModel):
    """Request body for PATCH /api/memberships/{id}.

    Omitted field: unchanged. ``null``: clear the override (inherit from the
    user). String: set the override.
    """

    display_name: Optional[str] = Field(None, alias="displayName", max_length=100)
    avatar_url: Optional[str] = Field(None, alias="avatarUrl", max_length=2048)
    instrument: Optional[str] = Field(None, max_length=100)
    bio: Optional[str] = Field(None, max_length=2000)
    icon: Optional[str] = Field(None, max_length=64)
    color: Optional[str] = Field(None, max_length=32)


class ArtistCreateRequest(CamelModel):
    """Request body for POST /api/artists."""

    name: str = Field(..., min_length=1, max_length=200)
    artist_type: str = Field("band", alias="artistType")
    location: Optional[str] = Field(None, max_length=200)
    bio: Optional[str] = Field(None, max_length=2000)
    genres: list[str] = Field(default_factory=list, max_length=20)
    membership_type: str = Field("performer", alias="membershipType")
    member_display_name: Optional[str] = Field(None, alias="memberDisplayName", max_length=100)
    member_avatar_url: Optional[str] = Field(None, alias="memberAvatarUrl", max_length=2048)
    member_instrument: Optional[str] = Field(None, alias="memberInstrument", max_length=100)
    member_bio: Optional[str] = Field(None, alias="memberBio", max_length=2000)
    member_icon: Optional[str] = Field(None, alias="memberIcon", max_length=64)
    member_color: Optional[str] = Field(None, alias="memberColor", max_length=32)


# ============================================================================
# Health
# ============================================================================


class HealthResponse(BaseModel):
    status: str
    version: str
    services: dict[str, str] = Field(default_factory=dict)
