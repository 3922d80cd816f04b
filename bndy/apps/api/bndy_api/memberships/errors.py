"""Membership error taxonomy (rendered as problem details by the API)."""

from typing import Optional


class MembershipError(Exception):
    status_code: int = 400
    title: str = "Membership Error"
    error_code: str = "membership_error"
    problem_slug: str = "membership-error"

    def __init__(self, detail: Optional[str] = None):
        self.detail = detail or self.title
        self.retry_after: Optional[int] = None
        super().__init__(self.detail)

    @property
    def error_type(self) -> str:
        return f"https://api.bndy.co.uk/problems/{self.problem_slug}"


class InvalidArtistData(MembershipError):
    status_code = 400
    title = "Invalid Artist"
    error_code = "invalid_artist"
    problem_slug = "invalid-artist"


class MembershipNotFound(MembershipError):
    """No such membership for this user (also used when the caller is not a member)."""

    status_code = 404
    title = "Membership Not Found"
    error_code = "membership_not_found"
    problem_slug = "membership-not-found"


class MembershipForbidden(MembershipError):
    status_code = 403
    title = "Forbidden"
    error_code = "membership_forbidden"
    problem_slug = "membership-forbidden"


class ArtistSlugConflict(MembershipError):
    """Every slug tried for the new artist was taken by concurrent creates."""

    status_code = 409
    title = "Artist Slug Conflict"
    error_code = "artist_slug_conflict"
    problem_slug = "artist-slug-conflict"
