"""Identity Store: resolve-or-create of the canonical user.

All three channels hand a proof of identity to one routine:

    PhoneProof      verified phone (OTP consumed)
    EmailProof      verified email (magic link consumed)
    FederatedProof  provider subject + claims (authorization code exchanged)

Matching rules:
- Phone and email proofs match on the verified contact column.
- Federated proofs match on the (provider, subject) link first, then on the
  provider email only when the provider marks it verified. An email user who
  later signs in with a provider using the same verified email resolves to
  the same canonical user. Unverified provider emails are never matched and
  never stored.

Uniqueness is enforced by the database. Creation is an atomic
INSERT ... ON CONFLICT DO NOTHING followed by a re-select, so two instances
racing to create the same user both end up with the one row that won.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional, Union

from sqlalchemy import Table, select
from sqlalchemy.orm import Session

from bndy_api.db.models import ProviderLink, User

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PhoneProof:
    phone: str


@dataclass(frozen=True)
class EmailProof:
    email: str


@dataclass(frozen=True)
class FederatedProof:
    provider: str
    subject: str
    email: Optional[str] = None
    email_verified: bool = False
    name: Optional[str] = None
    given_name: Optional[str] = None
    family_name: Optional[str] = None
    avatar_url: Optional[str] = None


IdentityProof = Union[PhoneProof, EmailProof, FederatedProof]


@dataclass(frozen=True)
class ResolvedIdentity:
    user: User
    created: bool

    @property
    def user_id(self) -> str:
        return self.user.id


@dataclass(frozen=True)
class IdentityPreview:
    exists: bool
    display_name: Optional[str] = None


# Fields a user may edit through profile completion
PROFILE_FIELDS = (
    "first_name",
    "last_name",
    "display_name",
    "hometown",
    "instrument",
    "avatar_url",
    "bio",
)

# All of these must be set for the profile to count as complete
REQUIRED_PROFILE_FIELDS = ("first_name", "last_name", "display_name", "hometown", "instrument")


def _insert_ignore(db: Session, table: Table, values: dict[str, Any]) -> bool:
    """INSERT ... ON CONFLICT DO NOTHING. Returns True if this call inserted the row."""
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise RuntimeError(f"Unsupported database dialect for identity store: {dialect}")

    stmt = insert(table).values(**values).on_conflict_do_nothing().returning(table.c.id)
    return db.execute(stmt).first() is not None


def _new_user_values(**fields: Any) -> dict[str, Any]:
    now = datetime.now(timezone.utc)
    values = {
        "id": str(uuid.uuid4()),
        "profile_completed": False,
        "created_at": now,
        "updated_at": now,
    }
    values.update({k: v for k, v in fields.items() if v is not None})
    return values


def _find_by_phone(db: Session, phone: str) -> Optional[User]:
    return db.scalar(select(User).where(User.phone == phone))


def _find_by_email(db: Session, email: str) -> Optional[User]:
    return db.scalar(select(User).where(User.email == email))


def _find_link(db: Session, provider: str, subject: str) -> Optional[ProviderLink]:
    return db.scalar(
        select(ProviderLink).where(
            ProviderLink.provider == provider,
            ProviderLink.subject == subject,
        )
    )


def _email_local_part(email: Optional[str]) -> Optional[str]:
    return email.split("@", 1)[0] if email else None


def _resolve_phone(db: Session, proof: PhoneProof) -> ResolvedIdentity:
    user = _find_by_phone(db, proof.phone)
    if user is not None:
        return ResolvedIdentity(user=user, created=False)

    created = _insert_ignore(db, User.__table__, _new_user_values(phone=proof.phone))
    db.commit()

    user = _find_by_phone(db, proof.phone)
    if user is None:
        raise RuntimeError("User row missing after insert-if-absent on phone")
    return ResolvedIdentity(user=user, created=created)


def _resolve_email(db: Session, proof: EmailProof) -> ResolvedIdentity:
    user = _find_by_email(db, proof.email)
    if user is not None:
        return ResolvedIdentity(user=user, created=False)

    created = _insert_ignore(
        db,
        User.__table__,
        _new_user_values(email=proof.email, display_name=_email_local_part(proof.email)),
    )
    db.commit()

    user = _find_by_email(db, proof.email)
    if user is None:
        raise RuntimeError("User row missing after insert-if-absent on email")
    return ResolvedIdentity(user=user, created=created)


def _resolve_federated(db: Session, proof: FederatedProof) -> ResolvedIdentity:
    link = _find_link(db, proof.provider, proof.subject)
    if link is not None:
        return ResolvedIdentity(user=link.user, created=False)

    verified_email = proof.email if proof.email and proof.email_verified else None

    user = _find_by_email(db, verified_email) if verified_email else None
    created = False

    if user is None:
        values = _new_user_values(
            email=verified_email,
            display_name=proof.name or _email_local_part(verified_email),
            first_name=proof.given_name,
            last_name=proof.family_name,
            avatar_url=proof.avatar_url,
        )
        created = _insert_ignore(db, User.__table__, values)
        if created:
            user_id = values["id"]
        else:
            # Lost a race on the email unique key: attach to the winner
            winner = _find_by_email(db, verified_email) if verified_email else None
            if winner is None:
                raise RuntimeError("User row missing after insert-if-absent on provider email")
            user_id = winner.id
    else:
        user_id = user.id

    _insert_ignore(
        db,
        ProviderLink.__table__,
        {
            "id": str(uuid.uuid4()),
            "user_id": user_id,
            "provider": proof.provider,
            "subject": proof.subject,
            "created_at": datetime.now(timezone.utc),
        },
    )
    db.commit()

    # Re-read the link: if another instance linked this subject first, its user wins
    link = _find_link(db, proof.provider, proof.subject)
    if link is None:
        raise RuntimeError("Provider link missing after insert-if-absent")

    if link.user_id != user_id:
        created = False
    return ResolvedIdentity(user=link.user, created=created)


def resolve_or_create(db: Session, proof: IdentityProof) -> ResolvedIdentity:
    """Resolve a proof of identity to the canonical user, creating it if needed.

    Args:
        db: Database session
        proof: PhoneProof, EmailProof or FederatedProof

    Returns:
        ResolvedIdentity(user, created)
    """
    if isinstance(proof, PhoneProof):
        resolved = _resolve_phone(db, proof)
        channel = "phone"
    elif isinstance(proof, EmailProof):
        resolved = _resolve_email(db, proof)
        channel = "email"
    elif isinstance(proof, FederatedProof):
        resolved = _resolve_federated(db, proof)
        channel = "federated"
    else:
        raise TypeError(f"Unsupported identity proof: {type(proof).__name__}")

    logger.info(
        "Identity resolved",
        extra={
            "event": "identity.created" if resolved.created else "identity.resolved",
            "channel": channel,
            "resolved_user_id": resolved.user_id,
        },
    )
    return resolved


def get_user(db: Session, user_id: str) -> Optional[User]:
    return db.get(User, user_id)


def preview(db: Session, email: Optional[str] = None, phone: Optional[str] = None) -> IdentityPreview:
    """Read-only lookup used to tailor the welcome message."""
    user = None
    if email:
        user = _find_by_email(db, email)
    elif phone:
        user = _find_by_phone(db, phone)

    if user is None:
        return IdentityPreview(exists=False)
    return IdentityPreview(exists=True, display_name=user.display_name)


def is_profile_complete(user: User) -> bool:
    return all(getattr(user, name) for name in REQUIRED_PROFILE_FIELDS)


def update_profile(db: Session, user: User, changes: dict[str, Any]) -> User:
    """Apply profile edits and recompute the completion flag.

    Only PROFILE_FIELDS are applied; blank strings clear a field.
    """
    for name, value in changes.items():
        if name not in PROFILE_FIELDS:
            continue
        if isinstance(value, str):
            value = value.strip() or None
        setattr(user, name, value)

    user.profile_completed = is_profile_complete(user)
    db.commit()
    db.refresh(user)

    logger.info(
        "Profile updated",
        extra={
            "event": "identity.profile.updated",
            "fields": sorted(k for k in changes if k in PROFILE_FIELDS),
            "profile_completed": user.profile_completed,
        },
    )
    return user


def delete_user(db: Session, user: User) -> None:
    """Explicit account deletion. Memberships and provider links cascade."""
    user_id = user.id
    db.delete(user)
    db.commit()
    logger.info("Account deleted", extra={"event": "identity.deleted", "deleted_user_id": user_id})
