"""SQLAlchemy ORM models for the identity & membership core."""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    BOOLEAN,
    JSON,
    TEXT,
    TIMESTAMP,
    ForeignKey,
    Index,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class User(Base):
    """Canonical user: one row per verified human.

    phone and email are only ever written with verified values.
    """

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(TEXT, primary_key=True, default=_new_id)

    # Verified contact methods (E.164 phone, lower-cased email)
    phone: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True, unique=True)
    email: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True, unique=True)

    # Default profile (inherited by memberships unless overridden)
    display_name: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)
    avatar_url: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)
    instrument: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)
    bio: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)

    first_name: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)
    last_name: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)
    hometown: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)
    profile_completed: Mapped[bool] = mapped_column(BOOLEAN, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    identities: Mapped[list["ProviderLink"]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )
    memberships: Mapped[list["Membership"]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )


class ProviderLink(Base):
    """Federated identity link: (provider, subject) resolves to exactly one user."""

    __tablename__ = "user_identities"

    id: Mapped[str] = mapped_column(TEXT, primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(
        TEXT, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    provider: Mapped[str] = mapped_column(TEXT, nullable=False)
    subject: Mapped[str] = mapped_column(TEXT, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=_utcnow
    )

    user: Mapped[User] = relationship(back_populates="identities")

    __table_args__ = (
        UniqueConstraint("provider", "subject", name="uq_user_identities_provider_subject"),
        Index("idx_user_identities_user", "user_id"),
    )


class ArtistGroup(Base):
    """A performing entity: band, solo, duo, group or dj."""

    __tablename__ = "artists"

    id: Mapped[str] = mapped_column(TEXT, primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(TEXT, nullable=False)
    slug: Mapped[str] = mapped_column(TEXT, nullable=False, unique=True)
    artist_type: Mapped[str] = mapped_column(TEXT, nullable=False, default="band")
    owner_user_id: Mapped[Optional[str]] = mapped_column(
        TEXT, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    location: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)
    bio: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)
    genres: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    memberships: Mapped[list["Membership"]] = relationship(
        back_populates="artist", cascade="all, delete-orphan"
    )


class Membership(Base):
    """User participation in one artist group.

    display_name, avatar_url, instrument and bio are overrides: NULL means
    "inherit from the user" and is resolved at read time, never copied.
    """

    __tablename__ = "artist_memberships"

    id: Mapped[str] = mapped_column(TEXT, primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(
        TEXT, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    artist_id: Mapped[str] = mapped_column(
        TEXT, ForeignKey("artists.id", ondelete="CASCADE"), nullable=False
    )

    membership_type: Mapped[str] = mapped_column(TEXT, nullable=False, default="performer")
    role: Mapped[str] = mapped_column(TEXT, nullable=False, default="member")
    status: Mapped[str] = mapped_column(TEXT, nullable=False, default="active")

    # Profile overrides (NULL = inherit)
    display_name: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)
    avatar_url: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)
    instrument: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)
    bio: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)

    # Membership-only presentation
    icon: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)
    color: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)

    joined_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=_utcnow
    )
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    user: Mapped[User] = relationship(back_populates="memberships")
    artist: Mapped[ArtistGroup] = relationship(back_populates="memberships")

    __table_args__ = (
        UniqueConstraint("user_id", "artist_id", name="uq_artist_memberships_user_artist"),
        Index("idx_artist_memberships_user", "user_id"),
        Index("idx_artist_memberships_artist", "artist_id"),
    )
