"""identity_membership_core

Revision ID: 3f1c9a7e52d0
Revises:
Create Date: 2026-10-12 10:40:18.204117

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '3f1c9a7e52d0'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', sa.TEXT(), primary_key=True),
        sa.Column('phone', sa.TEXT(), nullable=True),
        sa.Column('email', sa.TEXT(), nullable=True),
        sa.Column('display_name', sa.TEXT(), nullable=True),
        sa.Column('avatar_url', sa.TEXT(), nullable=True),
        sa.Column('instrument', sa.TEXT(), nullable=True),
        sa.Column('bio', sa.TEXT(), nullable=True),
        sa.Column('first_name', sa.TEXT(), nullable=True),
        sa.Column('last_name', sa.TEXT(), nullable=True),
        sa.Column('hometown', sa.TEXT(), nullable=True),
        sa.Column('profile_completed', sa.BOOLEAN(), nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.UniqueConstraint('phone', name='uq_users_phone'),
        sa.UniqueConstraint('email', name='uq_users_email'),
    )

    # (provider, subject) -> exactly one user
    op.create_table(
        'user_identities',
        sa.Column('id', sa.TEXT(), primary_key=True),
        sa.Column('user_id', sa.TEXT(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('provider', sa.TEXT(), nullable=False),
        sa.Column('subject', sa.TEXT(), nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint('provider', 'subject', name='uq_user_identities_provider_subject'),
    )
    op.create_index('idx_user_identities_user', 'user_identities', ['user_id'])

    op.create_table(
        'artists',
        sa.Column('id', sa.TEXT(), primary_key=True),
        sa.Column('name', sa.TEXT(), nullable=False),
        sa.Column('slug', sa.TEXT(), nullable=False),
        sa.Column('artist_type', sa.TEXT(), nullable=False, server_default='band'),
        sa.Column('owner_user_id', sa.TEXT(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('location', sa.TEXT(), nullable=True),
        sa.Column('bio', sa.TEXT(), nullable=True),
        sa.Column('genres', sa.JSON(), nullable=False, server_default='[]'),
        *_timestamps(),
        sa.UniqueConstraint('slug', name='uq_artists_slug'),
    )

    # Override columns are nullable: NULL means "inherit from users"
    op.create_table(
        'artist_memberships',
        sa.Column('id', sa.TEXT(), primary_key=True),
        sa.Column('user_id', sa.TEXT(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('artist_id', sa.TEXT(), sa.ForeignKey('artists.id', ondelete='CASCADE'), nullable=False),
        sa.Column('membership_type', sa.TEXT(), nullable=False, server_default='performer'),
        sa.Column('role', sa.TEXT(), nullable=False, server_default='member'),
        sa.Column('status', sa.TEXT(), nullable=False, server_default='active'),
        sa.Column('display_name', sa.TEXT(), nullable=True),
        sa.Column('avatar_url', sa.TEXT(), nullable=True),
        sa.Column('instrument', sa.TEXT(), nullable=True),
        sa.Column('bio', sa.TEXT(), nullable=True),
        sa.Column('icon', sa.TEXT(), nullable=True),
        sa.Column('color', sa.TEXT(), nullable=True),
        sa.Column('joined_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.func.now()),
        *_timestamps(),
        sa.UniqueConstraint('user_id', 'artist_id', name='uq_artist_memberships_user_artist'),
    )
    op.create_index('idx_artist_memberships_user', 'artist_memberships', ['user_id'])
    op.create_index('idx_artist_memberships_artist', 'artist_memberships', ['artist_id'])


def downgrade() -> None:
    op.drop_index('idx_artist_memberships_artist', table_name='artist_memberships')
    op.drop_index('idx_artist_memberships_user', table_name='artist_memberships')
    op.drop_table('artist_memberships')
    op.drop_table('artists')
    op.drop_index('idx_user_identities_user', table_name='user_identities')
    op.drop_table('user_identities')
    op.drop_table('users')
