"""create_progress_tables

Revision ID: 3f2a9c1d7e54
Revises:
Create Date: 2026-10-19 09:12:40.118204

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

from family_stars.db.models import GUID


# revision identifiers, used by Alembic.
revision: str = '3f2a9c1d7e54'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create memberships, unlocked_badges and goals."""
    op.create_table(
        'memberships',
        sa.Column('id', GUID(), primary_key=True),
        sa.Column('user_id', GUID(), nullable=False),
        sa.Column('group_id', GUID(), nullable=False),
        sa.Column('total_stars', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('current_stage', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('last_read_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('seen_celebrations', sa.JSON(), nullable=False),
        sa.Column('joined_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint('user_id', 'group_id', name='uq_membership_user_group'),
        sa.CheckConstraint('total_stars >= 0', name='ck_membership_total_stars_nonnegative'),
    )
    op.create_index('ix_membership_group', 'memberships', ['group_id'])

    op.create_table(
        'unlocked_badges',
        sa.Column('id', GUID(), primary_key=True),
        sa.Column('user_id', GUID(), nullable=False),
        sa.Column('group_id', GUID(), nullable=False),
        sa.Column('badge_id', sa.String(64), nullable=False),
        sa.Column('unlocked_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('seen', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.UniqueConstraint('user_id', 'group_id', 'badge_id', name='uq_unlocked_badge'),
    )
    op.create_index(
        'ix_unlocked_badge_member_seen', 'unlocked_badges', ['user_id', 'group_id', 'seen']
    )

    op.create_table(
        'goals',
        sa.Column('id', GUID(), primary_key=True),
        sa.Column('group_id', GUID(), nullable=False),
        sa.Column('user_id', GUID(), nullable=False),
        sa.Column('target_stars', sa.Integer(), nullable=False),
        sa.Column('target_categories', sa.JSON(), nullable=False),
        sa.Column('current_stars', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('completed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('reward', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint('target_stars > 0', name='ck_goal_target_positive'),
    )
    op.create_index(
        'ix_goal_member_created', 'goals', ['user_id', 'group_id', 'created_at']
    )

    # At most one incomplete goal per member
    op.create_index(
        'uq_goal_active_per_member',
        'goals',
        ['user_id', 'group_id'],
        unique=True,
        sqlite_where=sa.text('completed = 0'),
        postgresql_where=sa.text('completed = false'),
    )


def downgrade() -> None:
    """Drop all progress tables."""
    op.drop_index('uq_goal_active_per_member', table_name='goals')
    op.drop_index('ix_goal_member_created', table_name='goals')
    op.drop_table('goals')

    op.drop_index('ix_unlocked_badge_member_seen', table_name='unlocked_badges')
    op.drop_table('unlocked_badges')

    op.drop_index('ix_membership_group', table_name='memberships')
    op.drop_table('memberships')
