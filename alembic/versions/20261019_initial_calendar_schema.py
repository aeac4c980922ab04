"""Initial family calendar schema

Revision ID: 3f7a9c21e4b8
Revises:
Create Date: 2026-10-19

Creates the shared calendar tables:
- family_groups: Households sharing a calendar (joined by invite code)
- family_members: People in a household
- events: Regular events, recurring masters, and single-occurrence
  exception/tombstone rows (parent_event_id + exception_date)
- event_attendees: Members attending an event
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f7a9c21e4b8'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table('family_groups',
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('invite_code', sa.String(length=20), nullable=False),
        sa.Column('id', sa.CHAR(length=32), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('invite_code')
    )

    op.create_table('family_members',
        sa.Column('family_group_id', sa.CHAR(length=32), nullable=False),
        sa.Column('user_id', sa.String(length=255), nullable=True),
        sa.Column('display_name', sa.String(length=100), nullable=False),
        sa.Column('role', sa.String(length=50), nullable=False),
        sa.Column('color', sa.String(length=20), nullable=False),
        sa.Column('id', sa.CHAR(length=32), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['family_group_id'], ['family_groups.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    with op.batch_alter_table('family_members', schema=None) as batch_op:
        batch_op.create_index('idx_family_member_group', ['family_group_id'], unique=False)
        batch_op.create_index('idx_family_member_user', ['user_id'], unique=False)

    op.create_table('events',
        sa.Column('family_group_id', sa.CHAR(length=32), nullable=False),
        sa.Column('created_by', sa.CHAR(length=32), nullable=False),
        sa.Column('title', sa.String(length=200), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('location', sa.String(length=200), nullable=True),
        sa.Column('start_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('end_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('is_all_day', sa.Boolean(), nullable=False),
        sa.Column('source', sa.String(length=50), nullable=False),
        sa.Column('recurrence_rule', sa.String(length=20), nullable=True),
        sa.Column('recurrence_interval', sa.Integer(), nullable=False),
        sa.Column('recurrence_end_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('recurrence_days_of_week', sa.JSON(), nullable=True),
        sa.Column('parent_event_id', sa.CHAR(length=32), nullable=True),
        sa.Column('exception_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('is_deleted', sa.Boolean(), nullable=False),
        sa.Column('id', sa.CHAR(length=32), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['family_group_id'], ['family_groups.id'], ),
        sa.ForeignKeyConstraint(['created_by'], ['family_members.id'], ),
        sa.ForeignKeyConstraint(['parent_event_id'], ['events.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('parent_event_id', 'exception_date', name='uq_event_exception_date')
    )
    with op.batch_alter_table('events', schema=None) as batch_op:
        batch_op.create_index('idx_event_group', ['family_group_id'], unique=False)
        batch_op.create_index('idx_event_parent', ['parent_event_id'], unique=False)
        batch_op.create_index('idx_event_created_by', ['created_by'], unique=False)
        batch_op.create_index('idx_event_time_range', ['family_group_id', 'start_at', 'end_at'], unique=False)
        batch_op.create_index('idx_event_recurrence', ['family_group_id', 'recurrence_rule', 'recurrence_end_at'], unique=False)

    op.create_table('event_attendees',
        sa.Column('event_id', sa.CHAR(length=32), nullable=False),
        sa.Column('family_member_id', sa.CHAR(length=32), nullable=False),
        sa.Column('id', sa.CHAR(length=32), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['event_id'], ['events.id'], ),
        sa.ForeignKeyConstraint(['family_member_id'], ['family_members.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('event_id', 'family_member_id', name='uq_event_attendee')
    )
    with op.batch_alter_table('event_attendees', schema=None) as batch_op:
        batch_op.create_index('idx_attendee_event', ['event_id'], unique=False)
        batch_op.create_index('idx_attendee_member', ['family_member_id'], unique=False)


def downgrade() -> None:
    with op.batch_alter_table('event_attendees', schema=None) as batch_op:
        batch_op.drop_index('idx_attendee_member')
        batch_op.drop_index('idx_attendee_event')
    op.drop_table('event_attendees')

    with op.batch_alter_table('events', schema=None) as batch_op:
        batch_op.drop_index('idx_event_recurrence')
        batch_op.drop_index('idx_event_time_range')
        batch_op.drop_index('idx_event_created_by')
        batch_op.drop_index('idx_event_parent')
        batch_op.drop_index('idx_event_group')
    op.drop_table('events')

    with op.batch_alter_table('family_members', schema=None) as batch_op:
        batch_op.drop_index('idx_family_member_user')
        batch_op.drop_index('idx_family_member_group')
    op.drop_table('family_members')

    op.drop_table('family_groups')
