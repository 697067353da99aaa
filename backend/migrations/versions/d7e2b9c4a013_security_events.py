"""security events for login throttling

Revision ID: d7e2b9c4a013
Revises: c1a0e5d2b7f1
Create Date: 2026-10-20 00:00:00.000000

- security_events: append-only LOGIN_FAILED / LOGIN_SUCCESS log used to lock
  a username after repeated failed logins
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'd7e2b9c4a013'
down_revision = 'c1a0e5d2b7f1'
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'security_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('event_type', sa.String(length=32), nullable=False),
        sa.Column('identifier', sa.String(length=64), nullable=False),
        sa.Column('reason', sa.String(length=255), nullable=True),
        sa.Column('ip_address', sa.String(length=45), nullable=True),
        sa.Column('user_agent', sa.String(length=512), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_security_events_user_id', 'security_events', ['user_id'])
    op.create_index(
        'ix_security_events_identifier_type_occurred',
        'security_events',
        ['identifier', 'event_type', 'occurred_at'],
    )


def downgrade():
    op.drop_index('ix_security_events_identifier_type_occurred', table_name='security_events')
    op.drop_index('ix_security_events_user_id', table_name='security_events')
    op.drop_table('security_events')
