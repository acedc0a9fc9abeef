"""Subscriptions with usage counters, and the usage audit trail

Revision ID: a3f1c2d4e5b6
Revises: 
Create Date: 2026-10-18 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = 'a3f1c2d4e5b6'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

SUBSCRIPTION_STATUS = ('TRIALING', 'ACTIVE', 'PAST_DUE', 'CANCELED', 'INACTIVE')


def upgrade() -> None:
    """Create subscription and usage record tables."""
    op.create_table(
        'subscriptions',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.Column('tenant_id', sa.String(), nullable=False),
        sa.Column('plan_id', sa.String(), nullable=False),
        sa.Column('status', sa.Enum(*SUBSCRIPTION_STATUS, name='subscriptionstatus'), nullable=False, server_default='ACTIVE'),
        sa.Column('trial_end', sa.DateTime(), nullable=True),
        sa.Column('current_period_start', sa.DateTime(), nullable=False),
        sa.Column('current_period_end', sa.DateTime(), nullable=False),
        sa.Column('usage_counts', postgresql.JSONB(), nullable=False, server_default='{}'),
        sa.Column('last_reset_at', sa.DateTime(), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_subscriptions_id'), 'subscriptions', ['id'])
    op.create_index(op.f('ix_subscriptions_created_at'), 'subscriptions', ['created_at'])
    op.create_index(op.f('ix_subscriptions_tenant_id'), 'subscriptions', ['tenant_id'])
    op.create_index(op.f('ix_subscriptions_status'), 'subscriptions', ['status'])
    op.create_index(op.f('ix_subscriptions_current_period_end'), 'subscriptions', ['current_period_end'])
    op.create_index('ix_subscriptions_status_period_end', 'subscriptions', ['status', 'current_period_end'])

    # At most one trialing/active/past_due subscription per tenant
    op.create_index(
        'uq_subscriptions_live_tenant',
        'subscriptions',
        ['tenant_id'],
        unique=True,
        postgresql_where=sa.text("status IN ('TRIALING', 'ACTIVE', 'PAST_DUE')"),
    )

    op.create_table(
        'usage_records',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.Column('tenant_id', sa.String(), nullable=False),
        sa.Column('subscription_id', sa.UUID(), nullable=False),
        sa.Column('usage_type', sa.String(), nullable=False),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('timestamp', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.Column('bypassed_limits', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('extra_metadata', postgresql.JSONB(), nullable=False, server_default='{}'),
        sa.ForeignKeyConstraint(['subscription_id'], ['subscriptions.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_usage_records_id'), 'usage_records', ['id'])
    op.create_index(op.f('ix_usage_records_created_at'), 'usage_records', ['created_at'])
    op.create_index(op.f('ix_usage_records_tenant_id'), 'usage_records', ['tenant_id'])
    op.create_index(op.f('ix_usage_records_subscription_id'), 'usage_records', ['subscription_id'])
    op.create_index(op.f('ix_usage_records_usage_type'), 'usage_records', ['usage_type'])
    op.create_index(op.f('ix_usage_records_timestamp'), 'usage_records', ['timestamp'])


def downgrade() -> None:
    """Drop usage record and subscription tables."""
    op.drop_table('usage_records')
    op.drop_index('uq_subscriptions_live_tenant', table_name='subscriptions')
    op.drop_table('subscriptions')
    op.execute('DROP TYPE IF EXISTS subscriptionstatus')
