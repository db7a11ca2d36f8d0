"""create plans, tenants and subscription_events tables

Revision ID: 1c2d3e4f5a6b
Revises:
Create Date: 2026-01-12 09:30:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '1c2d3e4f5a6b'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table('plans',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('slug', sa.String(length=100), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('stripe_price_id', sa.String(length=255), nullable=True),
        sa.Column('price', sa.Numeric(precision=8, scale=2), nullable=False, server_default='0'),
        sa.Column('billing_period', sa.String(length=20), nullable=False, server_default='monthly'),
        sa.Column('trial_days', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('features', sa.JSON(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('slug')
    )

    op.create_table('tenants',
        sa.Column('slug', sa.String(length=63), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('plan_id', sa.Integer(), nullable=True),
        sa.Column('state', sa.String(length=20), nullable=False, server_default='provisioning'),
        sa.Column('stripe_customer_id', sa.String(length=255), nullable=True),
        sa.Column('stripe_subscription_id', sa.String(length=255), nullable=True),
        sa.Column('subscription_status', sa.String(length=50), nullable=False, server_default='none'),
        sa.Column('trial_ends_at', sa.DateTime(), nullable=True),
        sa.Column('subscription_ends_at', sa.DateTime(), nullable=True),
        sa.Column('settings', sa.JSON(), nullable=True),
        sa.Column('failure_reason', sa.Text(), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['plan_id'], ['plans.id']),
        sa.PrimaryKeyConstraint('slug')
    )
    op.create_index('ix_tenants_stripe_customer_id', 'tenants', ['stripe_customer_id'])
    op.create_index('ix_tenants_stripe_subscription_id', 'tenants', ['stripe_subscription_id'])

    # tenant_slug is not a foreign key: history outlives the tenant row
    op.create_table('subscription_events',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('tenant_slug', sa.String(length=63), nullable=False),
        sa.Column('plan_id', sa.Integer(), nullable=True),
        sa.Column('event_type', sa.String(length=20), nullable=False),
        sa.Column('status', sa.String(length=50), nullable=False),
        sa.Column('provider_event_id', sa.String(length=255), nullable=True),
        sa.Column('event_metadata', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['plan_id'], ['plans.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_subscription_events_tenant_slug', 'subscription_events', ['tenant_slug'])


def downgrade():
    op.drop_index('ix_subscription_events_tenant_slug', table_name='subscription_events')
    op.drop_table('subscription_events')
    op.drop_index('ix_tenants_stripe_subscription_id', table_name='tenants')
    op.drop_index('ix_tenants_stripe_customer_id', table_name='tenants')
    op.drop_table('tenants')
    op.drop_table('plans')
