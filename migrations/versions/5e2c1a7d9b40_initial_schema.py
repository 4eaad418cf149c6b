"""initial schema: users, payments, webhook events, conversion events

Revision ID: 5e2c1a7d9b40
Revises:
Create Date: 2026-10-18 10:00:00.000000
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '5e2c1a7d9b40'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('stripe_customer_id', sa.String(length=64), nullable=True),
        sa.Column('click_id', sa.String(length=128), nullable=True),
        sa.Column('registration_source', sa.String(length=64), nullable=True),
        sa.Column('subscription_id', sa.String(length=64), nullable=True),
        sa.Column('subscription_status', sa.String(length=32), nullable=False, server_default=sa.text("'inactive'")),
        sa.Column('subscription_plan', sa.String(length=16), nullable=True),
        sa.Column('subscription_end_date', sa.DateTime(), nullable=True),
        sa.Column('subscription_synced_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.Column('last_login_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('email', name='uq_users_email'),
        sa.UniqueConstraint('stripe_customer_id', name='uq_users_stripe_customer_id'),
    )
    op.create_index('ix_users_click_id', 'users', ['click_id'])
    op.create_index('ix_users_subscription_id', 'users', ['subscription_id'])
    op.create_index('ix_users_subscription_status', 'users', ['subscription_status'])

    op.create_table(
        'payments',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('stripe_payment_id', sa.String(length=255), nullable=False),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False),
        sa.Column('payment_method', sa.String(length=32), nullable=True),
        sa.Column('click_id', sa.String(length=128), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete="CASCADE"),
        sa.UniqueConstraint('stripe_payment_id', name='uq_payments_stripe_payment_id'),
    )
    op.create_index('ix_payments_user_id', 'payments', ['user_id'])
    op.create_index('ix_payments_created_at', 'payments', ['created_at'])

    op.create_table(
        'webhook_events',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('source', sa.String(length=32), nullable=False, server_default=sa.text("'stripe'")),
        sa.Column('event_id', sa.String(length=255), nullable=False),
        sa.Column('event_type', sa.String(length=80), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('processed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('processed_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_webhook_events_event_id', 'webhook_events', ['event_id'], unique=True)
    op.create_index('ix_webhook_events_event_type', 'webhook_events', ['event_type'])
    op.create_index('ix_webhook_events_processed', 'webhook_events', ['processed'])

    op.create_table(
        'conversion_events',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('event_type', sa.String(length=32), nullable=False),
        sa.Column('click_id', sa.String(length=128), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=True),
        sa.Column('amount', sa.Integer(), nullable=True),
        sa.Column('currency', sa.String(length=3), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=False),
        sa.Column('sent', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('sent_at', sa.DateTime(), nullable=True),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete="SET NULL"),
    )
    op.create_index('ix_conversion_events_user_id', 'conversion_events', ['user_id'])
    op.create_index('ix_conversion_events_event_type', 'conversion_events', ['event_type'])
    # Retry sweeper scans unsent rows by age
    op.create_index('ix_conversion_events_retry', 'conversion_events', ['sent', 'created_at'])


def downgrade():
    op.drop_index('ix_conversion_events_retry', table_name='conversion_events')
    op.drop_index('ix_conversion_events_event_type', table_name='conversion_events')
    op.drop_index('ix_conversion_events_user_id', table_name='conversion_events')
    op.drop_table('conversion_events')

    op.drop_index('ix_webhook_events_processed', table_name='webhook_events')
    op.drop_index('ix_webhook_events_event_type', table_name='webhook_events')
    op.drop_index('ix_webhook_events_event_id', table_name='webhook_events')
    op.drop_table('webhook_events')

    op.drop_index('ix_payments_created_at', table_name='payments')
    op.drop_index('ix_payments_user_id', table_name='payments')
    op.drop_table('payments')

    op.drop_index('ix_users_subscription_status', table_name='users')
    op.drop_index('ix_users_subscription_id', table_name='users')
    op.drop_index('ix_users_click_id', table_name='users')
    op.drop_table('users')
