"""initial_payments_schema

Revision ID: 3c1f0a9d2e71
Revises:
Create Date: 2026-09-12 10:40:12.118204

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '3c1f0a9d2e71'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', sa.TEXT(), nullable=False),
        sa.Column('name', sa.TEXT(), nullable=False),
        sa.Column('email', sa.TEXT(), nullable=True),
        sa.Column('role', sa.TEXT(), nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_users_role', 'users', ['role'])

    op.create_table(
        'memberships',
        sa.Column('id', sa.TEXT(), nullable=False),
        sa.Column('user_id', sa.TEXT(), nullable=False),
        sa.Column('plan_type', sa.TEXT(), nullable=False),
        sa.Column('duration', sa.TEXT(), nullable=False),
        sa.Column('price', sa.FLOAT(), nullable=True),
        sa.Column('status', sa.TEXT(), nullable=False),
        sa.Column('start_date', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('end_date', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_memberships_user_status', 'memberships', ['user_id', 'status'])

    op.create_table(
        'spa_bookings',
        sa.Column('id', sa.TEXT(), nullable=False),
        sa.Column('user_id', sa.TEXT(), nullable=False),
        sa.Column('service_name', sa.TEXT(), nullable=True),
        sa.Column('price', sa.FLOAT(), nullable=True),
        sa.Column('status', sa.TEXT(), nullable=False),
        sa.Column('payment_id', sa.TEXT(), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table(
        'payments',
        sa.Column('id', sa.TEXT(), nullable=False),
        sa.Column('user_id', sa.TEXT(), nullable=False),
        sa.Column('amount', sa.FLOAT(), nullable=False),
        sa.Column('type', sa.TEXT(), nullable=False),
        sa.Column('status', sa.TEXT(), nullable=False),
        sa.Column('stripe_session_id', sa.TEXT(), nullable=True),
        sa.Column('transaction_id', sa.TEXT(), nullable=True),
        sa.Column('membership_id', sa.TEXT(), nullable=True),
        sa.Column('booking_id', sa.TEXT(), nullable=True),
        sa.Column('trainer_id', sa.TEXT(), nullable=True),
        sa.Column('plan_type', sa.TEXT(), nullable=True),
        sa.Column('description', sa.TEXT(), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('payment_date', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('stripe_session_id'),
    )
    op.create_index('idx_payments_user_created', 'payments', ['user_id', 'created_at'])
    op.create_index('idx_payments_membership_status', 'payments', ['membership_id', 'status'])
    op.create_index('idx_payments_booking_status', 'payments', ['booking_id', 'status'])
    op.create_index('idx_payments_trainer', 'payments', ['trainer_id'])

    op.create_table(
        'otp_sessions',
        sa.Column('id', sa.TEXT(), nullable=False),
        sa.Column('user_id', sa.TEXT(), nullable=False),
        sa.Column('email', sa.TEXT(), nullable=False),
        sa.Column('code', sa.TEXT(), nullable=False),
        sa.Column('expires_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id'),
    )

    op.create_table(
        'notifications',
        sa.Column('id', sa.TEXT(), nullable=False),
        sa.Column('recipient_id', sa.TEXT(), nullable=False),
        sa.Column('type', sa.TEXT(), nullable=False),
        sa.Column('title', sa.TEXT(), nullable=False),
        sa.Column('message', sa.TEXT(), nullable=False),
        sa.Column('related_id', sa.TEXT(), nullable=True),
        sa.Column('is_read', sa.BOOLEAN(), nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_notifications_recipient', 'notifications', ['recipient_id', 'is_read'])

    op.create_table(
        'webhook_dedup_events',
        sa.Column('id', sa.TEXT(), nullable=False),
        sa.Column('provider', sa.TEXT(), nullable=False),
        sa.Column('dedup_key', sa.TEXT(), nullable=False),
        sa.Column('status', sa.TEXT(), nullable=False),
        sa.Column('request_hash', sa.TEXT(), nullable=True),
        sa.Column('first_seen_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('last_seen_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('provider', 'dedup_key', name='uq_webhook_dedup_provider_key'),
    )


def downgrade() -> None:
    op.drop_table('webhook_dedup_events')
    op.drop_index('idx_notifications_recipient', table_name='notifications')
    op.drop_table('notifications')
    op.drop_table('otp_sessions')
    op.drop_index('idx_payments_trainer', table_name='payments')
    op.drop_index('idx_payments_booking_status', table_name='payments')
    op.drop_index('idx_payments_membership_status', table_name='payments')
    op.drop_index('idx_payments_user_created', table_name='payments')
    op.drop_table('payments')
    op.drop_table('spa_bookings')
    op.drop_index('idx_memberships_user_status', table_name='memberships')
    op.drop_table('memberships')
    op.drop_index('idx_users_role', table_name='users')
    op.drop_table('users')
