"""create rw_subscriptions and rw_payments

Revision ID: 003
Revises: 002
Create Date: 2026-02-02

Trial/paid subscriptions and Razorpay payments.
Not touched by progress reset.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = '003'
down_revision: Union[str, None] = '002'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


SUBSCRIPTION_PLAN = postgresql.ENUM(
    'TRIAL', 'MONTHLY', 'QUARTERLY',
    name='subscriptionplan',
    create_type=False,
)
SUBSCRIPTION_STATUS = postgresql.ENUM(
    'ACTIVE', 'EXPIRED', 'CANCELLED',
    name='subscriptionstatus',
    create_type=False,
)
PAYMENT_STATUS = postgresql.ENUM(
    'PENDING', 'SUCCESS', 'FAILED', 'REFUNDED',
    name='paymentstatus',
    create_type=False,
)


def upgrade() -> None:
    SUBSCRIPTION_PLAN.create(op.get_bind(), checkfirst=True)
    SUBSCRIPTION_STATUS.create(op.get_bind(), checkfirst=True)
    PAYMENT_STATUS.create(op.get_bind(), checkfirst=True)

    op.create_table(
        'rw_subscriptions',
        sa.Column('id', sa.UUID(), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('user_id', sa.UUID(), sa.ForeignKey('rw_users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('plan', SUBSCRIPTION_PLAN, nullable=False),
        sa.Column('status', SUBSCRIPTION_STATUS, nullable=False, server_default='ACTIVE'),
        sa.Column('starts_at', sa.DateTime(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('auto_renew', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('NOW()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('NOW()'), nullable=False),
        sa.CheckConstraint('expires_at >= starts_at', name='ck_rw_subscriptions_window'),
    )
    op.create_index('ix_rw_subscriptions_user_id', 'rw_subscriptions', ['user_id'])
    op.create_index(
        'uq_rw_subscriptions_active',
        'rw_subscriptions',
        ['user_id'],
        unique=True,
        postgresql_where=sa.text("status = 'ACTIVE'"),
    )
    # Reaper scan
    op.create_index('ix_rw_subscriptions_status_expires', 'rw_subscriptions', ['status', 'expires_at'])

    op.create_table(
        'rw_payments',
        sa.Column('id', sa.UUID(), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('user_id', sa.UUID(), sa.ForeignKey('rw_users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('subscription_id', sa.UUID(),
                  sa.ForeignKey('rw_subscriptions.id', ondelete='SET NULL'), nullable=True),
        sa.Column('amount_paise', sa.Integer(), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False, server_default='INR'),
        sa.Column('razorpay_order_id', sa.String(100), nullable=True),
        sa.Column('razorpay_payment_id', sa.String(100), nullable=True),
        sa.Column('razorpay_signature', sa.String(255), nullable=True),
        sa.Column('status', PAYMENT_STATUS, nullable=False, server_default='PENDING'),
        sa.Column('failure_reason', sa.String(500), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('NOW()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('NOW()'), nullable=False),
    )
    op.create_unique_constraint('uq_rw_payments_order_id', 'rw_payments', ['razorpay_order_id'])
    op.create_index('ix_rw_payments_user_id', 'rw_payments', ['user_id'])
    op.create_index('ix_rw_payments_payment_id', 'rw_payments', ['razorpay_payment_id'])


def downgrade() -> None:
    op.drop_table('rw_payments')
    op.drop_index('ix_rw_subscriptions_status_expires', table_name='rw_subscriptions')
    op.drop_index('uq_rw_subscriptions_active', table_name='rw_subscriptions')
    op.drop_table('rw_subscriptions')
    PAYMENT_STATUS.drop(op.get_bind(), checkfirst=True)
    SUBSCRIPTION_STATUS.drop(op.get_bind(), checkfirst=True)
    SUBSCRIPTION_PLAN.drop(op.get_bind(), checkfirst=True)
