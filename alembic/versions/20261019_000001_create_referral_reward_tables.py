"""Create referral reward tables

Revision ID: 20261019_000001
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '20261019_000001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Users
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('username', sa.String(255), nullable=True),
        sa.Column('referral_code', sa.String(20), nullable=True),
        sa.Column('balance', sa.DECIMAL(18, 8), nullable=False, server_default='0'),
        sa.Column('total_earned', sa.DECIMAL(18, 8), nullable=False, server_default='0'),
        sa.Column('referral_chain_flagged', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint('balance >= 0', name='check_user_balance_non_negative'),
        sa.CheckConstraint('total_earned >= 0', name='check_user_total_earned_non_negative'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_users_username', 'users', ['username'])
    op.create_index('ix_users_referral_code', 'users', ['referral_code'], unique=True)
    op.create_index('ix_users_referral_chain_flagged', 'users', ['referral_chain_flagged'])

    # Referral edges
    op.create_table(
        'referrals',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('referrer_id', sa.Integer(), nullable=False),
        sa.Column('referral_id', sa.Integer(), nullable=False),
        sa.Column('referral_code', sa.String(20), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='active'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('revoked_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint('referrer_id <> referral_id', name='check_referral_not_self'),
        sa.ForeignKeyConstraint(['referrer_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['referral_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_referrals_referrer_id', 'referrals', ['referrer_id'])
    op.create_index('ix_referrals_referral_id', 'referrals', ['referral_id'])
    op.create_index('idx_referrals_referrer_status', 'referrals', ['referrer_id', 'status'])
    op.create_index(
        'uq_referrals_active_referral',
        'referrals',
        ['referral_id'],
        unique=True,
        postgresql_where=sa.text("status = 'active'"),
    )

    # Reward ledger
    op.create_table(
        'reward_transactions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('event_id', sa.String(128), nullable=False),
        sa.Column('beneficiary_id', sa.Integer(), nullable=False),
        sa.Column('tier', sa.Integer(), nullable=False),
        sa.Column('event_type', sa.String(50), nullable=True),
        sa.Column('source_user_id', sa.Integer(), nullable=False),
        sa.Column('base_amount', sa.DECIMAL(18, 8), nullable=False),
        sa.Column('reward_amount', sa.DECIMAL(18, 8), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('retry_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('next_retry_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('enqueued_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint('tier >= 1', name='check_reward_tx_tier_positive'),
        sa.CheckConstraint('base_amount >= 0', name='check_reward_tx_base_non_negative'),
        sa.ForeignKeyConstraint(['beneficiary_id'], ['users.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['source_user_id'], ['users.id'], ondelete='RESTRICT'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint(
            'event_id', 'beneficiary_id', 'tier',
            name='uq_reward_tx_idempotency_key',
        ),
    )
    op.create_index('ix_reward_transactions_event_id', 'reward_transactions', ['event_id'])
    op.create_index('ix_reward_transactions_beneficiary_id', 'reward_transactions', ['beneficiary_id'])
    op.create_index('ix_reward_transactions_source_user_id', 'reward_transactions', ['source_user_id'])
    op.create_index('ix_reward_transactions_status', 'reward_transactions', ['status'])
    op.create_index('idx_reward_tx_status_updated', 'reward_transactions', ['status', 'updated_at'])
    op.create_index('idx_reward_tx_status_next_retry', 'reward_transactions', ['status', 'next_retry_at'])

    # Per-tier stats
    op.create_table(
        'user_referral_stats',
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('tier', sa.Integer(), nullable=False),
        sa.Column('rewards_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_earned', sa.DECIMAL(18, 8), nullable=False, server_default='0'),
        sa.Column('last_reward_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('user_id', 'tier'),
    )


def downgrade() -> None:
    op.drop_table('user_referral_stats')

    op.drop_index('idx_reward_tx_status_next_retry', 'reward_transactions')
    op.drop_index('idx_reward_tx_status_updated', 'reward_transactions')
    op.drop_index('ix_reward_transactions_status', 'reward_transactions')
    op.drop_index('ix_reward_transactions_source_user_id', 'reward_transactions')
    op.drop_index('ix_reward_transactions_beneficiary_id', 'reward_transactions')
    op.drop_index('ix_reward_transactions_event_id', 'reward_transactions')
    op.drop_table('reward_transactions')

    op.drop_index('uq_referrals_active_referral', 'referrals')
    op.drop_index('idx_referrals_referrer_status', 'referrals')
    op.drop_index('ix_referrals_referral_id', 'referrals')
    op.drop_index('ix_referrals_referrer_id', 'referrals')
    op.drop_table('referrals')

    op.drop_index('ix_users_referral_chain_flagged', 'users')
    op.drop_index('ix_users_referral_code', 'users')
    op.drop_index('ix_users_username', 'users')
    op.drop_table('users')
