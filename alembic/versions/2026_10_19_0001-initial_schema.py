"""initial schema

Revision ID: 2026_10_19_0001
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID


# revision identifiers, used by Alembic.
revision: str = '2026_10_19_0001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _id_column() -> sa.Column:
    return sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()'))


def _user_fk() -> sa.Column:
    return sa.Column('user_id', UUID(as_uuid=True), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False)


def _created_at() -> sa.Column:
    return sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()'))


def _updated_at() -> sa.Column:
    return sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()'))


def upgrade() -> None:
    """Create initial database schema."""

    # ========================================================================
    # Create users table
    # ========================================================================
    op.create_table(
        'users',
        _id_column(),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('email', sa.String(255), nullable=False, unique=True),
        sa.Column('email_verified', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('password_hash', sa.Text(), nullable=True),
        sa.Column('image', sa.Text(), nullable=True),
        sa.Column('role', sa.String(20), nullable=False, server_default='user'),
        sa.Column('banned', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('ban_reason', sa.Text(), nullable=True),
        sa.Column('ban_expires', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_login', sa.DateTime(timezone=True), nullable=True),
        sa.Column('subscription_type', sa.String(20), nullable=False, server_default='free_trial'),
        sa.Column('subscription_status', sa.String(20), nullable=False, server_default='active'),
        sa.Column('stripe_customer_id', sa.String(255), nullable=True),
        sa.Column('stripe_subscription_id', sa.String(255), nullable=True),
        sa.Column('subscription_end_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('chat_credits', sa.Integer(), nullable=False, server_default='200'),
        sa.Column('voice_credits', sa.Integer(), nullable=False, server_default='200'),
        sa.Column('chat_credits_from_topup', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('voice_credits_from_topup', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('daily_voice_credits', sa.Integer(), nullable=False, server_default='300'),
        sa.Column('monthly_voice_credits', sa.Integer(), nullable=False, server_default='9000'),
        sa.Column('voice_credits_used_today', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('voice_credits_used_this_month', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_daily_reset', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_monthly_reset', sa.DateTime(timezone=True), nullable=True),
        sa.Column('preferred_language', sa.String(8), nullable=False, server_default='en'),
        sa.Column('selected_therapist_id', sa.String(64), nullable=True),
        sa.Column('profile_completed', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('date_of_birth', sa.String(10), nullable=True),
        sa.Column('gender', sa.String(50), nullable=True),
        sa.Column('country', sa.String(100), nullable=True),
        sa.Column('religion', sa.String(100), nullable=True),
        sa.Column('therapy_needs', JSONB(), nullable=True),
        sa.Column('preferred_therapy_style', sa.String(100), nullable=True),
        sa.Column('specific_concerns', sa.Text(), nullable=True),
        sa.Column('profile_last_updated', sa.DateTime(timezone=True), nullable=True),
        sa.Column('total_chat_sessions', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_voice_sessions', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('images_used_this_month', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('image_usage_reset_date', sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        _updated_at(),

        # Constraints
        sa.CheckConstraint('chat_credits >= 0', name='ck_users_chat_credits_non_negative'),
        sa.CheckConstraint('voice_credits >= 0', name='ck_users_voice_credits_non_negative'),
        sa.CheckConstraint('chat_credits_from_topup >= 0', name='ck_users_chat_topup_non_negative'),
        sa.CheckConstraint('voice_credits_from_topup >= 0', name='ck_users_voice_topup_non_negative'),
        sa.CheckConstraint("role IN ('user', 'admin')", name='ck_users_role'),
        sa.CheckConstraint(
            "subscription_type IN ('free_trial', 'chat_only', 'voice_only', 'premium')",
            name='ck_users_subscription_type',
        ),
        sa.CheckConstraint(
            "subscription_status IN ('active', 'canceled', 'past_due', 'incomplete')",
            name='ck_users_subscription_status',
        ),
    )

    op.create_index('idx_users_stripe_customer', 'users', ['stripe_customer_id'])
    op.create_index('idx_users_stripe_subscription', 'users', ['stripe_subscription_id'])
    op.create_index('idx_users_created_at', 'users', ['created_at'])

    # ========================================================================
    # Create auth tables
    # ========================================================================
    op.create_table(
        'auth_sessions',
        _id_column(),
        _user_fk(),
        sa.Column('token', sa.String(128), nullable=False, unique=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('ip_address', sa.String(64), nullable=True),
        sa.Column('user_agent', sa.Text(), nullable=True),
        _created_at(),
    )
    op.create_index('idx_auth_sessions_user', 'auth_sessions', ['user_id'])
    op.create_index('idx_auth_sessions_expires', 'auth_sessions', ['expires_at'])

    op.create_table(
        'oauth_accounts',
        _id_column(),
        _user_fk(),
        sa.Column('provider', sa.String(50), nullable=False),
        sa.Column('provider_account_id', sa.String(255), nullable=False),
        _created_at(),
        sa.UniqueConstraint('provider', 'provider_account_id', name='uq_oauth_provider_account'),
    )
    op.create_index('idx_oauth_accounts_user', 'oauth_accounts', ['user_id'])

    op.create_table(
        'verifications',
        _id_column(),
        sa.Column('identifier', sa.String(255), nullable=False),
        sa.Column('value', sa.String(255), nullable=False, unique=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        _created_at(),
    )
    op.create_index('idx_verifications_identifier', 'verifications', ['identifier'])

    # ========================================================================
    # Create chat tables
    # ========================================================================
    op.create_table(
        'chat_threads',
        _id_column(),
        _user_fk(),
        sa.Column('title', sa.String(255), nullable=False, server_default='New conversation'),
        sa.Column('therapist_id', sa.String(64), nullable=True),
        sa.Column('archived', sa.Boolean(), nullable=False, server_default='false'),
        _created_at(),
        _updated_at(),
    )
    op.create_index('idx_chat_threads_user_updated', 'chat_threads', ['user_id', 'updated_at'])

    op.create_table(
        'chat_messages',
        _id_column(),
        sa.Column('thread_id', UUID(as_uuid=True), sa.ForeignKey('chat_threads.id', ondelete='CASCADE'), nullable=False),
        sa.Column('role', sa.String(20), nullable=False),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('metadata', JSONB(), nullable=True),
        _created_at(),
        sa.CheckConstraint("role IN ('user', 'assistant', 'system')", name='ck_chat_messages_role'),
    )
    op.create_index('idx_chat_messages_thread_created', 'chat_messages', ['thread_id', 'created_at'])

    # ========================================================================
    # Create transactions table
    # ========================================================================
    op.create_table(
        'transactions',
        _id_column(),
        _user_fk(),
        sa.Column('type', sa.String(20), nullable=False),
        sa.Column('amount_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('credits_added', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('stripe_payment_id', sa.String(255), nullable=True),
        sa.Column('stripe_subscription_id', sa.String(255), nullable=True),
        sa.Column('stripe_invoice_id', sa.String(255), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('metadata', JSONB(), nullable=True),
        _created_at(),
        _updated_at(),
        sa.CheckConstraint("type IN ('subscription', 'topup', 'adjustment')", name='ck_transactions_type'),
        sa.CheckConstraint(
            "status IN ('pending', 'succeeded', 'failed', 'canceled')",
            name='ck_transactions_status',
        ),
        sa.CheckConstraint('amount_cents >= 0', name='ck_transactions_amount_non_negative'),
        sa.CheckConstraint('credits_added >= 0', name='ck_transactions_credits_non_negative'),
    )
    op.create_index('idx_transactions_user_created', 'transactions', ['user_id', 'created_at'])
    op.create_index('idx_transactions_stripe_payment', 'transactions', ['stripe_payment_id'])
    # One grant per invoice, even when Stripe redelivers invoice.paid
    op.create_index(
        'uq_transactions_stripe_invoice',
        'transactions',
        ['stripe_invoice_id'],
        unique=True,
        postgresql_where=sa.text('stripe_invoice_id IS NOT NULL'),
    )

    # ========================================================================
    # Create usage_logs table
    # ========================================================================
    op.create_table(
        'usage_logs',
        _id_column(),
        _user_fk(),
        sa.Column('type', sa.String(10), nullable=False),
        sa.Column('credits_used', sa.Integer(), nullable=False),
        sa.Column('thread_id', UUID(as_uuid=True), nullable=True),
        sa.Column('metadata', JSONB(), nullable=True),
        _created_at(),
        sa.CheckConstraint("type IN ('chat', 'voice')", name='ck_usage_logs_type'),
        sa.CheckConstraint('credits_used >= 0', name='ck_usage_logs_credits_non_negative'),
    )
    op.create_index('idx_usage_logs_user_created', 'usage_logs', ['user_id', 'created_at'])

    # ========================================================================
    # Create mood_entries table
    # ========================================================================
    op.create_table(
        'mood_entries',
        _id_column(),
        _user_fk(),
        sa.Column('entry_date', sa.Date(), nullable=False),
        sa.Column('mood_score', sa.Integer(), nullable=False),
        sa.Column('sentiment', sa.String(10), nullable=False),
        sa.Column('thread_id', UUID(as_uuid=True), nullable=True),
        sa.Column('session_type', sa.String(10), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        _created_at(),
        sa.CheckConstraint('mood_score BETWEEN 1 AND 10', name='ck_mood_entries_score_range'),
        sa.CheckConstraint(
            "sentiment IN ('positive', 'neutral', 'negative')",
            name='ck_mood_entries_sentiment',
        ),
    )
    op.create_index('idx_mood_entries_user_date', 'mood_entries', ['user_id', 'entry_date'])


def downgrade() -> None:
    """Drop all tables."""
    op.drop_table('mood_entries')
    op.drop_table('usage_logs')
    op.drop_table('transactions')
    op.drop_table('chat_messages')
    op.drop_table('chat_threads')
    op.drop_table('verifications')
    op.drop_table('oauth_accounts')
    op.drop_table('auth_sessions')
    op.drop_table('users')
