"""initial schema

Revision ID: 2026_10_01_0000
Revises:
Create Date: 2026-10-01 08:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB


# revision identifiers, used by Alembic.
revision: str = '2026_10_01_0000'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSON_DOCUMENT = sa.JSON().with_variant(JSONB(), 'postgresql')


def upgrade() -> None:
    """Create profiles, ledger, generations and API key tables."""

    # ========================================================================
    # Create user_profiles table
    # ========================================================================
    op.create_table(
        'user_profiles',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('external_id', sa.String(255), nullable=False),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('display_name', sa.String(255), nullable=True),
        sa.Column('credits', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('plan', sa.String(20), nullable=False, server_default='free'),
        sa.Column('stripe_subscription_id', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),

        # Constraints
        sa.CheckConstraint('credits >= 0', name='ck_profile_credits_non_negative'),
        sa.CheckConstraint("plan IN ('free', 'starter', 'pro', 'unlimited')", name='ck_profile_plan'),
        sa.UniqueConstraint('external_id', name='uq_user_profiles_external_id'),
    )

    # ========================================================================
    # Create credit_transactions table (append-only)
    # ========================================================================
    op.create_table(
        'credit_transactions',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('user_profiles.id', ondelete='CASCADE'), nullable=False),
        sa.Column('amount', sa.BigInteger(), nullable=False),
        sa.Column('type', sa.String(20), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('tool_type', sa.String(50), nullable=True),
        sa.Column('generation_id', sa.Uuid(), nullable=True),
        sa.Column('external_ref', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),

        # Constraints
        sa.CheckConstraint('amount <> 0', name='ck_transaction_amount_non_zero'),
        sa.CheckConstraint(
            "type IN ('purchase', 'usage', 'bonus', 'refund', 'signup')",
            name='ck_transaction_type',
        ),
        sa.UniqueConstraint('generation_id', name='uq_credit_transactions_generation_id'),
        sa.UniqueConstraint('external_ref', name='uq_credit_transactions_external_ref'),
    )

    op.create_index('idx_credit_transactions_user_created', 'credit_transactions', ['user_id', 'created_at'])

    # ========================================================================
    # Create generations table
    # ========================================================================
    op.create_table(
        'generations',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('user_profiles.id', ondelete='CASCADE'), nullable=False),
        sa.Column('tool_type', sa.String(50), nullable=False),
        sa.Column('title', sa.String(500), nullable=True),
        sa.Column('input', JSON_DOCUMENT, nullable=False),
        sa.Column('output', JSON_DOCUMENT, nullable=False),
        sa.Column('credits_used', sa.BigInteger(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),

        sa.CheckConstraint('credits_used > 0', name='ck_generation_credits_positive'),
    )

    op.create_index('idx_generations_user_created', 'generations', ['user_id', 'created_at'])
    op.create_index('idx_generations_user_tool', 'generations', ['user_id', 'tool_type'])

    # ========================================================================
    # Create api_keys table
    # ========================================================================
    op.create_table(
        'api_keys',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('user_profiles.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('key_prefix', sa.String(32), nullable=False),
        sa.Column('key_hash', sa.String(64), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('last_used_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('revoked_at', sa.DateTime(timezone=True), nullable=True),

        sa.CheckConstraint('length(name) >= 1 AND length(name) <= 100', name='ck_api_keys_name_length'),
        sa.UniqueConstraint('key_hash', name='uq_api_keys_key_hash'),
    )

    op.create_index('ix_api_keys_user_id', 'api_keys', ['user_id'])


def downgrade() -> None:
    """Drop all tables."""
    op.drop_index('ix_api_keys_user_id', table_name='api_keys')
    op.drop_table('api_keys')
    op.drop_index('idx_generations_user_tool', table_name='generations')
    op.drop_index('idx_generations_user_created', table_name='generations')
    op.drop_table('generations')
    op.drop_index('idx_credit_transactions_user_created', table_name='credit_transactions')
    op.drop_table('credit_transactions')
    op.drop_table('user_profiles')
