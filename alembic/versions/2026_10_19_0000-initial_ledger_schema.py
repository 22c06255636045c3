"""initial ledger schema

Revision ID: 2026_10_19_0000
Revises:
Create Date: 2026-10-19 08:00:00.000000

"""
from datetime import datetime, timezone
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID


# revision identifiers, used by Alembic.
revision: str = '2026_10_19_0000'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create the credit ledger schema."""

    # ========================================================================
    # accounts - one row per user, both credit counters
    # ========================================================================
    op.create_table(
        'accounts',
        sa.Column('user_id', UUID(as_uuid=True), primary_key=True),
        sa.Column('free_credits', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('paid_credits', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        sa.CheckConstraint('free_credits >= 0', name='ck_accounts_free_non_negative'),
        sa.CheckConstraint('paid_credits >= 0', name='ck_accounts_paid_non_negative'),
    )

    # ========================================================================
    # credit_lots - paid credit acquisitions, consumed oldest first
    # ========================================================================
    op.create_table(
        'credit_lots',
        sa.Column('id', sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column('user_id', UUID(as_uuid=True), nullable=False),
        sa.Column('credits_granted', sa.BigInteger(), nullable=False),
        sa.Column('credits_remaining', sa.BigInteger(), nullable=False),
        sa.Column('unit_value_cents', sa.BigInteger(), nullable=False),
        sa.Column('remainder_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('source', sa.String(20), nullable=False),
        sa.Column('payment_reference', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        sa.CheckConstraint('credits_granted > 0', name='ck_credit_lots_granted_positive'),
        sa.CheckConstraint('credits_remaining >= 0', name='ck_credit_lots_remaining_non_negative'),
        sa.CheckConstraint('credits_remaining <= credits_granted', name='ck_credit_lots_remaining_bounded'),
        sa.CheckConstraint('unit_value_cents >= 0', name='ck_credit_lots_unit_value_non_negative'),
        sa.CheckConstraint('remainder_cents >= 0', name='ck_credit_lots_remainder_non_negative'),
        sa.CheckConstraint("source IN ('payment', 'admin_grant')", name='ck_credit_lots_source'),
        sa.ForeignKeyConstraint(['user_id'], ['accounts.user_id'], name='fk_credit_lots_account'),
    )
    op.create_index('idx_credit_lots_user_fifo', 'credit_lots', ['user_id', 'created_at', 'id'])
    op.create_index(
        'idx_credit_lots_open',
        'credit_lots',
        ['user_id'],
        postgresql_where=sa.text('credits_remaining > 0'),
    )

    # ========================================================================
    # credit_transactions - append-only journal
    # ========================================================================
    op.create_table(
        'credit_transactions',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('user_id', UUID(as_uuid=True), nullable=False),
        sa.Column('transaction_type', sa.String(20), nullable=False),
        sa.Column('free_delta', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('paid_delta', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('free_balance_after', sa.BigInteger(), nullable=False),
        sa.Column('paid_balance_after', sa.BigInteger(), nullable=False),
        sa.Column('reference', sa.String(255), nullable=True),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('actor_id', UUID(as_uuid=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        sa.CheckConstraint('free_balance_after >= 0', name='ck_credit_tx_free_after_non_negative'),
        sa.CheckConstraint('paid_balance_after >= 0', name='ck_credit_tx_paid_after_non_negative'),
        sa.CheckConstraint(
            "transaction_type IN ('admin_grant', 'admin_revoke', 'promo', 'purchase', 'bonus', 'spend')",
            name='ck_credit_tx_type',
        ),
        sa.ForeignKeyConstraint(['user_id'], ['accounts.user_id'], name='fk_credit_tx_account'),
    )
    op.create_index('ix_credit_transactions_user_id', 'credit_transactions', ['user_id'])
    op.create_index('idx_credit_tx_user_created', 'credit_transactions', ['user_id', 'created_at'])
    op.create_index('idx_credit_tx_type', 'credit_transactions', ['transaction_type'])

    # ========================================================================
    # lot_consumptions - which lot slices paid for which debit
    # ========================================================================
    op.create_table(
        'lot_consumptions',
        sa.Column('id', sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column('transaction_id', UUID(as_uuid=True), nullable=False),
        sa.Column('lot_id', sa.BigInteger(), nullable=False),
        sa.Column('credits', sa.BigInteger(), nullable=False),
        sa.Column('unit_value_cents', sa.BigInteger(), nullable=False),
        sa.Column('cost_cents', sa.BigInteger(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        sa.CheckConstraint('credits > 0', name='ck_lot_consumptions_positive'),
        sa.ForeignKeyConstraint(['transaction_id'], ['credit_transactions.id'], name='fk_lot_consumptions_tx'),
        sa.ForeignKeyConstraint(['lot_id'], ['credit_lots.id'], name='fk_lot_consumptions_lot'),
    )
    op.create_index('ix_lot_consumptions_transaction_id', 'lot_consumptions', ['transaction_id'])
    op.create_index('ix_lot_consumptions_lot_id', 'lot_consumptions', ['lot_id'])

    # ========================================================================
    # promo_codes / promo_redemptions
    # ========================================================================
    op.create_table(
        'promo_codes',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('code', sa.String(64), nullable=False),
        sa.Column('free_credits', sa.Integer(), nullable=False),
        sa.Column('max_uses', sa.Integer(), nullable=True),
        sa.Column('current_uses', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('allow_multiple_per_user', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('created_by', UUID(as_uuid=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        sa.CheckConstraint('free_credits > 0', name='ck_promo_codes_credits_positive'),
        sa.CheckConstraint('current_uses >= 0', name='ck_promo_codes_uses_non_negative'),
        sa.CheckConstraint(
            'max_uses IS NULL OR current_uses <= max_uses',
            name='ck_promo_codes_uses_within_max',
        ),
        sa.UniqueConstraint('code', name='uq_promo_codes_code'),
    )
    op.create_index('idx_promo_codes_active', 'promo_codes', ['is_active'])

    op.create_table(
        'promo_redemptions',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('promo_code_id', UUID(as_uuid=True), nullable=False),
        sa.Column('user_id', UUID(as_uuid=True), nullable=False),
        sa.Column('free_credits_granted', sa.Integer(), nullable=False),
        sa.Column('redeemed_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        sa.ForeignKeyConstraint(
            ['promo_code_id'], ['promo_codes.id'], name='fk_promo_redemptions_code', ondelete='CASCADE'
        ),
    )
    op.create_index('idx_promo_redemptions_code_user', 'promo_redemptions', ['promo_code_id', 'user_id'])
    op.create_index('idx_promo_redemptions_user', 'promo_redemptions', ['user_id'])

    # ========================================================================
    # purchase_bonus_rules - seeded for every credit pack, inactive
    # ========================================================================
    bonus_rules = op.create_table(
        'purchase_bonus_rules',
        sa.Column('pack_id', sa.String(50), primary_key=True),
        sa.Column('pack_credits', sa.Integer(), nullable=False),
        sa.Column('bonus_free_credits', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        sa.CheckConstraint('pack_credits > 0', name='ck_purchase_bonus_pack_positive'),
        sa.CheckConstraint('bonus_free_credits >= 0', name='ck_purchase_bonus_non_negative'),
    )
    seeded_at = datetime(2026, 10, 19, tzinfo=timezone.utc)
    op.bulk_insert(
        bonus_rules,
        [
            {'pack_id': pack_id, 'pack_credits': credits, 'bonus_free_credits': 0,
             'is_active': False, 'updated_at': seeded_at}
            for pack_id, credits in (('pack_5', 5), ('pack_15', 15), ('pack_30', 30), ('pack_60', 60))
        ],
    )

    # ========================================================================
    # payment_idempotency_log - one row per credited payment reference
    # ========================================================================
    op.create_table(
        'payment_idempotency_log',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('payment_reference', sa.String(255), nullable=False),
        sa.Column('user_id', UUID(as_uuid=True), nullable=False),
        sa.Column('pack_id', sa.String(50), nullable=True),
        sa.Column('paid_credits_added', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('bonus_credits_added', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('unit_value_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('lot_id', sa.BigInteger(), nullable=True),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        sa.UniqueConstraint('payment_reference', name='uq_payment_idempotency_reference'),
        sa.ForeignKeyConstraint(['lot_id'], ['credit_lots.id'], name='fk_payment_idempotency_lot'),
    )
    op.create_index('ix_payment_idempotency_log_user_id', 'payment_idempotency_log', ['user_id'])

    # ========================================================================
    # unlocks - resource ownership
    # ========================================================================
    op.create_table(
        'unlocks',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('user_id', UUID(as_uuid=True), nullable=False),
        sa.Column('resource_id', UUID(as_uuid=True), nullable=False),
        sa.Column('unlock_method', sa.String(20), nullable=False),
        sa.Column('free_credits_spent', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('paid_credits_spent', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('transaction_id', UUID(as_uuid=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        sa.CheckConstraint("unlock_method IN ('free', 'purchase')", name='ck_unlocks_method'),
        sa.UniqueConstraint('user_id', 'resource_id', name='uq_unlocks_user_resource'),
        sa.ForeignKeyConstraint(['transaction_id'], ['credit_transactions.id'], name='fk_unlocks_tx'),
    )
    op.create_index('idx_unlocks_user', 'unlocks', ['user_id'])

    # ========================================================================
    # admin_audit_logs
    # ========================================================================
    op.create_table(
        'admin_audit_logs',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('admin_id', UUID(as_uuid=True), nullable=False),
        sa.Column('action', sa.String(50), nullable=False),
        sa.Column('target_user_id', UUID(as_uuid=True), nullable=False),
        sa.Column('free_amount', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('paid_amount', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('unit_value_cents', sa.BigInteger(), nullable=True),
        sa.Column('reason', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
    )
    op.create_index('ix_admin_audit_logs_admin_id', 'admin_audit_logs', ['admin_id'])
    op.create_index('ix_admin_audit_logs_target_user_id', 'admin_audit_logs', ['target_user_id'])
    op.create_index('idx_admin_audit_logs_created_at', 'admin_audit_logs', ['created_at'])

    # ========================================================================
    # catalog_resources - price lookup for purchases
    # ========================================================================
    op.create_table(
        'catalog_resources',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('price_credits', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_published', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        sa.CheckConstraint('price_credits >= 0', name='ck_catalog_resources_price_non_negative'),
    )


def downgrade() -> None:
    """Drop all ledger tables."""
    op.drop_table('catalog_resources')
    op.drop_table('admin_audit_logs')
    op.drop_table('unlocks')
    op.drop_table('payment_idempotency_log')
    op.drop_table('purchase_bonus_rules')
    op.drop_table('promo_redemptions')
    op.drop_table('promo_codes')
    op.drop_table('lot_consumptions')
    op.drop_table('credit_transactions')
    op.drop_table('credit_lots')
    op.drop_table('accounts')
