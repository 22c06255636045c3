"""add registration bonus setting and promo code soft delete

Revision ID: 2026_10_19_0001
Revises: 2026_10_19_0000
Create Date: 2026-10-19 14:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID


# revision identifiers, used by Alembic.
revision: str = '2026_10_19_0001'
down_revision: Union[str, None] = '2026_10_19_0000'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Admin-editable settings; registration bonus starts disabled
    settings_table = op.create_table(
        'ledger_settings',
        sa.Column('key', sa.String(64), primary_key=True),
        sa.Column('value', JSONB(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_by', UUID(as_uuid=True), nullable=True),
    )
    op.bulk_insert(
        settings_table,
        [{'key': 'registration_bonus', 'value': {'enabled': False, 'free_credits': 0}}],
    )

    # Registration bonus journal entries
    op.drop_constraint('ck_credit_tx_type', 'credit_transactions', type_='check')
    op.create_check_constraint(
        'ck_credit_tx_type',
        'credit_transactions',
        "transaction_type IN ('admin_grant', 'admin_revoke', 'promo', 'purchase', 'bonus', "
        "'spend', 'registration_bonus')",
    )
    op.create_index(
        'uq_credit_tx_registration_bonus',
        'credit_transactions',
        ['user_id'],
        unique=True,
        postgresql_where=sa.text("transaction_type = 'registration_bonus'"),
    )

    # Deleted promo codes keep their redemption history
    op.add_column('promo_codes', sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True))


def downgrade() -> None:
    op.drop_column('promo_codes', 'deleted_at')

    op.drop_index('uq_credit_tx_registration_bonus', table_name='credit_transactions')
    op.execute(
        "UPDATE credit_transactions SET transaction_type = 'bonus' "
        "WHERE transaction_type = 'registration_bonus'"
    )
    op.drop_constraint('ck_credit_tx_type', 'credit_transactions', type_='check')
    op.create_check_constraint(
        'ck_credit_tx_type',
        'credit_transactions',
        "transaction_type IN ('admin_grant', 'admin_revoke', 'promo', 'purchase', 'bonus', 'spend')",
    )

    op.drop_table('ledger_settings')
