"""
Database Models - SQLAlchemy ORM models with strict typing.

NO DICTIONARIES - All columns use Mapped[] type annotations.
Column types are dialect-portable (PostgreSQL in production, SQLite in tests).
"""

from datetime import UTC, datetime
from enum import Enum
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    text,
)
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from creditledger.models.api import LotSource, TransactionType, UnlockMethod

# SQLite only autoincrements INTEGER PRIMARY KEY
BigIntegerPK = BigInteger().with_variant(Integer, "sqlite")


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


def _enum_column(enum_cls: type[Enum], name: str) -> SQLEnum:
    return SQLEnum(
        enum_cls,
        name=name,
        native_enum=False,
        length=20,
        values_callable=lambda x: [e.value for e in x],
    )


class Account(Base):
    """
    ORM model for accounts table.

    One row per marketplace user holding both credit counters.
    The row is the unit of mutual exclusion for every ledger mutation.
    """

    __tablename__ = "accounts"

    user_id: Mapped[UUID] = mapped_column(Uuid, primary_key=True)

    free_credits: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    paid_credits: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("free_credits >= 0", name="ck_accounts_free_non_negative"),
        CheckConstraint("paid_credits >= 0", name="ck_accounts_paid_non_negative"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<Account(user_id={self.user_id}, free={self.free_credits}, "
            f"paid={self.paid_credits})>"
        )


class CreditLot(Base):
    """
    ORM model for credit_lots table.

    One row per paid credit acquisition. Consumed oldest first; never deleted.
    """

    __tablename__ = "credit_lots"

    id: Mapped[int] = mapped_column(BigIntegerPK, primary_key=True, autoincrement=True)

    user_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("accounts.user_id"), nullable=False
    )

    credits_granted: Mapped[int] = mapped_column(BigInteger, nullable=False)
    credits_remaining: Mapped[int] = mapped_column(BigInteger, nullable=False)
    unit_value_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    # price_cents % credits, carried by the first credit consumed
    remainder_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    source: Mapped[LotSource] = mapped_column(_enum_column(LotSource, "lot_source"), nullable=False)
    payment_reference: Mapped[str | None] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        CheckConstraint("credits_granted > 0", name="ck_credit_lots_granted_positive"),
        CheckConstraint("credits_remaining >= 0", name="ck_credit_lots_remaining_non_negative"),
        CheckConstraint(
            "credits_remaining <= credits_granted", name="ck_credit_lots_remaining_bounded"
        ),
        CheckConstraint("unit_value_cents >= 0", name="ck_credit_lots_unit_value_non_negative"),
        CheckConstraint("remainder_cents >= 0", name="ck_credit_lots_remainder_non_negative"),
        Index("idx_credit_lots_user_fifo", "user_id", "created_at", "id"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<CreditLot(id={self.id}, user_id={self.user_id}, "
            f"remaining={self.credits_remaining}/{self.credits_granted}, "
            f"unit={self.unit_value_cents})>"
        )


class CreditTransaction(Base):
    """
    ORM model for credit_transactions table.

    Append-only journal of every balance mutation with post-mutation snapshots.
    """

    __tablename__ = "credit_transactions"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    user_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("accounts.user_id"), nullable=False, index=True
    )

    transaction_type: Mapped[TransactionType] = mapped_column(
        _enum_column(TransactionType, "transaction_type"), nullable=False
    )

    free_delta: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    paid_delta: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    free_balance_after: Mapped[int] = mapped_column(BigInteger, nullable=False)
    paid_balance_after: Mapped[int] = mapped_column(BigInteger, nullable=False)

    # Payment reference, promo code or resource id depending on type
    reference: Mapped[str | None] = mapped_column(String(255), nullable=True)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    actor_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        CheckConstraint("free_balance_after >= 0", name="ck_credit_tx_free_after_non_negative"),
        CheckConstraint("paid_balance_after >= 0", name="ck_credit_tx_paid_after_non_negative"),
        Index("idx_credit_tx_user_created", "user_id", "created_at"),
        Index("idx_credit_tx_type", "transaction_type"),
        # At most one registration bonus per user
        Index(
            "uq_credit_tx_registration_bonus",
            "user_id",
            unique=True,
            postgresql_where=text("transaction_type = 'registration_bonus'"),
            sqlite_where=text("transaction_type = 'registration_bonus'"),
        ),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<CreditTransaction(id={self.id}, type={self.transaction_type}, "
            f"free_delta={self.free_delta}, paid_delta={self.paid_delta})>"
        )


class LotConsumption(Base):
    """
    ORM model for lot_consumptions table.

    Which lot slices paid for which debit, with their cost basis.
    """

    __tablename__ = "lot_consumptions"

    id: Mapped[int] = mapped_column(BigIntegerPK, primary_key=True, autoincrement=True)

    transaction_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("credit_transactions.id"), nullable=False, index=True
    )
    lot_id: Mapped[int] = mapped_column(
        BigIntegerPK, ForeignKey("credit_lots.id"), nullable=False, index=True
    )

    credits: Mapped[int] = mapped_column(BigInteger, nullable=False)
    unit_value_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    cost_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (CheckConstraint("credits > 0", name="ck_lot_consumptions_positive"),)


class PromoCode(Base):
    """ORM model for promo_codes table."""

    __tablename__ = "promo_codes"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    code: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    free_credits: Mapped[int] = mapped_column(Integer, nullable=False)
    max_uses: Mapped[int | None] = mapped_column(Integer, nullable=True)
    current_uses: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    allow_multiple_per_user: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )
    # Soft delete; the code string stays reserved
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint("free_credits > 0", name="ck_promo_codes_credits_positive"),
        CheckConstraint("current_uses >= 0", name="ck_promo_codes_uses_non_negative"),
        CheckConstraint(
            "max_uses IS NULL OR current_uses <= max_uses",
            name="ck_promo_codes_uses_within_max",
        ),
        Index("idx_promo_codes_active", "is_active"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<PromoCode(code={self.code}, uses={self.current_uses}/{self.max_uses}, "
            f"active={self.is_active})>"
        )


class PromoRedemption(Base):
    """ORM model for promo_redemptions table."""

    __tablename__ = "promo_redemptions"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    promo_code_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("promo_codes.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    free_credits_granted: Mapped[int] = mapped_column(Integer, nullable=False)

    redeemed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        Index("idx_promo_redemptions_code_user", "promo_code_id", "user_id"),
        Index("idx_promo_redemptions_user", "user_id"),
    )


class PurchaseBonusRule(Base):
    """ORM model for purchase_bonus_rules table."""

    __tablename__ = "purchase_bonus_rules"

    pack_id: Mapped[str] = mapped_column(String(50), primary_key=True)
    pack_credits: Mapped[int] = mapped_column(Integer, nullable=False)
    bonus_free_credits: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("pack_credits > 0", name="ck_purchase_bonus_pack_positive"),
        CheckConstraint("bonus_free_credits >= 0", name="ck_purchase_bonus_non_negative"),
    )


class PaymentIdempotencyRecord(Base):
    """
    ORM model for payment_idempotency_log table.

    Unique payment_reference is the insert-if-absent primitive; the row stores
    the result returned to every later delivery of the same payment.
    """

    __tablename__ = "payment_idempotency_log"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    payment_reference: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    user_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    pack_id: Mapped[str | None] = mapped_column(String(50), nullable=True)

    paid_credits_added: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    bonus_credits_added: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    unit_value_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    lot_id: Mapped[int | None] = mapped_column(
        BigIntegerPK, ForeignKey("credit_lots.id"), nullable=True
    )

    processed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )


class Unlock(Base):
    """ORM model for unlocks table - proof of ownership of a catalog resource."""

    __tablename__ = "unlocks"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    user_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    resource_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    unlock_method: Mapped[UnlockMethod] = mapped_column(
        _enum_column(UnlockMethod, "unlock_method"), nullable=False
    )

    free_credits_spent: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    paid_credits_spent: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    transaction_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("credit_transactions.id"), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        UniqueConstraint("user_id", "resource_id", name="uq_unlocks_user_resource"),
        Index("idx_unlocks_user", "user_id"),
    )


class AdminAuditLog(Base):
    """
    ORM model for admin_audit_logs table.

    Immutable audit trail of admin balance changes.
    """

    __tablename__ = "admin_audit_logs"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    admin_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    target_user_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)

    free_amount: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    paid_amount: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    unit_value_cents: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    reason: Mapped[str] = mapped_column(Text, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (Index("idx_admin_audit_logs_created_at", "created_at"),)


class CatalogResource(Base):
    """
    ORM model for catalog_resources table.

    Only the columns the ledger reads; the catalog itself lives elsewhere.
    """

    __tablename__ = "catalog_resources"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    price_credits: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_published: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        CheckConstraint("price_credits >= 0", name="ck_catalog_resources_price_non_negative"),
    )


class LedgerSetting(Base):
    """
    ORM model for ledger_settings table.

    Admin-editable settings keyed by name; value shape depends on the key.
    """

    __tablename__ = "ledger_settings"

    key: Mapped[str] = mapped_column(String(64), primary_key=True)
    value: Mapped[dict[str, object]] = mapped_column(JSON, nullable=False)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )
    updated_by: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
