"""
Domain Models - Internal business logic models using dataclasses.

NO DICTIONARIES - All data structures are strongly typed immutable dataclasses.
"""

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from creditledger.models.api import LotSource, TransactionType, UnlockMethod


@dataclass(frozen=True)
class NewLot:
    """Paid credit lot to be created alongside a positive paid delta."""

    credits: int
    unit_value_cents: int
    source: LotSource
    remainder_cents: int = 0
    payment_reference: str | None = None

    def __post_init__(self) -> None:
        """Validate lot constraints."""
        if self.credits <= 0:
            raise ValueError(f"Lot credits must be positive: {self.credits}")
        if self.unit_value_cents < 0:
            raise ValueError(f"Unit value cannot be negative: {self.unit_value_cents}")
        if not 0 <= self.remainder_cents < self.credits:
            raise ValueError(f"Remainder out of range: {self.remainder_cents}")


@dataclass(frozen=True)
class BalanceDelta:
    """
    Signed change to an account's two counters.

    A positive paid delta must bring exactly one new lot of the same size;
    a negative paid delta is served from existing lots, oldest first.
    """

    free_delta: int
    paid_delta: int
    new_lot: NewLot | None = None

    def __post_init__(self) -> None:
        """Validate delta / lot pairing."""
        if self.paid_delta > 0:
            if self.new_lot is None:
                raise ValueError("Positive paid delta requires a new lot")
            if self.new_lot.credits != self.paid_delta:
                raise ValueError(
                    f"Lot size {self.new_lot.credits} does not match paid delta {self.paid_delta}"
                )
        elif self.new_lot is not None:
            raise ValueError("New lot only allowed with a positive paid delta")

    @property
    def is_empty(self) -> bool:
        """True when the delta changes nothing."""
        return self.free_delta == 0 and self.paid_delta == 0


@dataclass(frozen=True)
class CreditLotData:
    """Immutable view of a paid credit lot."""

    lot_id: int
    user_id: UUID
    credits_granted: int
    credits_remaining: int
    unit_value_cents: int
    remainder_cents: int
    source: LotSource
    payment_reference: str | None
    created_at: datetime

    @property
    def remaining_cost_cents(self) -> int:
        """Cost basis still held by this lot (remainder rides on the first credit)."""
        if self.credits_remaining == 0:
            return 0
        cost = self.credits_remaining * self.unit_value_cents
        if self.credits_remaining == self.credits_granted:
            cost += self.remainder_cents
        return cost


@dataclass(frozen=True)
class LotSlice:
    """Credits taken from a single lot by one debit."""

    lot_id: int
    credits: int
    unit_value_cents: int
    cost_cents: int


@dataclass(frozen=True)
class AppliedDelta:
    """Result of applying a BalanceDelta to an account."""

    free_before: int
    free_after: int
    paid_before: int
    paid_after: int
    consumed: tuple[LotSlice, ...]
    created_lot_id: int | None


@dataclass(frozen=True)
class BalanceData:
    """Immutable balance snapshot for one user."""

    user_id: UUID
    free_credits: int
    paid_credits: int
    lots: tuple[CreditLotData, ...]

    @property
    def total_credits(self) -> int:
        """Spendable credits across both currencies."""
        return self.free_credits + self.paid_credits


@dataclass(frozen=True)
class BreakdownData:
    """Balance plus lifetime totals derived from the journal."""

    balance: BalanceData
    total_free_granted: int
    total_paid_acquired: int
    total_free_spent: int
    total_paid_spent: int
    total_revoked: int
    paid_cost_basis_cents: int
    unlock_count: int


@dataclass(frozen=True)
class DebitSplit:
    """How a purchase price is split across the two currencies."""

    free_credits: int
    paid_credits: int

    @property
    def total(self) -> int:
        return self.free_credits + self.paid_credits


@dataclass(frozen=True)
class PaymentCreditResult:
    """
    Outcome of crediting a confirmed payment.

    already_processed=True is the idempotent no-op: the stored result of the
    first delivery is returned and nothing was mutated.
    """

    payment_reference: str
    paid_credits_added: int
    bonus_credits_added: int
    unit_value_cents: int
    already_processed: bool = False


@dataclass(frozen=True)
class Reservation:
    """Idempotency guard answer for one payment reference."""

    already_processed: bool
    previous_result: PaymentCreditResult | None = None


@dataclass(frozen=True)
class PromoRedemptionResult:
    """Outcome of a successful promo redemption."""

    code: str
    free_credits_granted: int
    balance: BalanceData


@dataclass(frozen=True)
class PurchaseResult:
    """Outcome of a resource purchase."""

    resource_id: UUID
    unlock_id: UUID
    unlock_method: UnlockMethod
    free_credits_spent: int
    paid_credits_spent: int
    balance: BalanceData

    @property
    def credits_spent(self) -> int:
        return self.free_credits_spent + self.paid_credits_spent


@dataclass(frozen=True)
class RegistrationBonusResult:
    """
    Outcome of a registration bonus request.

    already_granted=True means an earlier call credited the bonus and
    nothing was mutated this time.
    """

    free_credits_granted: int
    already_granted: bool
    balance: BalanceData


@dataclass(frozen=True)
class TransactionData:
    """Immutable journal entry."""

    transaction_id: UUID
    transaction_type: TransactionType
    free_delta: int
    paid_delta: int
    free_balance_after: int
    paid_balance_after: int
    reference: str | None
    description: str
    created_at: datetime


@dataclass(frozen=True)
class TransactionPage:
    """One page of a user's journal, newest first."""

    transactions: tuple[TransactionData, ...]
    total_count: int
    has_more: bool


@dataclass(frozen=True)
class UnlockData:
    """A resource owned by a user."""

    unlock_id: UUID
    resource_id: UUID
    title: str | None
    unlock_method: UnlockMethod
    free_credits_spent: int
    paid_credits_spent: int
    unlocked_at: datetime

    @property
    def credits_spent(self) -> int:
        return self.free_credits_spent + self.paid_credits_spent


@dataclass(frozen=True)
class AdminChangeResult:
    """Outcome of an admin grant or revoke."""

    user_id: UUID
    transaction_ids: tuple[UUID, ...]
    balance: BalanceData


@dataclass(frozen=True)
class PromoCodeData:
    """Immutable promo code snapshot."""

    id: UUID
    code: str
    free_credits: int
    max_uses: int | None
    current_uses: int
    allow_multiple_per_user: bool
    is_active: bool
    expires_at: datetime | None
    description: str | None
    created_by: UUID | None
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class PromoCodeStats:
    """Promo code plus redemption statistics."""

    promo_code: PromoCodeData
    redemption_count: int
    unique_users: int
    total_credits_granted: int


@dataclass(frozen=True)
class PromoRedemptionData:
    """Immutable redemption record."""

    id: UUID
    promo_code_id: UUID
    user_id: UUID
    free_credits_granted: int
    redeemed_at: datetime


@dataclass(frozen=True)
class PurchaseBonusRuleData:
    """Immutable purchase bonus rule."""

    pack_id: str
    pack_credits: int
    bonus_free_credits: int
    is_active: bool
    updated_at: datetime

    def applies_to(self, pack_id: str, credits: int) -> bool:
        """Rule applies to an active matching pack purchase."""
        return self.is_active and self.pack_id == pack_id and self.pack_credits == credits


@dataclass(frozen=True)
class RegistrationBonusConfig:
    """Admin setting for the one-time registration bonus."""

    enabled: bool
    free_credits: int
    updated_at: datetime | None = None
    updated_by: UUID | None = None

    @property
    def grant_amount(self) -> int:
        """Credits a new user receives (0 when disabled)."""
        return self.free_credits if self.enabled else 0


@dataclass(frozen=True)
class SessionUser:
    """Authenticated marketplace user from a session token."""

    user_id: UUID
    role: str
    email: str | None = None
