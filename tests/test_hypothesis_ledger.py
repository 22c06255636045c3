"""
Hypothesis Property-Based Tests for ledger arithmetic.

Split, FIFO allocation and unit-value invariants on the pure helpers,
without a database.
"""

import string
from datetime import UTC, datetime, timedelta
from uuid import uuid4

import pytest
from hypothesis import assume, given, settings
from hypothesis import strategies as st

from creditledger.exceptions import InsufficientCreditsError, LedgerCorruptionError
from creditledger.models.api import LotSource, normalize_promo_code
from creditledger.models.domain import BalanceDelta, CreditLotData, NewLot
from creditledger.services.account_store import allocate_fifo, split_debit
from creditledger.services.ledger import unit_value

# ============================================================================
# Hypothesis Strategies
# ============================================================================

non_negative_credits = st.integers(min_value=0, max_value=100_000)
positive_credits = st.integers(min_value=1, max_value=100_000)
prices_cents = st.integers(min_value=0, max_value=1_000_000)

BASE_TIME = datetime(2026, 1, 1, tzinfo=UTC)


@st.composite
def credit_lots(draw, max_lots: int = 8):
    """Generate an ordered list of lots, some partly consumed."""
    count = draw(st.integers(min_value=0, max_value=max_lots))
    user_id = uuid4()
    lots = []
    for index in range(count):
        granted = draw(st.integers(min_value=1, max_value=500))
        price = draw(st.integers(min_value=0, max_value=50_000))
        unit, remainder = divmod(price, granted)
        lots.append(
            CreditLotData(
                lot_id=index + 1,
                user_id=user_id,
                credits_granted=granted,
                credits_remaining=draw(st.integers(min_value=0, max_value=granted)),
                unit_value_cents=unit,
                remainder_cents=remainder,
                source=LotSource.PAYMENT,
                payment_reference=f"pi_{index}",
                created_at=BASE_TIME + timedelta(minutes=index),
            )
        )
    return lots


# ============================================================================
# split_debit
# ============================================================================


class TestSplitDebitProperties:
    """Invariants of the free-first split."""

    @given(free=non_negative_credits, paid=non_negative_credits, price=non_negative_credits)
    @settings(max_examples=200)
    def test_split_sums_to_price(self, free: int, paid: int, price: int):
        assume(free + paid >= price)
        split = split_debit(free, paid, price)

        assert split.free_credits + split.paid_credits == price
        assert 0 <= split.free_credits <= free
        assert 0 <= split.paid_credits <= paid

    @given(free=non_negative_credits, paid=non_negative_credits, data=st.data())
    def test_paid_untouched_while_free_suffices(self, free: int, paid: int, data):
        price = data.draw(st.integers(min_value=0, max_value=free))
        assert split_debit(free, paid, price).paid_credits == 0

    @given(free=non_negative_credits, paid=positive_credits, data=st.data())
    def test_paid_used_only_after_free_exhausted(self, free: int, paid: int, data):
        price = free + data.draw(st.integers(min_value=1, max_value=paid))
        split = split_debit(free, paid, price)
        assert split.free_credits == free
        assert split.paid_credits == price - free

    @given(free=non_negative_credits, paid=non_negative_credits, shortfall=positive_credits)
    def test_insufficient_raises(self, free: int, paid: int, shortfall: int):
        with pytest.raises(InsufficientCreditsError):
            split_debit(free, paid, free + paid + shortfall)


# ============================================================================
# allocate_fifo
# ============================================================================


class TestAllocateFifoProperties:
    """Invariants of oldest-first lot consumption."""

    @given(lots=credit_lots(), data=st.data())
    @settings(max_examples=200)
    def test_allocates_exact_amount_within_lots(self, lots, data):
        available = sum(lot.credits_remaining for lot in lots)
        amount = data.draw(st.integers(min_value=0, max_value=available))

        slices = allocate_fifo(uuid4(), lots, amount)

        assert sum(s.credits for s in slices) == amount
        by_id = {lot.lot_id: lot for lot in lots}
        for lot_slice in slices:
            assert 0 < lot_slice.credits <= by_id[lot_slice.lot_id].credits_remaining

    @given(lots=credit_lots(), data=st.data())
    def test_oldest_first(self, lots, data):
        available = sum(lot.credits_remaining for lot in lots)
        amount = data.draw(st.integers(min_value=0, max_value=available))

        slices = allocate_fifo(uuid4(), lots, amount)

        ids = [s.lot_id for s in slices]
        assert ids == sorted(ids)
        # Every lot before the last touched one is drained
        for lot_slice in slices[:-1]:
            lot = next(lot for lot in lots if lot.lot_id == lot_slice.lot_id)
            assert lot_slice.credits == lot.credits_remaining

    @given(lots=credit_lots())
    def test_draining_everything_costs_remaining_basis(self, lots):
        available = sum(lot.credits_remaining for lot in lots)

        slices = allocate_fifo(uuid4(), lots, available)

        assert sum(s.cost_cents for s in slices) == sum(lot.remaining_cost_cents for lot in lots)

    @given(lots=credit_lots(), excess=positive_credits)
    def test_overdraw_is_corruption(self, lots, excess: int):
        available = sum(lot.credits_remaining for lot in lots)
        with pytest.raises(LedgerCorruptionError):
            allocate_fifo(uuid4(), lots, available + excess)


# ============================================================================
# unit_value and lot construction
# ============================================================================


class TestUnitValueProperties:
    """Cost basis is exact in integer cents."""

    @given(price=prices_cents, credits=positive_credits)
    def test_lot_cost_reconstructs_price(self, price: int, credits: int):
        unit, remainder = unit_value(price, credits)

        assert unit * credits + remainder == price
        assert 0 <= remainder < credits
        lot = NewLot(
            credits=credits,
            unit_value_cents=unit,
            source=LotSource.PAYMENT,
            remainder_cents=remainder,
        )
        assert lot.remainder_cents == remainder

    @given(credits=positive_credits, free=st.integers(min_value=-1000, max_value=1000))
    def test_positive_paid_delta_needs_matching_lot(self, credits: int, free: int):
        with pytest.raises(ValueError):
            BalanceDelta(free_delta=free, paid_delta=credits)
        with pytest.raises(ValueError):
            BalanceDelta(
                free_delta=free,
                paid_delta=credits,
                new_lot=NewLot(credits=credits + 1, unit_value_cents=0, source=LotSource.PAYMENT),
            )


class TestPromoCodeNormalization:
    """Normalization is idempotent."""

    @given(code=st.text(alphabet=string.ascii_letters + string.digits + " _-"))
    def test_idempotent(self, code: str):
        once = normalize_promo_code(code)
        assert normalize_promo_code(once) == once
