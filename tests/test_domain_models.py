"""
Tests for domain models.
"""

from dataclasses import FrozenInstanceError
from datetime import UTC, datetime
from uuid import uuid4

import pytest

from creditledger.models.api import LotSource, UnlockMethod
from creditledger.models.domain import (
    BalanceData,
    BalanceDelta,
    CreditLotData,
    DebitSplit,
    NewLot,
    PurchaseResult,
)


def make_lot(granted: int, remaining: int, unit: int, remainder: int = 0) -> CreditLotData:
    return CreditLotData(
        lot_id=1,
        user_id=uuid4(),
        credits_granted=granted,
        credits_remaining=remaining,
        unit_value_cents=unit,
        remainder_cents=remainder,
        source=LotSource.PAYMENT,
        payment_reference="pi_1",
        created_at=datetime(2026, 1, 1, tzinfo=UTC),
    )


class TestNewLot:
    """Tests for NewLot validation."""

    def test_valid_lot(self):
        lot = NewLot(credits=15, unit_value_cents=79, source=LotSource.PAYMENT, remainder_cents=14)
        assert lot.payment_reference is None

    @pytest.mark.parametrize("credits", [0, -5])
    def test_credits_must_be_positive(self, credits: int):
        with pytest.raises(ValueError, match="positive"):
            NewLot(credits=credits, unit_value_cents=100, source=LotSource.ADMIN_GRANT)

    def test_negative_unit_value(self):
        with pytest.raises(ValueError, match="negative"):
            NewLot(credits=5, unit_value_cents=-1, source=LotSource.ADMIN_GRANT)

    @pytest.mark.parametrize("remainder", [-1, 5, 6])
    def test_remainder_out_of_range(self, remainder: int):
        with pytest.raises(ValueError, match="Remainder"):
            NewLot(
                credits=5,
                unit_value_cents=100,
                source=LotSource.PAYMENT,
                remainder_cents=remainder,
            )

    def test_frozen(self):
        lot = NewLot(credits=5, unit_value_cents=100, source=LotSource.PAYMENT)
        with pytest.raises(FrozenInstanceError):
            lot.credits = 6  # type: ignore[misc]


class TestBalanceDelta:
    """Tests for BalanceDelta pairing rules."""

    def test_free_only(self):
        delta = BalanceDelta(free_delta=10, paid_delta=0)
        assert delta.new_lot is None
        assert delta.is_empty is False

    def test_empty(self):
        assert BalanceDelta(free_delta=0, paid_delta=0).is_empty is True

    def test_positive_paid_with_matching_lot(self):
        lot = NewLot(credits=5, unit_value_cents=100, source=LotSource.ADMIN_GRANT)
        delta = BalanceDelta(free_delta=0, paid_delta=5, new_lot=lot)
        assert delta.new_lot == lot

    def test_positive_paid_without_lot(self):
        with pytest.raises(ValueError, match="requires a new lot"):
            BalanceDelta(free_delta=0, paid_delta=5)

    def test_lot_size_mismatch(self):
        lot = NewLot(credits=4, unit_value_cents=100, source=LotSource.ADMIN_GRANT)
        with pytest.raises(ValueError, match="does not match"):
            BalanceDelta(free_delta=0, paid_delta=5, new_lot=lot)

    def test_lot_with_negative_paid(self):
        lot = NewLot(credits=5, unit_value_cents=100, source=LotSource.ADMIN_GRANT)
        with pytest.raises(ValueError, match="only allowed"):
            BalanceDelta(free_delta=0, paid_delta=-5, new_lot=lot)

    def test_negative_paid_without_lot(self):
        delta = BalanceDelta(free_delta=-1, paid_delta=-2)
        assert delta.is_empty is False


class TestCreditLotData:
    """Tests for remaining cost basis."""

    def test_untouched_lot_carries_remainder(self):
        # 1199 cents over 15 credits: 79 each plus 14 left over
        lot = make_lot(granted=15, remaining=15, unit=79, remainder=14)
        assert lot.remaining_cost_cents == 1199

    def test_partly_consumed_lot_drops_remainder(self):
        lot = make_lot(granted=15, remaining=10, unit=79, remainder=14)
        assert lot.remaining_cost_cents == 790

    def test_drained_lot(self):
        assert make_lot(granted=5, remaining=0, unit=100).remaining_cost_cents == 0


class TestBalanceData:
    """Tests for BalanceData."""

    def test_total_credits(self):
        balance = BalanceData(user_id=uuid4(), free_credits=7, paid_credits=15, lots=())
        assert balance.total_credits == 22


class TestDerivedTotals:
    """Tests for convenience totals."""

    def test_debit_split_total(self):
        assert DebitSplit(free_credits=2, paid_credits=1).total == 3

    def test_purchase_result_credits_spent(self):
        result = PurchaseResult(
            resource_id=uuid4(),
            unlock_id=uuid4(),
            unlock_method=UnlockMethod.PURCHASE,
            free_credits_spent=3,
            paid_credits_spent=0,
            balance=BalanceData(user_id=uuid4(), free_credits=7, paid_credits=0, lots=()),
        )
        assert result.credits_spent == 3
