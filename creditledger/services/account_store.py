"""
Account Store - Per-user balances and paid credit lots.

The only code that writes accounts, credit_lots, lot_consumptions and the
credit journal. Every mutation goes through apply_delta on an account row
previously locked with lock_account inside the caller's transaction.
"""

from collections.abc import Sequence
from uuid import UUID, uuid4

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from creditledger.db.models import Account, CreditLot, CreditTransaction, LotConsumption
from creditledger.exceptions import (
    InsufficientBalanceError,
    InsufficientCreditsError,
    LedgerCorruptionError,
    WriteVerificationError,
)
from creditledger.models.api import TransactionType
from creditledger.models.domain import (
    AppliedDelta,
    BalanceData,
    BalanceDelta,
    CreditLotData,
    DebitSplit,
    LotSlice,
)
from creditledger.observability.metrics import metrics

logger = get_logger(__name__)


def split_debit(free_available: int, paid_available: int, price_credits: int) -> DebitSplit:
    """
    Split a price across the two currencies, free credits first.

    Raises:
        InsufficientCreditsError: free + paid cannot cover the price
    """
    if price_credits < 0:
        raise ValueError(f"Price cannot be negative: {price_credits}")
    available = free_available + paid_available
    if available < price_credits:
        raise InsufficientCreditsError(available, price_credits)
    from_free = min(free_available, price_credits)
    return DebitSplit(free_credits=from_free, paid_credits=price_credits - from_free)


def allocate_fifo(
    user_id: UUID, lots: Sequence[CreditLotData], amount: int
) -> tuple[LotSlice, ...]:
    """
    Take `amount` credits from lots, oldest first.

    `lots` must already be ordered by (created_at, lot_id). A lot's remainder
    cents are charged to the first slice taken from an untouched lot.

    Raises:
        LedgerCorruptionError: lots hold fewer credits than requested
    """
    slices: list[LotSlice] = []
    outstanding = amount
    for lot in lots:
        if outstanding == 0:
            break
        if lot.credits_remaining == 0:
            continue
        take = min(lot.credits_remaining, outstanding)
        cost = take * lot.unit_value_cents
        if lot.credits_remaining == lot.credits_granted:
            cost += lot.remainder_cents
        slices.append(
            LotSlice(
                lot_id=lot.lot_id,
                credits=take,
                unit_value_cents=lot.unit_value_cents,
                cost_cents=cost,
            )
        )
        outstanding -= take

    if outstanding > 0:
        raise LedgerCorruptionError(
            user_id,
            f"lots exhausted with {outstanding} of {amount} paid credits unallocated",
        )
    return tuple(slices)


def lot_to_domain(lot: CreditLot) -> CreditLotData:
    """Convert ORM lot to domain model."""
    return CreditLotData(
        lot_id=lot.id,
        user_id=lot.user_id,
        credits_granted=lot.credits_granted,
        credits_remaining=lot.credits_remaining,
        unit_value_cents=lot.unit_value_cents,
        remainder_cents=lot.remainder_cents,
        source=lot.source,
        payment_reference=lot.payment_reference,
        created_at=lot.created_at,
    )


class AccountStore:
    """
    Transaction-scoped repository over accounts and credit lots.

    Holds no state beyond the session: nothing read here outlives the
    caller's transaction.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_balance(self, user_id: UUID) -> BalanceData:
        """
        Read the committed balance and open lots for a user.

        Users without an account row read as an empty balance.
        """
        account = await self.session.get(Account, user_id, populate_existing=True)
        if account is None:
            return BalanceData(user_id=user_id, free_credits=0, paid_credits=0, lots=())

        stmt = (
            select(CreditLot)
            .where(CreditLot.user_id == user_id, CreditLot.credits_remaining > 0)
            .order_by(CreditLot.created_at, CreditLot.id)
        )
        result = await self.session.execute(stmt)
        lots = tuple(lot_to_domain(lot) for lot in result.scalars().all())

        return BalanceData(
            user_id=user_id,
            free_credits=account.free_credits,
            paid_credits=account.paid_credits,
            lots=lots,
        )

    async def lock_account(self, user_id: UUID, create: bool = False) -> Account | None:
        """
        Lock the user's account row (SELECT FOR UPDATE).

        With create=True a missing row is inserted first; a concurrent insert
        of the same user is resolved by re-reading the winner's row.
        """
        account = await self._select_for_update(user_id)
        if account is not None or not create:
            return account

        try:
            async with self.session.begin_nested():
                self.session.add(Account(user_id=user_id, free_credits=0, paid_credits=0))
                await self.session.flush()
        except IntegrityError:
            logger.info("account_creation_race_resolved", user_id=str(user_id))

        account = await self._select_for_update(user_id)
        if account is None:
            raise WriteVerificationError(f"Account {user_id} not found after insert")
        return account

    async def apply_delta(self, account: Account, delta: BalanceDelta) -> AppliedDelta:
        """
        Apply a signed delta to a locked account.

        Negative paid deltas consume lots FIFO; positive ones create the
        delta's new lot. After the write the lot set is re-summed and must
        equal paid_credits.

        Raises:
            InsufficientBalanceError: a counter would go negative
            LedgerCorruptionError: lot set and aggregate diverged
        """
        user_id = account.user_id
        free_before = account.free_credits
        paid_before = account.paid_credits
        free_after = free_before + delta.free_delta
        paid_after = paid_before + delta.paid_delta

        if free_after < 0:
            raise InsufficientBalanceError(free_before, -delta.free_delta, "free")
        if paid_after < 0:
            raise InsufficientBalanceError(paid_before, -delta.paid_delta, "paid")

        consumed: tuple[LotSlice, ...] = ()
        if delta.paid_delta < 0:
            consumed = await self._consume_lots(user_id, -delta.paid_delta)

        created_lot_id: int | None = None
        if delta.new_lot is not None:
            lot = CreditLot(
                user_id=user_id,
                credits_granted=delta.new_lot.credits,
                credits_remaining=delta.new_lot.credits,
                unit_value_cents=delta.new_lot.unit_value_cents,
                remainder_cents=delta.new_lot.remainder_cents,
                source=delta.new_lot.source,
                payment_reference=delta.new_lot.payment_reference,
            )
            self.session.add(lot)
            await self.session.flush()
            created_lot_id = lot.id

        account.free_credits = free_after
        account.paid_credits = paid_after
        await self.session.flush()

        await self._verify_lot_sum(user_id, paid_after)

        return AppliedDelta(
            free_before=free_before,
            free_after=free_after,
            paid_before=paid_before,
            paid_after=paid_after,
            consumed=consumed,
            created_lot_id=created_lot_id,
        )

    async def journal(
        self,
        account: Account,
        applied: AppliedDelta,
        transaction_type: TransactionType,
        description: str,
        reference: str | None = None,
        actor_id: UUID | None = None,
    ) -> CreditTransaction:
        """Append a journal entry for an applied delta, with its lot slices."""
        entry = CreditTransaction(
            id=uuid4(),
            user_id=account.user_id,
            transaction_type=transaction_type,
            free_delta=applied.free_after - applied.free_before,
            paid_delta=applied.paid_after - applied.paid_before,
            free_balance_after=applied.free_after,
            paid_balance_after=applied.paid_after,
            reference=reference,
            description=description,
            actor_id=actor_id,
        )
        self.session.add(entry)
        await self.session.flush()

        for lot_slice in applied.consumed:
            self.session.add(
                LotConsumption(
                    transaction_id=entry.id,
                    lot_id=lot_slice.lot_id,
                    credits=lot_slice.credits,
                    unit_value_cents=lot_slice.unit_value_cents,
                    cost_cents=lot_slice.cost_cents,
                )
            )
        if applied.consumed:
            await self.session.flush()

        return entry

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    async def _select_for_update(self, user_id: UUID) -> Account | None:
        stmt = (
            select(Account)
            .where(Account.user_id == user_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def _consume_lots(self, user_id: UUID, amount: int) -> tuple[LotSlice, ...]:
        stmt = (
            select(CreditLot)
            .where(CreditLot.user_id == user_id, CreditLot.credits_remaining > 0)
            .order_by(CreditLot.created_at, CreditLot.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        lots = list(result.scalars().all())

        try:
            slices = allocate_fifo(user_id, [lot_to_domain(lot) for lot in lots], amount)
        except LedgerCorruptionError as exc:
            self._report_corruption(exc)
            raise

        by_id = {lot.id: lot for lot in lots}
        for lot_slice in slices:
            lot = by_id[lot_slice.lot_id]
            lot.credits_remaining = lot.credits_remaining - lot_slice.credits
        return slices

    async def _verify_lot_sum(self, user_id: UUID, expected_paid: int) -> None:
        stmt = select(func.coalesce(func.sum(CreditLot.credits_remaining), 0)).where(
            CreditLot.user_id == user_id
        )
        lot_total = int((await self.session.execute(stmt)).scalar_one())
        if lot_total != expected_paid:
            exc = LedgerCorruptionError(
                user_id,
                f"lots hold {lot_total} credits but paid_credits is {expected_paid}",
            )
            self._report_corruption(exc)
            raise exc

    @staticmethod
    def _report_corruption(exc: LedgerCorruptionError) -> None:
        metrics.corruption_total.inc()
        logger.critical(
            "ledger_corruption_detected",
            user_id=str(exc.user_id),
            detail=exc.message,
        )
