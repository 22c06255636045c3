"""
Idempotency Guard - At-most-once crediting per payment reference.

The unique payment_reference column is the insert-if-absent primitive.
The reservation row is written inside the caller's credit transaction,
so it commits or rolls back together with the credit itself.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from creditledger.db.models import PaymentIdempotencyRecord
from creditledger.exceptions import WriteVerificationError
from creditledger.models.domain import PaymentCreditResult, Reservation

logger = get_logger(__name__)


def _stored_result(record: PaymentIdempotencyRecord) -> PaymentCreditResult:
    return PaymentCreditResult(
        payment_reference=record.payment_reference,
        paid_credits_added=record.paid_credits_added,
        bonus_credits_added=record.bonus_credits_added,
        unit_value_cents=record.unit_value_cents,
        already_processed=True,
    )


class IdempotencyGuard:
    """Reserve-then-record guard over payment_idempotency_log."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def check_and_reserve(
        self, payment_reference: str, user_id: UUID, pack_id: str | None
    ) -> Reservation:
        """
        Reserve a payment reference, or report the earlier processing.

        A concurrent reservation of the same reference blocks on the unique
        index until the other transaction finishes; if it committed, the
        insert fails and its stored result is returned instead.
        """
        existing = await self._find(payment_reference)
        if existing is not None:
            return Reservation(already_processed=True, previous_result=_stored_result(existing))

        try:
            async with self.session.begin_nested():
                self.session.add(
                    PaymentIdempotencyRecord(
                        payment_reference=payment_reference,
                        user_id=user_id,
                        pack_id=pack_id,
                    )
                )
                await self.session.flush()
        except IntegrityError:
            existing = await self._find(payment_reference)
            if existing is None:
                raise WriteVerificationError(
                    f"Idempotency record {payment_reference} vanished after conflict"
                ) from None
            logger.info(
                "payment_reservation_lost_race",
                payment_reference=payment_reference,
                user_id=str(user_id),
            )
            return Reservation(already_processed=True, previous_result=_stored_result(existing))

        return Reservation(already_processed=False)

    async def record_result(self, result: PaymentCreditResult, lot_id: int | None) -> None:
        """Store the credit outcome on the reservation row."""
        record = await self._find(result.payment_reference)
        if record is None:
            raise WriteVerificationError(
                f"Idempotency record {result.payment_reference} not reserved"
            )

        record.paid_credits_added = result.paid_credits_added
        record.bonus_credits_added = result.bonus_credits_added
        record.unit_value_cents = result.unit_value_cents
        record.lot_id = lot_id
        await self.session.flush()

    async def _find(self, payment_reference: str) -> PaymentIdempotencyRecord | None:
        stmt = (
            select(PaymentIdempotencyRecord)
            .where(PaymentIdempotencyRecord.payment_reference == payment_reference)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()
