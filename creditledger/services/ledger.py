"""
Ledger Service - Atomic credit mutations over the account store.

NO DICTIONARIES - All operations use strongly typed domain models.

Every mutating operation runs as one database transaction:
1. Lock the rows it touches (promo code first, then account)
2. Apply deltas through the AccountStore (lot-sum verified)
3. Journal the change
4. Commit, or roll back on any error

Serialization failures and deadlocks are retried with a fresh transaction.
"""

import time
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar
from uuid import UUID

from sqlalchemy import case, func, select
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from creditledger.config import settings
from creditledger.db.models import AdminAuditLog, CatalogResource, CreditTransaction, Unlock
from creditledger.exceptions import (
    AlreadyOwnedError,
    ConcurrencyError,
    InsufficientBalanceError,
    InvalidAmountError,
    LedgerError,
    ResourceNotFoundError,
    ValidationError,
)
from creditledger.models.api import (
    LotSource,
    TransactionType,
    UnlockMethod,
    normalize_promo_code,
)
from creditledger.models.domain import (
    AdminChangeResult,
    BalanceDelta,
    BreakdownData,
    NewLot,
    PaymentCreditResult,
    PromoRedemptionResult,
    PurchaseResult,
    RegistrationBonusResult,
    TransactionData,
    TransactionPage,
    UnlockData,
)
from creditledger.observability.metrics import metrics
from creditledger.observability.tracing import trace_operation
from creditledger.services.account_store import AccountStore, split_debit
from creditledger.services.idempotency import IdempotencyGuard
from creditledger.services.ledger_settings import LedgerSettingsRegistry
from creditledger.services.promo_codes import PromoCodeRegistry, as_utc
from creditledger.services.purchase_bonus import BonusRuleCache, PurchaseBonusRegistry

logger = get_logger(__name__)

T = TypeVar("T")

# PostgreSQL serialization_failure and deadlock_detected
RETRYABLE_SQLSTATES = frozenset({"40001", "40P01"})

MAX_PAGE_SIZE = 100


def is_retryable(exc: DBAPIError) -> bool:
    """True for serialization failures and deadlocks."""
    orig = exc.orig
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    return sqlstate in RETRYABLE_SQLSTATES


def unit_value(price_cents: int, credits: int) -> tuple[int, int]:
    """
    Per-credit value of a purchase in integer cents.

    Returns (unit_value_cents, remainder_cents); the remainder is kept on
    the lot so the lot's total cost basis equals price_cents exactly.
    """
    if credits <= 0:
        raise InvalidAmountError(f"credits must be positive: {credits}")
    if price_cents < 0:
        raise InvalidAmountError(f"price_cents cannot be negative: {price_cents}")
    return divmod(price_cents, credits)


def _validate_admin_amounts(free_amount: int, paid_amount: int) -> None:
    if free_amount < 0 or paid_amount < 0:
        raise InvalidAmountError("Amounts cannot be negative")
    if free_amount == 0 and paid_amount == 0:
        raise InvalidAmountError("At least one of free_amount or paid_amount must be positive")


def _unlock_to_domain(unlock: Unlock, title: str | None) -> UnlockData:
    return UnlockData(
        unlock_id=unlock.id,
        resource_id=unlock.resource_id,
        title=title,
        unlock_method=unlock.unlock_method,
        free_credits_spent=unlock.free_credits_spent,
        paid_credits_spent=unlock.paid_credits_spent,
        unlocked_at=as_utc(unlock.created_at),
    )


class LedgerService:
    """
    Ledger transaction engine.

    One instance per request session. Methods commit on success and roll
    back on failure; callers must not hold their own transaction open.
    """

    def __init__(self, session: AsyncSession, bonus_cache: BonusRuleCache | None = None) -> None:
        """Initialize ledger service with database session."""
        self.session = session
        self.store = AccountStore(session)
        self.promo_codes = PromoCodeRegistry(session)
        self.bonuses = PurchaseBonusRegistry(session, bonus_cache)
        self.idempotency = IdempotencyGuard(session)
        self.ledger_settings = LedgerSettingsRegistry(session)

    # ========================================================================
    # Admin grant / revoke
    # ========================================================================

    async def admin_grant(
        self,
        admin_id: UUID,
        user_id: UUID,
        free_amount: int = 0,
        paid_amount: int = 0,
        unit_value_cents: int = 0,
        reason: str = "admin_grant",
    ) -> AdminChangeResult:
        """
        Grant free and/or paid credits to a user.

        Paid credits create a lot at unit_value_cents (0 = no cost basis).

        Raises:
            InvalidAmountError: Both amounts zero, or any amount negative
        """
        _validate_admin_amounts(free_amount, paid_amount)
        if unit_value_cents < 0:
            raise InvalidAmountError(f"unit_value_cents cannot be negative: {unit_value_cents}")

        async def grant() -> AdminChangeResult:
            account = await self.store.lock_account(user_id, create=True)
            assert account is not None

            new_lot = None
            if paid_amount > 0:
                new_lot = NewLot(
                    credits=paid_amount,
                    unit_value_cents=unit_value_cents,
                    source=LotSource.ADMIN_GRANT,
                )
            applied = await self.store.apply_delta(
                account,
                BalanceDelta(free_delta=free_amount, paid_delta=paid_amount, new_lot=new_lot),
            )
            entry = await self.store.journal(
                account,
                applied,
                TransactionType.ADMIN_GRANT,
                description=reason,
                actor_id=admin_id,
            )
            self._audit(
                admin_id, "grant", user_id, free_amount, paid_amount, unit_value_cents, reason
            )
            await self.session.flush()

            return AdminChangeResult(
                user_id=user_id,
                transaction_ids=(entry.id,),
                balance=await self.store.get_balance(user_id),
            )

        result = await self._execute(
            "admin_grant", grant, user_id=user_id, admin_id=admin_id
        )
        metrics.record_credits("admin_grant", free_amount, paid_amount)
        logger.info(
            "admin_credits_granted",
            admin_id=str(admin_id),
            user_id=str(user_id),
            free_amount=free_amount,
            paid_amount=paid_amount,
            unit_value_cents=unit_value_cents,
        )
        return result

    async def admin_revoke(
        self,
        admin_id: UUID,
        user_id: UUID,
        free_amount: int = 0,
        paid_amount: int = 0,
        reason: str = "admin_revoke",
    ) -> AdminChangeResult:
        """
        Claw back credits from a user. Paid credits leave lots oldest first.

        Raises:
            InvalidAmountError: Both amounts zero, or any amount negative
            InsufficientBalanceError: User holds fewer credits than revoked
        """
        _validate_admin_amounts(free_amount, paid_amount)

        async def revoke() -> AdminChangeResult:
            account = await self.store.lock_account(user_id)
            if account is None:
                kind = "free" if free_amount > 0 else "paid"
                raise InsufficientBalanceError(0, free_amount or paid_amount, kind)

            applied = await self.store.apply_delta(
                account, BalanceDelta(free_delta=-free_amount, paid_delta=-paid_amount)
            )
            entry = await self.store.journal(
                account,
                applied,
                TransactionType.ADMIN_REVOKE,
                description=reason,
                actor_id=admin_id,
            )
            self._audit(admin_id, "revoke", user_id, free_amount, paid_amount, None, reason)
            await self.session.flush()

            return AdminChangeResult(
                user_id=user_id,
                transaction_ids=(entry.id,),
                balance=await self.store.get_balance(user_id),
            )

        result = await self._execute(
            "admin_revoke", revoke, user_id=user_id, admin_id=admin_id
        )
        metrics.record_credits("admin_revoke", free_amount, paid_amount)
        logger.info(
            "admin_credits_revoked",
            admin_id=str(admin_id),
            user_id=str(user_id),
            free_amount=free_amount,
            paid_amount=paid_amount,
        )
        return result

    # ========================================================================
    # Promo redemption
    # ========================================================================

    async def redeem_promo(self, user_id: UUID, code: str) -> PromoRedemptionResult:
        """
        Redeem a promo code for free credits.

        Raises:
            ValidationError: Code blank after trimming
            CodeNotFoundError, CodeExpiredError, CodeExhaustedError,
            AlreadyRedeemedError
        """
        if not normalize_promo_code(code):
            raise ValidationError("code cannot be blank")

        async def redeem() -> PromoRedemptionResult:
            # Lock order: promo code row, then account row
            promo = await self.promo_codes.claim(code, user_id)
            account = await self.store.lock_account(user_id, create=True)
            assert account is not None

            applied = await self.store.apply_delta(
                account, BalanceDelta(free_delta=promo.free_credits, paid_delta=0)
            )
            await self.store.journal(
                account,
                applied,
                TransactionType.PROMO,
                description=f"Promo code {promo.code}",
                reference=promo.code,
            )

            return PromoRedemptionResult(
                code=promo.code,
                free_credits_granted=promo.free_credits,
                balance=await self.store.get_balance(user_id),
            )

        result = await self._execute("redeem_promo", redeem, user_id=user_id)
        metrics.record_credits("redeem_promo", result.free_credits_granted, 0)
        logger.info(
            "promo_code_redeemed",
            user_id=str(user_id),
            code=result.code,
            free_credits_granted=result.free_credits_granted,
        )
        return result

    # ========================================================================
    # Registration bonus
    # ========================================================================

    async def grant_registration_bonus(self, user_id: UUID) -> RegistrationBonusResult:
        """
        Credit the configured registration bonus, at most once per user.

        The journal entry is the marker: a user who already has one gets
        already_granted=True and nothing changes. A disabled or zero bonus
        grants nothing and leaves no marker.
        """

        async def grant() -> RegistrationBonusResult:
            account = await self.store.lock_account(user_id, create=True)
            assert account is not None

            if await self._has_registration_bonus(user_id):
                return RegistrationBonusResult(
                    free_credits_granted=0,
                    already_granted=True,
                    balance=await self.store.get_balance(user_id),
                )

            bonus = (await self.ledger_settings.get_registration_bonus()).grant_amount
            if bonus > 0:
                applied = await self.store.apply_delta(
                    account, BalanceDelta(free_delta=bonus, paid_delta=0)
                )
                await self.store.journal(
                    account,
                    applied,
                    TransactionType.REGISTRATION_BONUS,
                    description="Registration bonus",
                )

            return RegistrationBonusResult(
                free_credits_granted=bonus,
                already_granted=False,
                balance=await self.store.get_balance(user_id),
            )

        result = await self._execute("grant_registration_bonus", grant, user_id=user_id)
        metrics.record_credits("grant_registration_bonus", result.free_credits_granted, 0)
        logger.info(
            "registration_bonus_processed",
            user_id=str(user_id),
            free_credits_granted=result.free_credits_granted,
            already_granted=result.already_granted,
        )
        return result

    # ========================================================================
    # Payment credit (webhook)
    # ========================================================================

    async def credit_from_payment(
        self,
        payment_reference: str,
        user_id: UUID,
        pack_id: str | None,
        credits: int,
        price_cents: int,
    ) -> PaymentCreditResult:
        """
        Credit a confirmed payment exactly once.

        A reference seen before returns the stored result with
        already_processed=True and mutates nothing.

        Raises:
            ValidationError: Empty payment reference
            InvalidAmountError: Non-positive credits or negative price
        """
        if not payment_reference:
            raise ValidationError("payment_reference is required")
        unit_cents, remainder_cents = unit_value(price_cents, credits)

        async def credit() -> PaymentCreditResult:
            reservation = await self.idempotency.check_and_reserve(
                payment_reference, user_id, pack_id
            )
            if reservation.already_processed:
                assert reservation.previous_result is not None
                return reservation.previous_result

            account = await self.store.lock_account(user_id, create=True)
            assert account is not None

            applied = await self.store.apply_delta(
                account,
                BalanceDelta(
                    free_delta=0,
                    paid_delta=credits,
                    new_lot=NewLot(
                        credits=credits,
                        unit_value_cents=unit_cents,
                        source=LotSource.PAYMENT,
                        remainder_cents=remainder_cents,
                        payment_reference=payment_reference,
                    ),
                ),
            )
            await self.store.journal(
                account,
                applied,
                TransactionType.PURCHASE,
                description=f"Credit pack {pack_id or 'custom'}",
                reference=payment_reference,
            )

            bonus = await self.bonuses.bonus_for(pack_id, credits)
            if bonus > 0:
                bonus_applied = await self.store.apply_delta(
                    account, BalanceDelta(free_delta=bonus, paid_delta=0)
                )
                await self.store.journal(
                    account,
                    bonus_applied,
                    TransactionType.BONUS,
                    description=f"Purchase bonus for {pack_id}",
                    reference=payment_reference,
                )

            result = PaymentCreditResult(
                payment_reference=payment_reference,
                paid_credits_added=credits,
                bonus_credits_added=bonus,
                unit_value_cents=unit_cents,
            )
            await self.idempotency.record_result(result, applied.created_lot_id)
            return result

        result = await self._execute(
            "credit_from_payment",
            credit,
            user_id=user_id,
            payment_reference=payment_reference,
            pack_id=pack_id,
        )

        if result.already_processed:
            metrics.idempotent_replays_total.inc()
            logger.info(
                "payment_credit_replayed",
                payment_reference=payment_reference,
                user_id=str(user_id),
            )
        else:
            metrics.record_credits(
                "credit_from_payment", result.bonus_credits_added, result.paid_credits_added
            )
            logger.info(
                "payment_credited",
                payment_reference=payment_reference,
                user_id=str(user_id),
                pack_id=pack_id,
                paid_credits_added=result.paid_credits_added,
                bonus_credits_added=result.bonus_credits_added,
                unit_value_cents=result.unit_value_cents,
            )
        return result

    # ========================================================================
    # Resource purchase
    # ========================================================================

    async def debit_for_purchase(
        self, user_id: UUID, resource_id: UUID, price_credits: int
    ) -> PurchaseResult:
        """
        Spend credits on a resource and record the unlock.

        Free credits are spent first, then paid credits from the oldest lots.
        A zero price records a free unlock without touching the balance.

        Raises:
            InvalidAmountError: Negative price
            AlreadyOwnedError: User already unlocked the resource
            InsufficientCreditsError: free + paid < price
        """
        if price_credits < 0:
            raise InvalidAmountError(f"price_credits cannot be negative: {price_credits}")

        async def debit() -> PurchaseResult:
            account = await self.store.lock_account(user_id)

            if await self._owns(user_id, resource_id):
                raise AlreadyOwnedError(user_id, resource_id)

            free_available = account.free_credits if account else 0
            paid_available = account.paid_credits if account else 0
            split = split_debit(free_available, paid_available, price_credits)

            transaction_id = None
            if split.total > 0:
                # split_debit already refused a positive price without an account
                assert account is not None
                applied = await self.store.apply_delta(
                    account,
                    BalanceDelta(free_delta=-split.free_credits, paid_delta=-split.paid_credits),
                )
                entry = await self.store.journal(
                    account,
                    applied,
                    TransactionType.SPEND,
                    description=f"Unlock resource {resource_id}",
                    reference=str(resource_id),
                )
                transaction_id = entry.id

            unlock = Unlock(
                user_id=user_id,
                resource_id=resource_id,
                unlock_method=UnlockMethod.PURCHASE if price_credits > 0 else UnlockMethod.FREE,
                free_credits_spent=split.free_credits,
                paid_credits_spent=split.paid_credits,
                transaction_id=transaction_id,
            )
            self.session.add(unlock)
            try:
                await self.session.flush()
            except IntegrityError:
                raise AlreadyOwnedError(user_id, resource_id) from None

            return PurchaseResult(
                resource_id=resource_id,
                unlock_id=unlock.id,
                unlock_method=unlock.unlock_method,
                free_credits_spent=split.free_credits,
                paid_credits_spent=split.paid_credits,
                balance=await self.store.get_balance(user_id),
            )

        result = await self._execute(
            "debit_for_purchase",
            debit,
            user_id=user_id,
            resource_id=resource_id,
            price_credits=price_credits,
        )
        metrics.record_credits(
            "debit_for_purchase", result.free_credits_spent, result.paid_credits_spent
        )
        logger.info(
            "resource_unlocked",
            user_id=str(user_id),
            resource_id=str(resource_id),
            unlock_method=result.unlock_method.value,
            free_credits_spent=result.free_credits_spent,
            paid_credits_spent=result.paid_credits_spent,
        )
        return result

    async def purchase_resource(self, user_id: UUID, resource_id: UUID) -> PurchaseResult:
        """
        Unlock a published catalog resource at its listed price.

        Raises:
            ResourceNotFoundError: Resource missing or unpublished
        """
        resource = await self.session.get(CatalogResource, resource_id)
        if resource is None or not resource.is_published:
            await self.session.rollback()
            raise ResourceNotFoundError(resource_id)
        price_credits = resource.price_credits
        await self.session.commit()

        return await self.debit_for_purchase(user_id, resource_id, price_credits)

    # ========================================================================
    # Reads
    # ========================================================================

    async def get_breakdown(self, user_id: UUID) -> BreakdownData:
        """Balance, open lots and lifetime totals derived from the journal."""
        balance = await self.store.get_balance(user_id)

        tx = CreditTransaction
        totals_stmt = select(
            func.coalesce(func.sum(case((tx.free_delta > 0, tx.free_delta), else_=0)), 0),
            func.coalesce(func.sum(case((tx.paid_delta > 0, tx.paid_delta), else_=0)), 0),
            func.coalesce(
                func.sum(
                    case((tx.transaction_type == TransactionType.SPEND, -tx.free_delta), else_=0)
                ),
                0,
            ),
            func.coalesce(
                func.sum(
                    case((tx.transaction_type == TransactionType.SPEND, -tx.paid_delta), else_=0)
                ),
                0,
            ),
            func.coalesce(
                func.sum(
                    case(
                        (
                            tx.transaction_type == TransactionType.ADMIN_REVOKE,
                            -(tx.free_delta + tx.paid_delta),
                        ),
                        else_=0,
                    )
                ),
                0,
            ),
        ).where(tx.user_id == user_id)
        free_granted, paid_acquired, free_spent, paid_spent, revoked = (
            await self.session.execute(totals_stmt)
        ).one()

        unlock_count = (
            await self.session.execute(
                select(func.count(Unlock.id)).where(Unlock.user_id == user_id)
            )
        ).scalar_one()

        return BreakdownData(
            balance=balance,
            total_free_granted=int(free_granted),
            total_paid_acquired=int(paid_acquired),
            total_free_spent=int(free_spent),
            total_paid_spent=int(paid_spent),
            total_revoked=int(revoked),
            paid_cost_basis_cents=sum(lot.remaining_cost_cents for lot in balance.lots),
            unlock_count=int(unlock_count),
        )

    async def list_transactions(
        self, user_id: UUID, limit: int = 50, offset: int = 0
    ) -> TransactionPage:
        """
        One page of the user's journal, newest first.

        Raises:
            ValidationError: limit outside 1..100 or negative offset
        """
        if not 1 <= limit <= MAX_PAGE_SIZE:
            raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}: {limit}")
        if offset < 0:
            raise ValidationError(f"offset cannot be negative: {offset}")

        tx = CreditTransaction
        total_count = (
            await self.session.execute(select(func.count(tx.id)).where(tx.user_id == user_id))
        ).scalar_one()

        stmt = (
            select(tx)
            .where(tx.user_id == user_id)
            .order_by(tx.created_at.desc(), tx.id.desc())
            .offset(offset)
            .limit(limit)
        )
        rows = (await self.session.execute(stmt)).scalars().all()

        return TransactionPage(
            transactions=tuple(
                TransactionData(
                    transaction_id=row.id,
                    transaction_type=row.transaction_type,
                    free_delta=row.free_delta,
                    paid_delta=row.paid_delta,
                    free_balance_after=row.free_balance_after,
                    paid_balance_after=row.paid_balance_after,
                    reference=row.reference,
                    description=row.description,
                    created_at=as_utc(row.created_at),
                )
                for row in rows
            ),
            total_count=int(total_count),
            has_more=offset + len(rows) < total_count,
        )

    async def list_unlocks(self, user_id: UUID) -> list[UnlockData]:
        """Resources the user owns, newest first, with their catalog titles."""
        stmt = (
            select(Unlock, CatalogResource.title)
            .outerjoin(CatalogResource, CatalogResource.id == Unlock.resource_id)
            .where(Unlock.user_id == user_id)
            .order_by(Unlock.created_at.desc(), Unlock.id)
        )
        result = await self.session.execute(stmt)
        return [_unlock_to_domain(unlock, title) for unlock, title in result.all()]

    async def get_unlock(self, user_id: UUID, resource_id: UUID) -> UnlockData | None:
        """The user's unlock of one resource, or None if they do not own it."""
        stmt = (
            select(Unlock, CatalogResource.title)
            .outerjoin(CatalogResource, CatalogResource.id == Unlock.resource_id)
            .where(Unlock.user_id == user_id, Unlock.resource_id == resource_id)
        )
        row = (await self.session.execute(stmt)).first()
        if row is None:
            return None
        unlock, title = row
        return _unlock_to_domain(unlock, title)

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    async def _execute(
        self, operation: str, work: Callable[[], Awaitable[T]], **span_attributes: Any
    ) -> T:
        """Run `work` as one retried transaction with metrics and tracing."""
        started = time.perf_counter()
        outcome = "success"
        try:
            with trace_operation(f"ledger.{operation}", **span_attributes):
                return await self._run_serialized(operation, work)
        except LedgerError as exc:
            outcome = exc.code.lower()
            metrics.record_error(type(exc).__name__, operation)
            raise
        except Exception as exc:
            outcome = "error"
            metrics.record_error(type(exc).__name__, operation)
            raise
        finally:
            metrics.record_operation(operation, outcome, time.perf_counter() - started)

    async def _run_serialized(self, operation: str, work: Callable[[], Awaitable[T]]) -> T:
        attempts = settings.ledger_max_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                result = await work()
                await self.session.commit()
                return result
            except DBAPIError as exc:
                await self.session.rollback()
                if not is_retryable(exc):
                    raise
                if attempt == attempts:
                    raise ConcurrencyError(operation, attempts) from exc
                metrics.serialization_retries_total.labels(operation=operation).inc()
                logger.warning(
                    "ledger_transaction_retry",
                    operation=operation,
                    attempt=attempt,
                    max_attempts=attempts,
                )
            except BaseException:
                # Includes CancelledError: nothing from this attempt may persist
                await self.session.rollback()
                raise
        raise ConcurrencyError(operation, attempts)

    async def _owns(self, user_id: UUID, resource_id: UUID) -> bool:
        stmt = (
            select(Unlock.id)
            .where(Unlock.user_id == user_id, Unlock.resource_id == resource_id)
            .limit(1)
        )
        return (await self.session.execute(stmt)).first() is not None

    async def _has_registration_bonus(self, user_id: UUID) -> bool:
        stmt = (
            select(CreditTransaction.id)
            .where(
                CreditTransaction.user_id == user_id,
                CreditTransaction.transaction_type == TransactionType.REGISTRATION_BONUS,
            )
            .limit(1)
        )
        return (await self.session.execute(stmt)).first() is not None

    def _audit(
        self,
        admin_id: UUID,
        action: str,
        user_id: UUID,
        free_amount: int,
        paid_amount: int,
        unit_value_cents: int | None,
        reason: str,
    ) -> None:
        self.session.add(
            AdminAuditLog(
                admin_id=admin_id,
                action=action,
                target_user_id=user_id,
                free_amount=free_amount,
                paid_amount=paid_amount,
                unit_value_cents=unit_value_cents,
                reason=reason,
            )
        )
