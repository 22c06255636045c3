"""
API Routes - FastAPI endpoints for marketplace users and the payment webhook.

NO DICTIONARIES - All requests/responses use Pydantic models.
"""

from datetime import UTC, datetime
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from creditledger.api.dependencies import get_current_user, get_payment_provider, ledger_http_error
from creditledger.config import settings
from creditledger.db.session import get_read_db, get_write_db
from creditledger.exceptions import (
    AlreadyOwnedError,
    AlreadyRedeemedError,
    CodeExhaustedError,
    CodeExpiredError,
    CodeNotFoundError,
    ConcurrencyError,
    InsufficientCreditsError,
    InvalidAmountError,
    LedgerCorruptionError,
    NotFoundError,
    PaymentProviderError,
    ResourceNotFoundError,
    ValidationError,
    WebhookVerificationError,
    WriteVerificationError,
)
from creditledger.models.api import (
    BalanceResponse,
    BalanceSummary,
    BreakdownTotals,
    CheckoutSessionRequest,
    CheckoutSessionResponse,
    CreditLotResponse,
    HealthResponse,
    PurchaseListResponse,
    PurchaseRequest,
    PurchaseResponse,
    RedeemPromoRequest,
    RedeemPromoResponse,
    RegistrationBonusResponse,
    TransactionItem,
    TransactionListResponse,
    UnlockResponse,
    WebhookAck,
)
from creditledger.models.domain import BalanceData, SessionUser, UnlockData
from creditledger.services.credit_packs import get_pack
from creditledger.services.ledger import LedgerService
from creditledger.services.payment_provider import CheckoutRequest, CompletedCheckout
from creditledger.services.stripe_provider import StripeProvider

logger = get_logger(__name__)
router = APIRouter()


def balance_summary(balance: BalanceData) -> BalanceSummary:
    """Bare balance for mutation responses."""
    return BalanceSummary(
        free_credits=balance.free_credits,
        paid_credits=balance.paid_credits,
        total_credits=balance.total_credits,
    )


def _internal_error(exc: LedgerCorruptionError | WriteVerificationError) -> HTTPException:
    return ledger_http_error(status.HTTP_500_INTERNAL_SERVER_ERROR, exc)


def _unlock_response(unlock: UnlockData) -> UnlockResponse:
    return UnlockResponse(
        unlock_id=unlock.unlock_id,
        resource_id=unlock.resource_id,
        title=unlock.title,
        unlock_method=unlock.unlock_method,
        credits_spent=unlock.credits_spent,
        free_credits_spent=unlock.free_credits_spent,
        paid_credits_spent=unlock.paid_credits_spent,
        unlocked_at=unlock.unlocked_at,
    )


# =============================================================================
# Balance
# =============================================================================


@router.get("/v1/credits/balance", response_model=BalanceResponse)
async def get_balance(
    db: AsyncSession = Depends(get_write_db),
    user: SessionUser = Depends(get_current_user),
) -> BalanceResponse:
    """
    Balance, open paid lots and lifetime totals for the session user.

    Reads the primary: a balance must reflect the caller's last mutation.
    """
    breakdown = await LedgerService(db).get_breakdown(user.user_id)
    balance = breakdown.balance

    return BalanceResponse(
        free_credits=balance.free_credits,
        paid_credits=balance.paid_credits,
        total_credits=balance.total_credits,
        breakdown=BreakdownTotals(
            total_free_granted=breakdown.total_free_granted,
            total_paid_acquired=breakdown.total_paid_acquired,
            total_free_spent=breakdown.total_free_spent,
            total_paid_spent=breakdown.total_paid_spent,
            total_revoked=breakdown.total_revoked,
            paid_cost_basis_cents=breakdown.paid_cost_basis_cents,
            unlock_count=breakdown.unlock_count,
        ),
        lots=[
            CreditLotResponse(
                lot_id=lot.lot_id,
                credits_granted=lot.credits_granted,
                credits_remaining=lot.credits_remaining,
                unit_value_cents=lot.unit_value_cents,
                source=lot.source,
                created_at=lot.created_at,
            )
            for lot in balance.lots
        ],
    )


@router.get("/v1/credits/transactions", response_model=TransactionListResponse)
async def list_transactions(
    limit: int = 50,
    offset: int = 0,
    db: AsyncSession = Depends(get_read_db),
    user: SessionUser = Depends(get_current_user),
) -> TransactionListResponse:
    """
    Journal entries for the session user, newest first.

    Read operation - served from replica.
    """
    try:
        page = await LedgerService(db).list_transactions(user.user_id, limit=limit, offset=offset)
    except ValidationError as exc:
        raise ledger_http_error(status.HTTP_422_UNPROCESSABLE_ENTITY, exc) from exc

    return TransactionListResponse(
        transactions=[
            TransactionItem(
                transaction_id=item.transaction_id,
                transaction_type=item.transaction_type,
                free_delta=item.free_delta,
                paid_delta=item.paid_delta,
                free_balance_after=item.free_balance_after,
                paid_balance_after=item.paid_balance_after,
                reference=item.reference,
                description=item.description,
                created_at=item.created_at,
            )
            for item in page.transactions
        ],
        total_count=page.total_count,
        has_more=page.has_more,
    )


# =============================================================================
# Registration bonus
# =============================================================================


@router.post("/v1/credits/registration-bonus", response_model=RegistrationBonusResponse)
async def grant_registration_bonus(
    db: AsyncSession = Depends(get_write_db),
    user: SessionUser = Depends(get_current_user),
) -> RegistrationBonusResponse:
    """
    Credit the registration bonus to the session user.

    Safe to call on every sign-in: the bonus is granted at most once.
    """
    try:
        result = await LedgerService(db).grant_registration_bonus(user.user_id)

    except ConcurrencyError as exc:
        raise ledger_http_error(status.HTTP_503_SERVICE_UNAVAILABLE, exc) from exc

    except (LedgerCorruptionError, WriteVerificationError) as exc:
        raise _internal_error(exc) from exc

    return RegistrationBonusResponse(
        free_credits_granted=result.free_credits_granted,
        already_granted=result.already_granted,
        balance=balance_summary(result.balance),
    )


# =============================================================================
# Promo redemption
# =============================================================================


@router.post("/v1/credits/redeem-promo", response_model=RedeemPromoResponse)
async def redeem_promo(
    request: RedeemPromoRequest,
    db: AsyncSession = Depends(get_write_db),
    user: SessionUser = Depends(get_current_user),
) -> RedeemPromoResponse:
    """Redeem a promo code for free credits."""
    service = LedgerService(db)

    try:
        result = await service.redeem_promo(user.user_id, request.code)

    except ValidationError as exc:
        raise ledger_http_error(status.HTTP_422_UNPROCESSABLE_ENTITY, exc) from exc

    except CodeNotFoundError as exc:
        raise ledger_http_error(status.HTTP_404_NOT_FOUND, exc) from exc

    except CodeExpiredError as exc:
        raise ledger_http_error(status.HTTP_410_GONE, exc) from exc

    except (CodeExhaustedError, AlreadyRedeemedError) as exc:
        raise ledger_http_error(status.HTTP_409_CONFLICT, exc) from exc

    except ConcurrencyError as exc:
        raise ledger_http_error(status.HTTP_503_SERVICE_UNAVAILABLE, exc) from exc

    except (LedgerCorruptionError, WriteVerificationError) as exc:
        raise _internal_error(exc) from exc

    return RedeemPromoResponse(
        code=result.code,
        free_credits_granted=result.free_credits_granted,
        balance=balance_summary(result.balance),
    )


# =============================================================================
# Resource purchase
# =============================================================================


@router.post("/v1/purchases", response_model=PurchaseResponse)
async def purchase_resource(
    request: PurchaseRequest,
    db: AsyncSession = Depends(get_write_db),
    user: SessionUser = Depends(get_current_user),
) -> PurchaseResponse:
    """Unlock a catalog resource with credits (free credits spent first)."""
    service = LedgerService(db)

    try:
        result = await service.purchase_resource(user.user_id, request.resource_id)

    except ResourceNotFoundError as exc:
        raise ledger_http_error(status.HTTP_404_NOT_FOUND, exc) from exc

    except InsufficientCreditsError as exc:
        raise ledger_http_error(status.HTTP_402_PAYMENT_REQUIRED, exc) from exc

    except AlreadyOwnedError as exc:
        raise ledger_http_error(status.HTTP_409_CONFLICT, exc) from exc

    except ConcurrencyError as exc:
        raise ledger_http_error(status.HTTP_503_SERVICE_UNAVAILABLE, exc) from exc

    except (LedgerCorruptionError, WriteVerificationError) as exc:
        raise _internal_error(exc) from exc

    return PurchaseResponse(
        resource_id=result.resource_id,
        unlock_method=result.unlock_method,
        credits_spent=result.credits_spent,
        free_credits_spent=result.free_credits_spent,
        paid_credits_spent=result.paid_credits_spent,
        remaining_balance=balance_summary(result.balance),
    )


@router.get("/v1/purchases", response_model=PurchaseListResponse)
async def list_purchases(
    db: AsyncSession = Depends(get_read_db),
    user: SessionUser = Depends(get_current_user),
) -> PurchaseListResponse:
    """Resources the session user owns, newest first."""
    unlocks = await LedgerService(db).list_unlocks(user.user_id)
    return PurchaseListResponse(
        purchases=[_unlock_response(unlock) for unlock in unlocks],
        total=len(unlocks),
    )


@router.get("/v1/purchases/{resource_id}", response_model=UnlockResponse)
async def get_purchase(
    resource_id: UUID,
    db: AsyncSession = Depends(get_write_db),
    user: SessionUser = Depends(get_current_user),
) -> UnlockResponse:
    """
    Ownership check for one resource.

    Reads the primary: access must follow a purchase immediately. Another
    user's unlock is indistinguishable from no unlock.
    """
    unlock = await LedgerService(db).get_unlock(user.user_id, resource_id)
    if unlock is None:
        raise ledger_http_error(
            status.HTTP_404_NOT_FOUND, NotFoundError("Unlock", str(resource_id))
        )
    return _unlock_response(unlock)


# =============================================================================
# Checkout + payment webhook
# =============================================================================


@router.post("/v1/checkout/sessions", response_model=CheckoutSessionResponse)
async def create_checkout_session(
    request: CheckoutSessionRequest,
    user: SessionUser = Depends(get_current_user),
    provider: StripeProvider = Depends(get_payment_provider),
) -> CheckoutSessionResponse:
    """Open a Stripe Checkout page for a credit pack."""
    try:
        pack = get_pack(request.pack_id)
    except ValueError as exc:
        raise ledger_http_error(
            status.HTTP_400_BAD_REQUEST, ValidationError(f"Unknown pack: {request.pack_id}")
        ) from exc

    checkout_request = CheckoutRequest(
        user_id=str(user.user_id),
        customer_email=user.email,
        pack_id=pack.pack_id,
        credits=pack.credits,
        price_cents=pack.price_cents,
        currency=settings.checkout_currency,
        product_name=pack.name,
        locale=request.locale,
        success_url=settings.checkout_success_url.replace("{locale}", request.locale),
        cancel_url=settings.checkout_cancel_url.replace("{locale}", request.locale),
    )

    try:
        session = await provider.create_checkout_session(checkout_request)
    except PaymentProviderError as exc:
        raise ledger_http_error(status.HTTP_502_BAD_GATEWAY, exc) from exc

    return CheckoutSessionResponse(session_id=session.session_id, url=session.url)


@router.post("/v1/webhooks/stripe", response_model=WebhookAck)
async def stripe_webhook(
    request: Request,
    db: AsyncSession = Depends(get_write_db),
    provider: StripeProvider = Depends(get_payment_provider),
) -> WebhookAck:
    """
    Handle Stripe webhook events.

    Only a bad signature is refused (400). Everything else is acknowledged
    so Stripe stops redelivering; failures are logged for investigation and
    redeliveries of a credited payment are absorbed by the idempotency guard.
    """
    payload = await request.body()
    signature = request.headers.get("stripe-signature", "")

    try:
        event = await provider.verify_webhook(payload, signature)
    except WebhookVerificationError as exc:
        raise ledger_http_error(status.HTTP_400_BAD_REQUEST, exc) from exc

    logger.info("stripe_webhook_received", event_id=event.event_id, event_type=event.event_type)

    if event.checkout is None:
        return WebhookAck()

    checkout = event.checkout
    user_id = _checkout_user_id(checkout)
    if user_id is None or checkout.credits <= 0:
        logger.error(
            "stripe_webhook_missing_metadata",
            event_id=event.event_id,
            session_id=checkout.session_id,
        )
        return WebhookAck()

    price_cents = checkout.amount_total_cents
    if price_cents is None:
        price_cents = _pack_price(checkout.pack_id)

    try:
        await LedgerService(db).credit_from_payment(
            payment_reference=checkout.payment_reference,
            user_id=user_id,
            pack_id=checkout.pack_id,
            credits=checkout.credits,
            price_cents=price_cents,
        )
    except (InvalidAmountError, ValidationError) as exc:
        logger.error(
            "stripe_webhook_invalid_payment",
            event_id=event.event_id,
            payment_reference=checkout.payment_reference,
            error=str(exc),
        )
    except Exception as exc:
        logger.error(
            "stripe_webhook_credit_failed",
            event_id=event.event_id,
            payment_reference=checkout.payment_reference,
            error_type=type(exc).__name__,
            exc_info=True,
        )

    return WebhookAck()


def _checkout_user_id(checkout: CompletedCheckout) -> UUID | None:
    if not checkout.user_id:
        return None
    try:
        return UUID(checkout.user_id)
    except ValueError:
        return None


def _pack_price(pack_id: str | None) -> int:
    if pack_id is None:
        return 0
    try:
        return get_pack(pack_id).price_cents
    except ValueError:
        return 0


# =============================================================================
# Health
# =============================================================================


@router.get("/health", response_model=HealthResponse)
async def health_check(db: AsyncSession = Depends(get_read_db)) -> HealthResponse:
    """
    Health check for load balancer.

    Verifies database connectivity.
    """
    try:
        await db.execute(text("SELECT 1"))

        return HealthResponse(
            status="healthy",
            database="connected",
            timestamp=datetime.now(UTC).isoformat(),
        )

    except Exception as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=HealthResponse(
                status="unhealthy",
                database="disconnected",
                timestamp=datetime.now(UTC).isoformat(),
            ).model_dump(),
        ) from exc
