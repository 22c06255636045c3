"""
Admin API routes for balances, promo codes, purchase bonuses and settings.

Protected by the marketplace session JWT; every route requires the admin role.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from creditledger.api.dependencies import ledger_http_error, require_admin
from creditledger.api.routes import balance_summary
from creditledger.db.session import get_read_db, get_write_db
from creditledger.exceptions import (
    ConcurrencyError,
    DuplicateCodeError,
    InsufficientBalanceError,
    InvalidAmountError,
    LedgerCorruptionError,
    NotFoundError,
    ValidationError,
    WriteVerificationError,
)
from creditledger.models.api import (
    AdminBalanceChangeResponse,
    AdminGrantRequest,
    AdminRevokeRequest,
    PromoCodeCreateRequest,
    PromoCodeListResponse,
    PromoCodeResponse,
    PromoCodeStatsResponse,
    PromoCodeUpdateRequest,
    PromoRedemptionListResponse,
    PromoRedemptionResponse,
    PurchaseBonusListResponse,
    PurchaseBonusResponse,
    PurchaseBonusUpdateRequest,
    RegistrationBonusSettings,
    RegistrationBonusSettingsResponse,
)
from creditledger.models.domain import (
    PromoCodeData,
    PurchaseBonusRuleData,
    RegistrationBonusConfig,
    SessionUser,
)
from creditledger.services.ledger import LedgerService
from creditledger.services.ledger_settings import LedgerSettingsRegistry
from creditledger.services.promo_codes import PromoCodeRegistry
from creditledger.services.purchase_bonus import PurchaseBonusRegistry

logger = get_logger(__name__)
router = APIRouter(prefix="/admin", tags=["admin"])


def _promo_response(promo: PromoCodeData) -> PromoCodeResponse:
    return PromoCodeResponse(
        id=promo.id,
        code=promo.code,
        free_credits=promo.free_credits,
        max_uses=promo.max_uses,
        current_uses=promo.current_uses,
        allow_multiple_per_user=promo.allow_multiple_per_user,
        is_active=promo.is_active,
        expires_at=promo.expires_at,
        description=promo.description,
        created_by=promo.created_by,
        created_at=promo.created_at,
        updated_at=promo.updated_at,
    )


def _bonus_response(rule: PurchaseBonusRuleData) -> PurchaseBonusResponse:
    return PurchaseBonusResponse(
        pack_id=rule.pack_id,
        pack_credits=rule.pack_credits,
        bonus_free_credits=rule.bonus_free_credits,
        is_active=rule.is_active,
        updated_at=rule.updated_at,
    )


def _registration_bonus_response(
    config: RegistrationBonusConfig,
) -> RegistrationBonusSettingsResponse:
    return RegistrationBonusSettingsResponse(
        enabled=config.enabled,
        free_credits=config.free_credits,
        updated_at=config.updated_at,
        updated_by=config.updated_by,
    )


# ============================================================================
# Credit grant / revoke
# ============================================================================


@router.post("/credits/grant", response_model=AdminBalanceChangeResponse)
async def grant_credits(
    request: AdminGrantRequest,
    db: AsyncSession = Depends(get_write_db),
    admin: SessionUser = Depends(require_admin),
) -> AdminBalanceChangeResponse:
    """Grant free and/or paid credits to a user (paid credits at unit_value_cents)."""
    service = LedgerService(db)

    try:
        result = await service.admin_grant(
            admin_id=admin.user_id,
            user_id=request.user_id,
            free_amount=request.free_amount,
            paid_amount=request.paid_amount,
            unit_value_cents=request.unit_value_cents,
            reason=request.reason,
        )

    except InvalidAmountError as exc:
        raise ledger_http_error(status.HTTP_422_UNPROCESSABLE_ENTITY, exc) from exc

    except ConcurrencyError as exc:
        raise ledger_http_error(status.HTTP_503_SERVICE_UNAVAILABLE, exc) from exc

    except (LedgerCorruptionError, WriteVerificationError) as exc:
        raise ledger_http_error(status.HTTP_500_INTERNAL_SERVER_ERROR, exc) from exc

    return AdminBalanceChangeResponse(
        user_id=result.user_id,
        new_balance=balance_summary(result.balance),
    )


@router.post("/credits/revoke", response_model=AdminBalanceChangeResponse)
async def revoke_credits(
    request: AdminRevokeRequest,
    db: AsyncSession = Depends(get_write_db),
    admin: SessionUser = Depends(require_admin),
) -> AdminBalanceChangeResponse:
    """Claw back credits from a user; paid credits leave the oldest lots first."""
    service = LedgerService(db)

    try:
        result = await service.admin_revoke(
            admin_id=admin.user_id,
            user_id=request.user_id,
            free_amount=request.free_amount,
            paid_amount=request.paid_amount,
            reason=request.reason,
        )

    except InvalidAmountError as exc:
        raise ledger_http_error(status.HTTP_422_UNPROCESSABLE_ENTITY, exc) from exc

    except InsufficientBalanceError as exc:
        raise ledger_http_error(status.HTTP_402_PAYMENT_REQUIRED, exc) from exc

    except ConcurrencyError as exc:
        raise ledger_http_error(status.HTTP_503_SERVICE_UNAVAILABLE, exc) from exc

    except (LedgerCorruptionError, WriteVerificationError) as exc:
        raise ledger_http_error(status.HTTP_500_INTERNAL_SERVER_ERROR, exc) from exc

    return AdminBalanceChangeResponse(
        user_id=result.user_id,
        new_balance=balance_summary(result.balance),
    )


# ============================================================================
# Promo codes
# ============================================================================


@router.get("/promo-codes", response_model=PromoCodeListResponse)
async def list_promo_codes(
    db: AsyncSession = Depends(get_read_db),
    admin: SessionUser = Depends(require_admin),
) -> PromoCodeListResponse:
    """List promo codes with redemption statistics, newest first."""
    stats = await PromoCodeRegistry(db).list_with_stats()

    codes = [
        PromoCodeStatsResponse(
            **_promo_response(item.promo_code).model_dump(),
            redemption_count=item.redemption_count,
            unique_users=item.unique_users,
            total_credits_granted=item.total_credits_granted,
        )
        for item in stats
    ]
    return PromoCodeListResponse(codes=codes, total=len(codes))


@router.post(
    "/promo-codes",
    response_model=PromoCodeResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_promo_code(
    request: PromoCodeCreateRequest,
    db: AsyncSession = Depends(get_write_db),
    admin: SessionUser = Depends(require_admin),
) -> PromoCodeResponse:
    """Create a promo code (code is stored trimmed and upper-cased)."""
    try:
        promo = await PromoCodeRegistry(db).create(
            code=request.code,
            free_credits=request.free_credits,
            created_by=admin.user_id,
            max_uses=request.max_uses,
            allow_multiple_per_user=request.allow_multiple_per_user,
            is_active=request.is_active,
            expires_at=request.expires_at,
            description=request.description,
        )

    except DuplicateCodeError as exc:
        raise ledger_http_error(status.HTTP_409_CONFLICT, exc) from exc

    except ValidationError as exc:
        raise ledger_http_error(status.HTTP_422_UNPROCESSABLE_ENTITY, exc) from exc

    return _promo_response(promo)


@router.patch("/promo-codes/{promo_code_id}", response_model=PromoCodeResponse)
async def update_promo_code(
    promo_code_id: UUID,
    request: PromoCodeUpdateRequest,
    db: AsyncSession = Depends(get_write_db),
    admin: SessionUser = Depends(require_admin),
) -> PromoCodeResponse:
    """Update the fields present in the body; explicit null clears nullable fields."""
    try:
        promo = await PromoCodeRegistry(db).update(promo_code_id, request)

    except NotFoundError as exc:
        raise ledger_http_error(status.HTTP_404_NOT_FOUND, exc) from exc

    except ValidationError as exc:
        raise ledger_http_error(status.HTTP_422_UNPROCESSABLE_ENTITY, exc) from exc

    logger.info(
        "admin_promo_code_updated",
        admin_id=str(admin.user_id),
        promo_code_id=str(promo_code_id),
    )
    return _promo_response(promo)


@router.delete("/promo-codes/{promo_code_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_promo_code(
    promo_code_id: UUID,
    db: AsyncSession = Depends(get_write_db),
    admin: SessionUser = Depends(require_admin),
) -> Response:
    """Soft-delete a promo code; its redemption history is kept."""
    try:
        await PromoCodeRegistry(db).delete(promo_code_id)

    except NotFoundError as exc:
        raise ledger_http_error(status.HTTP_404_NOT_FOUND, exc) from exc

    logger.info(
        "admin_promo_code_deleted",
        admin_id=str(admin.user_id),
        promo_code_id=str(promo_code_id),
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get(
    "/promo-codes/{promo_code_id}/redemptions",
    response_model=PromoRedemptionListResponse,
)
async def list_promo_redemptions(
    promo_code_id: UUID,
    db: AsyncSession = Depends(get_read_db),
    admin: SessionUser = Depends(require_admin),
) -> PromoRedemptionListResponse:
    """Redemptions of one promo code, newest first."""
    try:
        redemptions = await PromoCodeRegistry(db).list_redemptions(promo_code_id)

    except NotFoundError as exc:
        raise ledger_http_error(status.HTTP_404_NOT_FOUND, exc) from exc

    return PromoRedemptionListResponse(
        redemptions=[
            PromoRedemptionResponse(
                id=item.id,
                promo_code_id=item.promo_code_id,
                user_id=item.user_id,
                free_credits_granted=item.free_credits_granted,
                redeemed_at=item.redeemed_at,
            )
            for item in redemptions
        ],
        total=len(redemptions),
    )


# ============================================================================
# Purchase bonuses
# ============================================================================


@router.get("/purchase-bonuses", response_model=PurchaseBonusListResponse)
async def list_purchase_bonuses(
    db: AsyncSession = Depends(get_read_db),
    admin: SessionUser = Depends(require_admin),
) -> PurchaseBonusListResponse:
    """Purchase bonus rules ordered by pack size."""
    rules = await PurchaseBonusRegistry(db).list_rules()
    return PurchaseBonusListResponse(bonuses=[_bonus_response(rule) for rule in rules])


@router.patch("/purchase-bonuses", response_model=PurchaseBonusResponse)
async def update_purchase_bonus(
    request: PurchaseBonusUpdateRequest,
    db: AsyncSession = Depends(get_write_db),
    admin: SessionUser = Depends(require_admin),
) -> PurchaseBonusResponse:
    """Change a pack's bonus amount and/or active flag."""
    try:
        rule = await PurchaseBonusRegistry(db).update_rule(
            pack_id=request.pack_id,
            bonus_free_credits=request.bonus_free_credits,
            is_active=request.is_active,
        )

    except NotFoundError as exc:
        raise ledger_http_error(status.HTTP_404_NOT_FOUND, exc) from exc

    except ValidationError as exc:
        raise ledger_http_error(status.HTTP_422_UNPROCESSABLE_ENTITY, exc) from exc

    logger.info("admin_purchase_bonus_updated", admin_id=str(admin.user_id), pack_id=rule.pack_id)
    return _bonus_response(rule)


# ============================================================================
# Ledger settings
# ============================================================================


@router.get(
    "/settings/registration-bonus",
    response_model=RegistrationBonusSettingsResponse,
)
async def get_registration_bonus(
    db: AsyncSession = Depends(get_read_db),
    admin: SessionUser = Depends(require_admin),
) -> RegistrationBonusSettingsResponse:
    """Free credits granted once to each new user."""
    config = await LedgerSettingsRegistry(db).get_registration_bonus()
    return _registration_bonus_response(config)


@router.put(
    "/settings/registration-bonus",
    response_model=RegistrationBonusSettingsResponse,
)
async def update_registration_bonus(
    request: RegistrationBonusSettings,
    db: AsyncSession = Depends(get_write_db),
    admin: SessionUser = Depends(require_admin),
) -> RegistrationBonusSettingsResponse:
    """Replace the registration bonus setting; applies to later grants only."""
    try:
        config = await LedgerSettingsRegistry(db).update_registration_bonus(
            enabled=request.enabled,
            free_credits=request.free_credits,
            updated_by=admin.user_id,
        )

    except ValidationError as exc:
        raise ledger_http_error(status.HTTP_422_UNPROCESSABLE_ENTITY, exc) from exc

    logger.info(
        "admin_registration_bonus_updated",
        admin_id=str(admin.user_id),
        enabled=config.enabled,
        free_credits=config.free_credits,
    )
    return _registration_bonus_response(config)
