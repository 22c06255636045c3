"""
Promo Code Registry - Admin CRUD and redemption claims for promo codes.

Owns promo_codes and promo_redemptions. Redemption claims lock the code row
and must be called before the account row is locked.
"""

from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy import distinct, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from creditledger.db.models import PromoCode, PromoRedemption
from creditledger.exceptions import (
    AlreadyRedeemedError,
    CodeExhaustedError,
    CodeExpiredError,
    CodeNotFoundError,
    DuplicateCodeError,
    NotFoundError,
    ValidationError,
)
from creditledger.models.api import PromoCodeUpdateRequest, normalize_promo_code
from creditledger.models.domain import PromoCodeData, PromoCodeStats, PromoRedemptionData

logger = get_logger(__name__)


def as_utc(value: datetime) -> datetime:
    """Treat naive timestamps as UTC (SQLite drops tzinfo)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def promo_to_domain(promo: PromoCode) -> PromoCodeData:
    """Convert ORM promo code to domain model."""
    return PromoCodeData(
        id=promo.id,
        code=promo.code,
        free_credits=promo.free_credits,
        max_uses=promo.max_uses,
        current_uses=promo.current_uses,
        allow_multiple_per_user=promo.allow_multiple_per_user,
        is_active=promo.is_active,
        expires_at=as_utc(promo.expires_at) if promo.expires_at else None,
        description=promo.description,
        created_by=promo.created_by,
        created_at=as_utc(promo.created_at),
        updated_at=as_utc(promo.updated_at),
    )


class PromoCodeRegistry:
    """
    Promo code store.

    Admin writes commit their own transaction. claim() does not: it runs
    inside the ledger engine's redemption transaction.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    # ========================================================================
    # Admin operations
    # ========================================================================

    async def create(
        self,
        code: str,
        free_credits: int,
        created_by: UUID | None,
        max_uses: int | None = None,
        allow_multiple_per_user: bool = False,
        is_active: bool = True,
        expires_at: datetime | None = None,
        description: str | None = None,
    ) -> PromoCodeData:
        """
        Create a promo code.

        Raises:
            DuplicateCodeError: Code already exists (after normalization)
            ValidationError: Non-positive credits or max_uses
        """
        normalized = normalize_promo_code(code)
        if not normalized:
            raise ValidationError("code cannot be blank")
        if free_credits <= 0:
            raise ValidationError(f"free_credits must be positive: {free_credits}")
        if max_uses is not None and max_uses <= 0:
            raise ValidationError(f"max_uses must be positive: {max_uses}")

        promo = PromoCode(
            code=normalized,
            free_credits=free_credits,
            max_uses=max_uses,
            current_uses=0,
            allow_multiple_per_user=allow_multiple_per_user,
            is_active=is_active,
            expires_at=expires_at,
            description=description,
            created_by=created_by,
        )
        self.session.add(promo)

        try:
            await self.session.flush()
        except IntegrityError:
            await self.session.rollback()
            raise DuplicateCodeError(normalized) from None

        data = promo_to_domain(promo)
        await self.session.commit()

        logger.info(
            "promo_code_created",
            promo_code_id=str(data.id),
            code=data.code,
            free_credits=data.free_credits,
            created_by=str(created_by) if created_by else None,
        )
        return data

    async def update(self, promo_code_id: UUID, changes: PromoCodeUpdateRequest) -> PromoCodeData:
        """
        Apply the fields present in `changes`.

        Raises:
            NotFoundError: Unknown promo code id
            ValidationError: max_uses below current_uses
        """
        promo = await self._lock_by_id(promo_code_id)
        if promo is None:
            raise NotFoundError("PromoCode", str(promo_code_id))

        present = changes.model_fields_set

        if "max_uses" in present and changes.max_uses is not None:
            if changes.max_uses < promo.current_uses:
                raise ValidationError(
                    f"max_uses {changes.max_uses} is below current uses {promo.current_uses}"
                )
        if "free_credits" in present and changes.free_credits is None:
            raise ValidationError("free_credits cannot be cleared")

        if "is_active" in present and changes.is_active is not None:
            promo.is_active = changes.is_active
        if "allow_multiple_per_user" in present and changes.allow_multiple_per_user is not None:
            promo.allow_multiple_per_user = changes.allow_multiple_per_user
        if "max_uses" in present:
            promo.max_uses = changes.max_uses
        if "expires_at" in present:
            promo.expires_at = changes.expires_at
        if "description" in present:
            promo.description = changes.description
        if "free_credits" in present and changes.free_credits is not None:
            promo.free_credits = changes.free_credits
        promo.updated_at = datetime.now(UTC)

        await self.session.flush()
        data = promo_to_domain(promo)
        await self.session.commit()

        logger.info(
            "promo_code_updated",
            promo_code_id=str(promo_code_id),
            fields=sorted(present),
        )
        return data

    async def delete(self, promo_code_id: UUID) -> None:
        """
        Soft-delete a promo code.

        The row and its redemptions are kept so past grants stay traceable;
        the code can no longer be redeemed, listed or edited.

        Raises:
            NotFoundError: Unknown or already deleted promo code id
        """
        promo = await self._lock_by_id(promo_code_id)
        if promo is None:
            raise NotFoundError("PromoCode", str(promo_code_id))

        code = promo.code
        now = datetime.now(UTC)
        promo.deleted_at = now
        promo.is_active = False
        promo.updated_at = now
        await self.session.commit()

        logger.info("promo_code_deleted", promo_code_id=str(promo_code_id), code=code)

    async def list_with_stats(self) -> list[PromoCodeStats]:
        """All codes, newest first, with redemption counts and credits granted."""
        stmt = (
            select(
                PromoCode,
                func.count(PromoRedemption.id),
                func.count(distinct(PromoRedemption.user_id)),
                func.coalesce(func.sum(PromoRedemption.free_credits_granted), 0),
            )
            .outerjoin(PromoRedemption, PromoRedemption.promo_code_id == PromoCode.id)
            .where(PromoCode.deleted_at.is_(None))
            .group_by(PromoCode.id)
            .order_by(PromoCode.created_at.desc())
        )
        result = await self.session.execute(stmt)

        return [
            PromoCodeStats(
                promo_code=promo_to_domain(promo),
                redemption_count=int(redemption_count),
                unique_users=int(unique_users),
                total_credits_granted=int(total_credits),
            )
            for promo, redemption_count, unique_users, total_credits in result.all()
        ]

    async def list_redemptions(self, promo_code_id: UUID) -> list[PromoRedemptionData]:
        """
        Redemptions of one code, newest first.

        Raises:
            NotFoundError: Unknown promo code id
        """
        promo = await self.session.get(PromoCode, promo_code_id)
        if promo is None or promo.deleted_at is not None:
            raise NotFoundError("PromoCode", str(promo_code_id))

        stmt = (
            select(PromoRedemption)
            .where(PromoRedemption.promo_code_id == promo_code_id)
            .order_by(PromoRedemption.redeemed_at.desc())
        )
        result = await self.session.execute(stmt)
        return [
            PromoRedemptionData(
                id=row.id,
                promo_code_id=row.promo_code_id,
                user_id=row.user_id,
                free_credits_granted=row.free_credits_granted,
                redeemed_at=as_utc(row.redeemed_at),
            )
            for row in result.scalars().all()
        ]

    # ========================================================================
    # Redemption (runs inside the ledger transaction)
    # ========================================================================

    async def claim(self, code: str, user_id: UUID, now: datetime | None = None) -> PromoCode:
        """
        Lock a code, check that the user may redeem it, and record the use.

        The caller credits the account afterwards in the same transaction.

        Raises:
            CodeNotFoundError: Code absent or inactive
            CodeExpiredError: now >= expires_at
            CodeExhaustedError: current_uses >= max_uses
            AlreadyRedeemedError: User already redeemed a single-use code
        """
        normalized = normalize_promo_code(code)
        now = now or datetime.now(UTC)

        stmt = select(PromoCode).where(PromoCode.code == normalized).with_for_update()
        promo = (await self.session.execute(stmt)).scalar_one_or_none()

        if promo is None or not promo.is_active or promo.deleted_at is not None:
            raise CodeNotFoundError(normalized)

        if promo.expires_at is not None and now >= as_utc(promo.expires_at):
            raise CodeExpiredError(normalized, as_utc(promo.expires_at))

        if promo.max_uses is not None and promo.current_uses >= promo.max_uses:
            raise CodeExhaustedError(normalized, promo.max_uses)

        if not promo.allow_multiple_per_user and await self._has_redeemed(promo.id, user_id):
            raise AlreadyRedeemedError(normalized, user_id)

        promo.current_uses = promo.current_uses + 1
        self.session.add(
            PromoRedemption(
                promo_code_id=promo.id,
                user_id=user_id,
                free_credits_granted=promo.free_credits,
            )
        )
        await self.session.flush()
        return promo

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    async def _lock_by_id(self, promo_code_id: UUID) -> PromoCode | None:
        stmt = (
            select(PromoCode)
            .where(PromoCode.id == promo_code_id, PromoCode.deleted_at.is_(None))
            .with_for_update()
        )
        return (await self.session.execute(stmt)).scalar_one_or_none()

    async def _has_redeemed(self, promo_code_id: UUID, user_id: UUID) -> bool:
        stmt = (
            select(PromoRedemption.id)
            .where(
                PromoRedemption.promo_code_id == promo_code_id,
                PromoRedemption.user_id == user_id,
            )
            .limit(1)
        )
        return (await self.session.execute(stmt)).first() is not None
