"""
Ledger Settings - Admin-editable switches read by ledger operations.

Settings are stored as JSON values keyed by name. Only the registration
bonus lives here; it is read inside the grant transaction and not cached.
"""

from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from creditledger.db.models import LedgerSetting
from creditledger.exceptions import ValidationError
from creditledger.models.domain import RegistrationBonusConfig
from creditledger.services.promo_codes import as_utc

logger = get_logger(__name__)

REGISTRATION_BONUS_KEY = "registration_bonus"

DISABLED_REGISTRATION_BONUS = RegistrationBonusConfig(enabled=False, free_credits=0)


def registration_bonus_from_row(row: LedgerSetting | None) -> RegistrationBonusConfig:
    """Parse a stored setting; anything missing or malformed reads as disabled."""
    if row is None or not isinstance(row.value, dict):
        return DISABLED_REGISTRATION_BONUS

    enabled = row.value.get("enabled")
    free_credits = row.value.get("free_credits")
    if not isinstance(enabled, bool):
        return DISABLED_REGISTRATION_BONUS
    # bool is an int subclass
    if isinstance(free_credits, bool) or not isinstance(free_credits, int) or free_credits < 0:
        return DISABLED_REGISTRATION_BONUS

    return RegistrationBonusConfig(
        enabled=enabled,
        free_credits=free_credits,
        updated_at=as_utc(row.updated_at),
        updated_by=row.updated_by,
    )


class LedgerSettingsRegistry:
    """Typed access to the ledger_settings table."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_registration_bonus(self) -> RegistrationBonusConfig:
        row = await self.session.get(LedgerSetting, REGISTRATION_BONUS_KEY)
        return registration_bonus_from_row(row)

    async def update_registration_bonus(
        self, enabled: bool, free_credits: int, updated_by: UUID | None
    ) -> RegistrationBonusConfig:
        """
        Create or replace the registration bonus setting.

        Raises:
            ValidationError: Negative free_credits
        """
        if free_credits < 0:
            raise ValidationError(f"free_credits cannot be negative: {free_credits}")

        row = await self.session.get(
            LedgerSetting, REGISTRATION_BONUS_KEY, with_for_update=True
        )
        if row is None:
            row = LedgerSetting(key=REGISTRATION_BONUS_KEY)
            self.session.add(row)

        row.value = {"enabled": enabled, "free_credits": free_credits}
        row.updated_at = datetime.now(UTC)
        row.updated_by = updated_by

        await self.session.flush()
        config = registration_bonus_from_row(row)
        await self.session.commit()

        logger.info(
            "registration_bonus_updated",
            enabled=enabled,
            free_credits=free_credits,
            updated_by=str(updated_by) if updated_by else None,
        )
        return config
