"""
Purchase Bonus Rules - Free credits granted alongside a pack purchase.

Rules change rarely and are read on every payment credit, so they are served
from a small in-process cache. Admin writes go through this module and bump
the cache version after commit; a load that started before the bump is
discarded instead of stored.
"""

import time
from collections.abc import Callable
from datetime import UTC, datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from creditledger.config import settings
from creditledger.db.models import PurchaseBonusRule
from creditledger.exceptions import NotFoundError, ValidationError
from creditledger.models.domain import PurchaseBonusRuleData

logger = get_logger(__name__)


def _rule_to_domain(rule: PurchaseBonusRule) -> PurchaseBonusRuleData:
    return PurchaseBonusRuleData(
        pack_id=rule.pack_id,
        pack_credits=rule.pack_credits,
        bonus_free_credits=rule.bonus_free_credits,
        is_active=rule.is_active,
        updated_at=rule.updated_at,
    )


class BonusRuleCache:
    """Versioned TTL cache of the full rule set."""

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._rules: tuple[PurchaseBonusRuleData, ...] | None = None
        self._loaded_at = 0.0
        self._version = 0

    @property
    def version(self) -> int:
        return self._version

    def get(self) -> tuple[PurchaseBonusRuleData, ...] | None:
        """Cached rules, or None when empty or stale."""
        if self._rules is None:
            return None
        if self._clock() - self._loaded_at >= self.ttl_seconds:
            return None
        return self._rules

    def store(self, rules: tuple[PurchaseBonusRuleData, ...], loaded_version: int) -> None:
        """Store rules loaded under `loaded_version`; ignored if invalidated since."""
        if loaded_version != self._version:
            return
        self._rules = rules
        self._loaded_at = self._clock()

    def invalidate(self) -> None:
        self._version += 1
        self._rules = None


# Process-wide cache shared by every registry instance
rule_cache = BonusRuleCache(settings.registry_cache_ttl_seconds)


class PurchaseBonusRegistry:
    """Read-through access and admin writes for purchase bonus rules."""

    def __init__(self, session: AsyncSession, cache: BonusRuleCache | None = None) -> None:
        self.session = session
        self.cache = cache or rule_cache

    async def list_rules(self) -> tuple[PurchaseBonusRuleData, ...]:
        """All rules ordered by pack size."""
        cached = self.cache.get()
        if cached is not None:
            return cached

        version = self.cache.version
        result = await self.session.execute(
            select(PurchaseBonusRule).order_by(
                PurchaseBonusRule.pack_credits, PurchaseBonusRule.pack_id
            )
        )
        rules = tuple(_rule_to_domain(rule) for rule in result.scalars().all())
        self.cache.store(rules, version)
        return rules

    async def get_rule(self, pack_id: str) -> PurchaseBonusRuleData | None:
        for rule in await self.list_rules():
            if rule.pack_id == pack_id:
                return rule
        return None

    async def bonus_for(self, pack_id: str | None, credits: int) -> int:
        """Free credits to add for a purchase of `credits` in `pack_id`."""
        if pack_id is None:
            return 0
        rule = await self.get_rule(pack_id)
        if rule is None or not rule.applies_to(pack_id, credits):
            return 0
        return rule.bonus_free_credits

    async def update_rule(
        self,
        pack_id: str,
        bonus_free_credits: int | None = None,
        is_active: bool | None = None,
    ) -> PurchaseBonusRuleData:
        """
        Change an existing rule's bonus and/or active flag.

        Raises:
            NotFoundError: No rule for pack_id
            ValidationError: Negative bonus
        """
        if bonus_free_credits is not None and bonus_free_credits < 0:
            raise ValidationError(f"bonus_free_credits cannot be negative: {bonus_free_credits}")

        stmt = (
            select(PurchaseBonusRule)
            .where(PurchaseBonusRule.pack_id == pack_id)
            .with_for_update()
        )
        rule = (await self.session.execute(stmt)).scalar_one_or_none()
        if rule is None:
            raise NotFoundError("PurchaseBonusRule", pack_id)

        if bonus_free_credits is not None:
            rule.bonus_free_credits = bonus_free_credits
        if is_active is not None:
            rule.is_active = is_active
        rule.updated_at = datetime.now(UTC)

        await self.session.flush()
        data = _rule_to_domain(rule)
        await self.session.commit()
        self.cache.invalidate()

        logger.info(
            "purchase_bonus_updated",
            pack_id=pack_id,
            bonus_free_credits=data.bonus_free_credits,
            is_active=data.is_active,
        )
        return data

    async def upsert_rule(
        self,
        pack_id: str,
        pack_credits: int,
        bonus_free_credits: int,
        is_active: bool = True,
    ) -> PurchaseBonusRuleData:
        """Create or replace the rule for a pack."""
        if pack_credits <= 0:
            raise ValidationError(f"pack_credits must be positive: {pack_credits}")
        if bonus_free_credits < 0:
            raise ValidationError(f"bonus_free_credits cannot be negative: {bonus_free_credits}")

        rule = await self.session.get(PurchaseBonusRule, pack_id, with_for_update=True)
        if rule is None:
            rule = PurchaseBonusRule(pack_id=pack_id)
            self.session.add(rule)

        rule.pack_credits = pack_credits
        rule.bonus_free_credits = bonus_free_credits
        rule.is_active = is_active
        rule.updated_at = datetime.now(UTC)

        await self.session.flush()
        data = _rule_to_domain(rule)
        await self.session.commit()
        self.cache.invalidate()
        return data
