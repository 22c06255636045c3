"""
Tests for purchase bonus rules and their cache.
"""

from datetime import UTC, datetime

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from creditledger.db.models import PurchaseBonusRule
from creditledger.exceptions import NotFoundError, ValidationError
from creditledger.models.domain import PurchaseBonusRuleData
from creditledger.services.purchase_bonus import BonusRuleCache, PurchaseBonusRegistry
from tests.factories import seed_bonus_rule


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def make_rule(pack_id: str = "pack_15", bonus: int = 2, active: bool = True):
    return PurchaseBonusRuleData(
        pack_id=pack_id,
        pack_credits=15,
        bonus_free_credits=bonus,
        is_active=active,
        updated_at=datetime(2026, 1, 1, tzinfo=UTC),
    )


class TestBonusRuleCache:
    """Tests for BonusRuleCache."""

    def test_empty(self):
        assert BonusRuleCache(60).get() is None

    def test_store_and_get(self):
        cache = BonusRuleCache(60, clock=FakeClock())
        rules = (make_rule(),)
        cache.store(rules, cache.version)
        assert cache.get() == rules

    def test_expires_after_ttl(self):
        clock = FakeClock()
        cache = BonusRuleCache(60, clock=clock)
        cache.store((make_rule(),), cache.version)

        clock.now += 59.9
        assert cache.get() is not None
        clock.now += 0.1
        assert cache.get() is None

    def test_invalidate_drops_rules(self):
        cache = BonusRuleCache(60, clock=FakeClock())
        cache.store((make_rule(),), cache.version)
        cache.invalidate()
        assert cache.get() is None

    def test_stale_load_discarded(self):
        cache = BonusRuleCache(60, clock=FakeClock())
        version = cache.version
        # An admin write lands while the load is in flight
        cache.invalidate()
        cache.store((make_rule(bonus=2),), version)
        assert cache.get() is None


class TestRuleApplies:
    """Tests for PurchaseBonusRuleData.applies_to."""

    def test_matching_active_rule(self):
        assert make_rule().applies_to("pack_15", 15) is True

    def test_inactive(self):
        assert make_rule(active=False).applies_to("pack_15", 15) is False

    def test_other_pack(self):
        assert make_rule().applies_to("pack_30", 15) is False

    def test_other_size(self):
        assert make_rule().applies_to("pack_15", 14) is False


class TestPurchaseBonusRegistry:
    """Tests for PurchaseBonusRegistry."""

    async def test_list_ordered_by_pack_size(self, db: AsyncSession):
        await seed_bonus_rule(db, "pack_30", pack_credits=30, bonus_free_credits=5)
        await seed_bonus_rule(db, "pack_5", pack_credits=5, bonus_free_credits=0)
        await seed_bonus_rule(db, "pack_15", pack_credits=15, bonus_free_credits=2)

        rules = await PurchaseBonusRegistry(db, BonusRuleCache(60)).list_rules()

        assert [rule.pack_id for rule in rules] == ["pack_5", "pack_15", "pack_30"]

    async def test_bonus_for(self, db: AsyncSession):
        await seed_bonus_rule(db, "pack_15", pack_credits=15, bonus_free_credits=2)
        registry = PurchaseBonusRegistry(db, BonusRuleCache(60))

        assert await registry.bonus_for("pack_15", 15) == 2
        assert await registry.bonus_for("pack_15", 10) == 0
        assert await registry.bonus_for("pack_60", 60) == 0
        assert await registry.bonus_for(None, 15) == 0

    async def test_cached_rules_served_without_reload(self, db: AsyncSession):
        await seed_bonus_rule(db, "pack_15", pack_credits=15, bonus_free_credits=2)
        cache = BonusRuleCache(60)
        registry = PurchaseBonusRegistry(db, cache)
        assert await registry.bonus_for("pack_15", 15) == 2

        # Written behind the registry's back: not visible until the TTL lapses
        rule = await db.get(PurchaseBonusRule, "pack_15")
        assert rule is not None
        rule.bonus_free_credits = 9
        await db.commit()

        assert await registry.bonus_for("pack_15", 15) == 2

    async def test_update_invalidates_cache(self, db: AsyncSession):
        await seed_bonus_rule(db, "pack_15", pack_credits=15, bonus_free_credits=2)
        cache = BonusRuleCache(60)
        registry = PurchaseBonusRegistry(db, cache)
        assert await registry.bonus_for("pack_15", 15) == 2

        updated = await registry.update_rule("pack_15", bonus_free_credits=4)

        assert updated.bonus_free_credits == 4
        assert await registry.bonus_for("pack_15", 15) == 4

    async def test_update_active_flag_only(self, db: AsyncSession):
        await seed_bonus_rule(db, "pack_15", pack_credits=15, bonus_free_credits=2)
        registry = PurchaseBonusRegistry(db, BonusRuleCache(60))

        updated = await registry.update_rule("pack_15", is_active=False)

        assert updated.is_active is False
        assert updated.bonus_free_credits == 2
        assert await registry.bonus_for("pack_15", 15) == 0

    async def test_update_unknown_pack(self, db: AsyncSession):
        with pytest.raises(NotFoundError):
            await PurchaseBonusRegistry(db, BonusRuleCache(60)).update_rule(
                "pack_99", bonus_free_credits=1
            )

    async def test_update_negative_bonus(self, db: AsyncSession):
        await seed_bonus_rule(db)
        with pytest.raises(ValidationError):
            await PurchaseBonusRegistry(db, BonusRuleCache(60)).update_rule(
                "pack_15", bonus_free_credits=-1
            )

    async def test_upsert_creates_then_replaces(self, db: AsyncSession):
        registry = PurchaseBonusRegistry(db, BonusRuleCache(60))

        created = await registry.upsert_rule("pack_60", pack_credits=60, bonus_free_credits=10)
        assert created.bonus_free_credits == 10

        replaced = await registry.upsert_rule(
            "pack_60", pack_credits=60, bonus_free_credits=12, is_active=False
        )
        assert replaced.bonus_free_credits == 12
        assert replaced.is_active is False
        assert len(await registry.list_rules()) == 1

    async def test_upsert_validation(self, db: AsyncSession):
        registry = PurchaseBonusRegistry(db, BonusRuleCache(60))
        with pytest.raises(ValidationError):
            await registry.upsert_rule("pack_0", pack_credits=0, bonus_free_credits=1)
