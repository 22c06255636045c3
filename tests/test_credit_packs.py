"""
Tests for the credit pack catalog.
"""

import pytest

from creditledger.services.credit_packs import CREDIT_PACKS, CreditPack, get_pack


class TestCreditPackCatalog:
    """Tests for CREDIT_PACKS and get_pack."""

    @pytest.mark.parametrize(
        ("pack_id", "credits", "price_cents"),
        [
            ("pack_5", 5, 499),
            ("pack_15", 15, 1199),
            ("pack_30", 30, 1999),
            ("pack_60", 60, 3499),
        ],
    )
    def test_known_packs(self, pack_id: str, credits: int, price_cents: int):
        pack = get_pack(pack_id)
        assert pack.credits == credits
        assert pack.price_cents == price_cents

    def test_catalog_keys_match_pack_ids(self):
        for pack_id, pack in CREDIT_PACKS.items():
            assert pack.pack_id == pack_id

    def test_unknown_pack(self):
        with pytest.raises(ValueError, match="Unknown pack ID"):
            get_pack("pack_1000")


class TestCreditPackValidation:
    """Tests for CreditPack construction."""

    def test_zero_credits(self):
        with pytest.raises(ValueError, match="Credits"):
            CreditPack(pack_id="pack_0", credits=0, price_cents=100, name="none")

    def test_zero_price(self):
        with pytest.raises(ValueError, match="Price"):
            CreditPack(pack_id="pack_free", credits=5, price_cents=0, name="free")

    def test_blank_id(self):
        with pytest.raises(ValueError, match="Pack ID"):
            CreditPack(pack_id="", credits=5, price_cents=499, name="5 credits")

    def test_blank_name(self):
        with pytest.raises(ValueError, match="Name"):
            CreditPack(pack_id="pack_5", credits=5, price_cents=499, name="")
