"""
Credit pack catalog.

Maps checkout pack IDs to credit amounts and prices (EUR cents).
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class CreditPack:
    """Credit pack sold through checkout."""

    pack_id: str
    credits: int
    price_cents: int
    name: str

    def __post_init__(self) -> None:
        """Validate pack configuration."""
        if self.credits <= 0:
            raise ValueError(f"Credits must be positive: {self.credits}")
        if self.price_cents <= 0:
            raise ValueError(f"Price must be positive: {self.price_cents}")
        if not self.pack_id:
            raise ValueError("Pack ID required")
        if not self.name:
            raise ValueError("Name required")


# Pack catalog (purchase bonus rules are keyed by these IDs)
CREDIT_PACKS: dict[str, CreditPack] = {
    "pack_5": CreditPack(pack_id="pack_5", credits=5, price_cents=499, name="5 credits"),
    "pack_15": CreditPack(pack_id="pack_15", credits=15, price_cents=1199, name="15 credits"),
    "pack_30": CreditPack(pack_id="pack_30", credits=30, price_cents=1999, name="30 credits"),
    "pack_60": CreditPack(pack_id="pack_60", credits=60, price_cents=3499, name="60 credits"),
}


def get_pack(pack_id: str) -> CreditPack:
    """
    Get pack configuration by ID.

    Raises:
        ValueError: If pack ID not found
    """
    pack = CREDIT_PACKS.get(pack_id)
    if not pack:
        raise ValueError(f"Unknown pack ID: {pack_id}")
    return pack
