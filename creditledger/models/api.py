"""
API Models - Pydantic models for request/response validation.

NO DICTIONARIES - All data structures are strongly typed.
"""

from datetime import datetime
from enum import Enum
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, Field, field_validator


class TransactionType(str, Enum):
    """Credit journal entry type."""

    ADMIN_GRANT = "admin_grant"
    ADMIN_REVOKE = "admin_revoke"
    PROMO = "promo"
    PURCHASE = "purchase"
    BONUS = "bonus"
    SPEND = "spend"
    REGISTRATION_BONUS = "registration_bonus"


class LotSource(str, Enum):
    """Origin of a paid credit lot."""

    PAYMENT = "payment"
    ADMIN_GRANT = "admin_grant"


class UnlockMethod(str, Enum):
    """How a user came to own a catalog resource."""

    FREE = "free"
    PURCHASE = "purchase"


def normalize_promo_code(value: str) -> str:
    """Promo codes are compared trimmed and upper-cased."""
    return value.strip().upper()


class ErrorDetail(BaseModel):
    """Stable error code plus human-readable reason."""

    code: str
    message: str


# ============================================================================
# Balance Models
# ============================================================================


class CreditLotResponse(BaseModel):
    """Single paid credit lot still holding credits."""

    lot_id: int
    credits_granted: int
    credits_remaining: int
    unit_value_cents: int
    source: LotSource
    created_at: datetime


class BalanceSummary(BaseModel):
    """Bare balance after a mutation."""

    free_credits: int
    paid_credits: int
    total_credits: int


class BreakdownTotals(BaseModel):
    """Derived lifetime totals for display."""

    total_free_granted: int
    total_paid_acquired: int
    total_free_spent: int
    total_paid_spent: int
    total_revoked: int
    paid_cost_basis_cents: int
    unlock_count: int


class BalanceResponse(BaseModel):
    """GET /v1/credits/balance response."""

    free_credits: int
    paid_credits: int
    total_credits: int
    breakdown: BreakdownTotals
    lots: list[CreditLotResponse]


class TransactionItem(BaseModel):
    """Single journal entry; deltas are signed."""

    transaction_id: UUID
    transaction_type: TransactionType
    free_delta: int
    paid_delta: int
    free_balance_after: int
    paid_balance_after: int
    reference: str | None
    description: str
    created_at: datetime


class TransactionListResponse(BaseModel):
    """GET /v1/credits/transactions response."""

    transactions: list[TransactionItem]
    total_count: int
    has_more: bool


class RegistrationBonusResponse(BaseModel):
    """POST /v1/credits/registration-bonus response."""

    success: bool = True
    free_credits_granted: int
    already_granted: bool
    balance: BalanceSummary


# ============================================================================
# Promo Redemption Models
# ============================================================================


class RedeemPromoRequest(BaseModel):
    """POST /v1/credits/redeem-promo request body."""

    code: str = Field(..., min_length=1, max_length=64)

    @field_validator("code")
    @classmethod
    def validate_code(cls, v: str) -> str:
        """Normalize and reject whitespace-only codes."""
        normalized = normalize_promo_code(v)
        if not normalized:
            raise ValueError("code cannot be blank")
        return normalized


class RedeemPromoResponse(BaseModel):
    """POST /v1/credits/redeem-promo response."""

    success: bool = True
    code: str
    free_credits_granted: int
    balance: BalanceSummary


# ============================================================================
# Purchase Models
# ============================================================================


class PurchaseRequest(BaseModel):
    """POST /v1/purchases request body."""

    resource_id: UUID


class PurchaseResponse(BaseModel):
    """POST /v1/purchases response."""

    success: bool = True
    resource_id: UUID
    unlock_method: UnlockMethod
    credits_spent: int
    free_credits_spent: int
    paid_credits_spent: int
    remaining_balance: BalanceSummary


class UnlockResponse(BaseModel):
    """A resource the session user owns."""

    unlock_id: UUID
    resource_id: UUID
    title: str | None
    unlock_method: UnlockMethod
    credits_spent: int
    free_credits_spent: int
    paid_credits_spent: int
    unlocked_at: datetime


class PurchaseListResponse(BaseModel):
    """GET /v1/purchases response."""

    purchases: list[UnlockResponse]
    total: int


# ============================================================================
# Checkout / Webhook Models
# ============================================================================


class CheckoutSessionRequest(BaseModel):
    """POST /v1/checkout/sessions request body."""

    pack_id: str = Field(..., min_length=1, max_length=50)
    locale: Literal["fr", "en", "es"] = "fr"


class CheckoutSessionResponse(BaseModel):
    """POST /v1/checkout/sessions response."""

    session_id: str
    url: str


class WebhookAck(BaseModel):
    """Payment webhook acknowledgement - always returned once signature is valid."""

    received: bool = True


# ============================================================================
# Admin Credit Models
# ============================================================================


class AdminGrantRequest(BaseModel):
    """POST /admin/credits/grant request body."""

    user_id: UUID
    free_amount: int = Field(0, ge=0)
    paid_amount: int = Field(0, ge=0)
    unit_value_cents: int = Field(0, ge=0)
    reason: str = Field("admin_grant", min_length=1, max_length=500)


class AdminRevokeRequest(BaseModel):
    """POST /admin/credits/revoke request body."""

    user_id: UUID
    free_amount: int = Field(0, ge=0)
    paid_amount: int = Field(0, ge=0)
    reason: str = Field(..., min_length=1, max_length=500)


class AdminBalanceChangeResponse(BaseModel):
    """Response for admin grant/revoke."""

    success: bool = True
    user_id: UUID
    new_balance: BalanceSummary


# ============================================================================
# Promo Code Admin Models
# ============================================================================


class PromoCodeCreateRequest(BaseModel):
    """POST /admin/promo-codes request body."""

    code: str = Field(..., min_length=1, max_length=64)
    free_credits: int = Field(..., gt=0)
    max_uses: int | None = Field(None, ge=1)
    allow_multiple_per_user: bool = False
    is_active: bool = True
    expires_at: datetime | None = None
    description: str | None = Field(None, max_length=500)

    @field_validator("code")
    @classmethod
    def validate_code(cls, v: str) -> str:
        """Normalize and reject whitespace-only codes."""
        normalized = normalize_promo_code(v)
        if not normalized:
            raise ValueError("code cannot be blank")
        return normalized


class PromoCodeUpdateRequest(BaseModel):
    """
    PATCH /admin/promo-codes/{id} request body.

    Only fields present in the body are applied; explicit null clears
    max_uses / expires_at / description.
    """

    is_active: bool | None = None
    max_uses: int | None = Field(None, ge=1)
    allow_multiple_per_user: bool | None = None
    expires_at: datetime | None = None
    description: str | None = Field(None, max_length=500)
    free_credits: int | None = Field(None, gt=0)


class PromoCodeResponse(BaseModel):
    """Stored promo code record."""

    id: UUID
    code: str
    free_credits: int
    max_uses: int | None
    current_uses: int
    allow_multiple_per_user: bool
    is_active: bool
    expires_at: datetime | None
    description: str | None
    created_by: UUID | None
    created_at: datetime
    updated_at: datetime


class PromoCodeStatsResponse(PromoCodeResponse):
    """Promo code with redemption statistics."""

    redemption_count: int
    unique_users: int
    total_credits_granted: int


class PromoCodeListResponse(BaseModel):
    """GET /admin/promo-codes response."""

    codes: list[PromoCodeStatsResponse]
    total: int


class PromoRedemptionResponse(BaseModel):
    """Single redemption of a promo code."""

    id: UUID
    promo_code_id: UUID
    user_id: UUID
    free_credits_granted: int
    redeemed_at: datetime


class PromoRedemptionListResponse(BaseModel):
    """GET /admin/promo-codes/{id}/redemptions response."""

    redemptions: list[PromoRedemptionResponse]
    total: int


# ============================================================================
# Purchase Bonus Admin Models
# ============================================================================


class PurchaseBonusResponse(BaseModel):
    """Purchase bonus rule."""

    pack_id: str
    pack_credits: int
    bonus_free_credits: int
    is_active: bool
    updated_at: datetime


class PurchaseBonusListResponse(BaseModel):
    """GET /admin/purchase-bonuses response."""

    bonuses: list[PurchaseBonusResponse]


class PurchaseBonusUpdateRequest(BaseModel):
    """PATCH /admin/purchase-bonuses request body."""

    pack_id: str = Field(..., min_length=1, max_length=50)
    bonus_free_credits: int | None = Field(None, ge=0)
    is_active: bool | None = None


# ============================================================================
# Ledger Settings Admin Models
# ============================================================================


class RegistrationBonusSettings(BaseModel):
    """PUT /admin/settings/registration-bonus request body."""

    enabled: bool
    free_credits: int = Field(..., ge=0)


class RegistrationBonusSettingsResponse(RegistrationBonusSettings):
    """Current registration bonus setting."""

    updated_at: datetime | None
    updated_by: UUID | None


# ============================================================================
# Health Check Models
# ============================================================================


class HealthResponse(BaseModel):
    """GET /health response."""

    status: Literal["healthy", "unhealthy"]
    database: Literal["connected", "disconnected"]
    timestamp: str
