"""
Payment Provider Protocol - Provider-agnostic checkout interface.

NO DICTIONARIES - All data uses strongly typed models.
"""

from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True)
class CheckoutRequest:
    """Request to open a hosted checkout page for one credit pack."""

    user_id: str
    customer_email: str | None
    pack_id: str
    credits: int
    price_cents: int
    currency: str
    product_name: str
    locale: str
    success_url: str
    cancel_url: str


@dataclass(frozen=True)
class CheckoutSession:
    """Hosted checkout session created by the provider."""

    session_id: str
    url: str


@dataclass(frozen=True)
class CompletedCheckout:
    """
    Paid checkout extracted from a webhook.

    payment_reference is the provider's stable payment ID and is what the
    ledger deduplicates on.
    """

    payment_reference: str
    session_id: str
    user_id: str | None
    pack_id: str | None
    credits: int
    amount_total_cents: int | None


@dataclass(frozen=True)
class WebhookEvent:
    """
    Provider-agnostic webhook event.

    checkout is set only for completed checkout sessions.
    """

    event_id: str
    event_type: str
    checkout: CompletedCheckout | None = None


class PaymentProvider(Protocol):
    """
    Payment provider protocol.

    Any checkout provider must implement this interface; the ledger only
    sees CompletedCheckout values.
    """

    async def create_checkout_session(self, request: CheckoutRequest) -> CheckoutSession:
        """
        Create a hosted checkout session.

        Raises:
            PaymentProviderError: If session creation fails
        """
        ...

    async def verify_webhook(self, payload: bytes, signature: str) -> WebhookEvent:
        """
        Verify and parse webhook event from provider.

        Raises:
            WebhookVerificationError: If signature verification fails
        """
        ...
