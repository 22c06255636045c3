"""
Stripe Payment Provider Implementation.

NO DICTIONARIES - All data uses strongly typed models.
"""

from typing import Any

import stripe
from structlog import get_logger

from creditledger.exceptions import PaymentProviderError, WebhookVerificationError
from creditledger.services.payment_provider import (
    CheckoutRequest,
    CheckoutSession,
    CompletedCheckout,
    WebhookEvent,
)

logger = get_logger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"


def _metadata_value(metadata: Any, key: str) -> str | None:
    if metadata is None:
        return None
    try:
        value = metadata[key]
    except KeyError:
        return None
    return str(value) if value is not None else None


def _parse_credits(raw: str | None) -> int:
    if raw is None:
        return 0
    try:
        return int(raw)
    except ValueError:
        return 0


def _payment_reference(session: Any) -> str:
    """PaymentIntent ID when present (possibly expanded), else the session ID."""
    payment_intent = session.payment_intent
    if isinstance(payment_intent, str) and payment_intent:
        return payment_intent
    if payment_intent is not None and getattr(payment_intent, "id", None):
        return str(payment_intent.id)
    return str(session.id)


class StripeProvider:
    """
    Stripe payment provider implementation.

    Implements the PaymentProvider protocol with Stripe Checkout.
    """

    def __init__(self, api_key: str, webhook_secret: str) -> None:
        """
        Initialize Stripe provider.

        Args:
            api_key: Stripe secret API key
            webhook_secret: Stripe webhook signing secret
        """
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        stripe.api_key = api_key

    async def create_checkout_session(self, request: CheckoutRequest) -> CheckoutSession:
        """
        Create a Stripe Checkout session for a credit pack.

        The pack and user travel in session metadata and come back on the
        checkout.session.completed webhook.

        Raises:
            PaymentProviderError: If Stripe API call fails
        """
        try:
            logger.info(
                "creating_stripe_checkout_session",
                user_id=request.user_id,
                pack_id=request.pack_id,
                price_cents=request.price_cents,
            )

            session = stripe.checkout.Session.create(
                payment_method_types=["card"],
                line_items=[
                    {
                        "price_data": {
                            "currency": request.currency,
                            "product_data": {
                                "name": request.product_name,
                                "description": f"Pack of {request.credits} credits",
                            },
                            "unit_amount": request.price_cents,
                        },
                        "quantity": 1,
                    }
                ],
                mode="payment",
                success_url=request.success_url,
                cancel_url=request.cancel_url,
                customer_email=request.customer_email,
                metadata={
                    "user_id": request.user_id,
                    "pack_id": request.pack_id,
                    "credits": str(request.credits),
                },
                locale=request.locale,
            )

            logger.info("stripe_checkout_session_created", session_id=session.id)

            return CheckoutSession(session_id=session.id, url=session.url or "")

        except stripe.StripeError as exc:
            logger.error(
                "stripe_checkout_session_failed",
                pack_id=request.pack_id,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise PaymentProviderError(f"Stripe checkout failed: {exc}") from exc

    async def verify_webhook(self, payload: bytes, signature: str) -> WebhookEvent:
        """
        Verify and parse Stripe webhook event.

        Raises:
            WebhookVerificationError: If signature verification fails
        """
        try:
            event = stripe.Webhook.construct_event(  # type: ignore[no-untyped-call]
                payload, signature, self.webhook_secret
            )
        except stripe.SignatureVerificationError as exc:
            logger.error("stripe_webhook_verification_failed", error=str(exc))
            raise WebhookVerificationError("Invalid Stripe webhook signature") from exc
        except ValueError as exc:
            logger.error("stripe_webhook_parsing_failed", error=str(exc))
            raise WebhookVerificationError(f"Failed to parse Stripe webhook: {exc}") from exc

        logger.info("stripe_webhook_verified", event_id=event.id, event_type=event.type)

        if event.type != CHECKOUT_COMPLETED:
            return WebhookEvent(event_id=event.id, event_type=event.type)

        session = event.data.object
        metadata = session.metadata
        checkout = CompletedCheckout(
            payment_reference=_payment_reference(session),
            session_id=str(session.id),
            user_id=_metadata_value(metadata, "user_id"),
            pack_id=_metadata_value(metadata, "pack_id"),
            credits=_parse_credits(_metadata_value(metadata, "credits")),
            amount_total_cents=session.amount_total,
        )
        return WebhookEvent(event_id=event.id, event_type=event.type, checkout=checkout)
