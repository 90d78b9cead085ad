import logging
import time
from dataclasses import dataclass
from typing import Optional

import stripe

from .config import settings
from .exceptions import PaymentProviderError, ValidationError

logger = logging.getLogger("party_rentals")

CHECKOUT_EXPIRY_SECONDS = 30 * 60


@dataclass
class RefundResult:
    success: bool
    refund_id: Optional[str] = None
    error: Optional[str] = None


@dataclass
class CheckoutSession:
    id: str
    url: str


def to_cents(amount: float) -> int:
    return int(round(amount * 100))


class StripeGateway:
    """Thin wrapper over the Stripe calls this service makes. One API call per method."""

    def __init__(self, api_key: Optional[str] = None, webhook_secret: Optional[str] = None):
        self.api_key = api_key or settings.STRIPE_SECRET_KEY
        self.webhook_secret = webhook_secret or settings.STRIPE_WEBHOOK_SECRET

    def process_refund(self, payment_reference: str, amount: float, description: Optional[str] = None) -> RefundResult:
        """
        Refunds `amount` dollars against a payment intent.
        Failures come back as RefundResult(success=False); nothing is raised.
        """
        try:
            refund = stripe.Refund.create(
                payment_intent=payment_reference,
                amount=to_cents(amount),
                reason="requested_by_customer",
                metadata={"reason": description or "Customer cancellation request"},
                api_key=self.api_key,
            )
        except stripe.InvalidRequestError as e:
            message = str(e.user_message or e)
            logger.error(f"Stripe rejected refund for {payment_reference}: {message}")
            if "already been refunded" in message:
                return RefundResult(success=False, error="This payment has already been refunded.")
            if "greater than" in message:
                return RefundResult(success=False, error="Refund amount exceeds the original payment.")
            return RefundResult(success=False, error=message)
        except stripe.StripeError as e:
            logger.error(f"Stripe refund error for {payment_reference}: {e}")
            return RefundResult(success=False, error=str(e.user_message or "Failed to process refund. Please try again."))

        logger.info(f"Stripe refund {refund.id} created for {payment_reference} (${amount:.2f})")
        return RefundResult(success=True, refund_id=refund.id)

    def create_checkout_session(self, booking, customer_email: str, success_url: str, cancel_url: str) -> CheckoutSession:
        """Deposit checkout for a freshly created pending booking."""
        try:
            session = stripe.checkout.Session.create(
                mode="payment",
                payment_method_types=["card"],
                customer_email=customer_email,
                metadata={
                    "booking_id": str(booking.id),
                    "booking_number": booking.booking_number,
                },
                line_items=[
                    {
                        "price_data": {
                            "currency": "usd",
                            "product_data": {
                                "name": f"{booking.product_name} - Deposit",
                                "description": f"Booking {booking.booking_number} for {booking.event_date.isoformat()}",
                            },
                            "unit_amount": to_cents(booking.deposit_amount),
                        },
                        "quantity": 1,
                    }
                ],
                success_url=success_url,
                cancel_url=cancel_url,
                expires_at=int(time.time()) + CHECKOUT_EXPIRY_SECONDS,
                api_key=self.api_key,
            )
        except stripe.StripeError as e:
            logger.error(f"Failed to create checkout session for booking {booking.booking_number}: {e}")
            raise PaymentProviderError("Unable to start checkout. Please try again.") from e

        return CheckoutSession(id=session.id, url=session.url)

    def parse_webhook(self, payload: bytes, signature: Optional[str]):
        try:
            return stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except (ValueError, stripe.SignatureVerificationError) as e:
            logger.warning(f"Rejected Stripe webhook: {e}")
            raise ValidationError("Invalid webhook signature.") from e
