import logging
from typing import Optional
from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.orm import Session

from .. import bookings
from ..database import get_db
from ..dependencies import get_notifier, get_refund_gateway, http_error
from ..exceptions import BookingError
from ..notifications import EmailNotifier
from ..payments import StripeGateway

logger = logging.getLogger("party_rentals")

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


@router.post("/stripe")
async def stripe_webhook(
        request: Request,
        stripe_signature: Optional[str] = Header(default=None, alias="Stripe-Signature"),
        db: Session = Depends(get_db),
        gateway: StripeGateway = Depends(get_refund_gateway),
        notifier: EmailNotifier = Depends(get_notifier),
):
    """
    Receives checkout events from Stripe. Unknown event types are acknowledged and ignored.
    """
    payload = await request.body()
    try:
        event = gateway.parse_webhook(payload, stripe_signature)
    except BookingError as e:
        raise http_error(e)

    event_type = event["type"]
    session = event["data"]["object"]

    if event_type == "checkout.session.completed":
        if session.get("payment_status", "paid") == "paid":
            bookings.confirm_checkout(
                db,
                session_id=session["id"],
                payment_intent_id=session.get("payment_intent"),
                amount_total_cents=session.get("amount_total"),
                notifier=notifier,
            )
    elif event_type == "checkout.session.expired":
        bookings.expire_checkout(db, session["id"])
    else:
        logger.info(f"Ignoring Stripe event {event_type}")

    return {"received": True}
