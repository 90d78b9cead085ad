from dataclasses import asdict
import datetime
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from fastapi_limiter.depends import RateLimiter

from .. import bookings, crud, schemas
from ..auth import get_key_by_subject_or_ip
from ..cancellations import CancellationService
from ..config import settings
from ..database import get_db
from ..dependencies import get_cancellation_service, get_now, get_refund_gateway, http_error
from ..exceptions import BookingError, PaymentProviderError
from ..payments import StripeGateway

router = APIRouter(prefix="/bookings", tags=["Bookings"])


@router.get("/options", response_model=schemas.PricingResultRead)
def read_pricing_options(
        product_id: int,
        event_date: datetime.date,
        db: Session = Depends(get_db),
        now: datetime.datetime = Depends(get_now),
):
    """
    Bookable options (daily / weekend / sunday) for a product on an event date.
    """
    try:
        result = bookings.quote(db, product_id, event_date, now)
    except BookingError as e:
        raise http_error(e)
    return schemas.PricingResultRead.model_validate(asdict(result))


@router.post("/", response_model=schemas.BookingCheckout, status_code=status.HTTP_201_CREATED)
def create_booking(
        booking: schemas.BookingCreate,
        db: Session = Depends(get_db),
        now: datetime.datetime = Depends(get_now),
        gateway: StripeGateway = Depends(get_refund_gateway),
        limit: None = Depends(RateLimiter(times=10, minutes=1, identifier=get_key_by_subject_or_ip))
):
    """
    Create a pending booking and start the deposit checkout.
    The booking is confirmed by the Stripe webhook once the deposit is paid.
    """
    try:
        db_booking = bookings.create_pending_booking(db, booking, now=now, today=now.date())
    except BookingError as e:
        raise http_error(e)

    try:
        session = gateway.create_checkout_session(
            db_booking,
            customer_email=booking.customer.email,
            success_url=f"{settings.PUBLIC_BASE_URL}/booking/success?booking={db_booking.booking_number}",
            cancel_url=f"{settings.PUBLIC_BASE_URL}/booking/cancelled?booking={db_booking.booking_number}",
        )
    except PaymentProviderError as e:
        # No checkout means no deposit; free the unit now instead of waiting for the scheduler
        bookings.release_pending_booking(db, db_booking, "Checkout could not be started")
        db.commit()
        raise http_error(e)

    db_booking = bookings.attach_checkout_session(db, db_booking, session.id)
    return schemas.BookingCheckout(
        booking=schemas.BookingRead.model_validate(db_booking),
        checkout_url=session.url,
    )


@router.get("/lookup", response_model=schemas.BookingRead)
def lookup_booking(
        booking_number: str,
        email: str,
        db: Session = Depends(get_db),
):
    """
    Find a booking by its number; the email must match the customer on file.
    """
    db_booking = crud.get_booking_by_number(db, booking_number.strip().upper())
    if db_booking is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Booking not found")
    if db_booking.customer is None or db_booking.customer.email.lower() != email.strip().lower():
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Email does not match booking")
    return db_booking


@router.post("/{booking_id}/reschedule", response_model=schemas.BookingRead)
def reschedule_booking(
        booking_id: int,
        reschedule: schemas.RescheduleCreate,
        service: CancellationService = Depends(get_cancellation_service),
        limit: None = Depends(RateLimiter(times=5, minutes=1, identifier=get_key_by_subject_or_ip))
):
    """
    Move a booking to another open date instead of cancelling it.
    A pending cancellation request on the booking is closed.
    """
    try:
        return service.reschedule_booking(
            booking_id,
            reschedule.email,
            reschedule.new_event_date,
            delivery_window=reschedule.delivery_window,
            pickup_window=reschedule.pickup_window,
        )
    except BookingError as e:
        raise http_error(e)
