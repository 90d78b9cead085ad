"""
Booking creation and payment bookkeeping.

Availability is checked against a snapshot read right before the insert, the same
best-effort read-then-write the cancellation flow uses.
"""
import datetime
import logging
from typing import Optional

from sqlalchemy.orm import Session

from . import crud, lifecycle, models, schemas
from .availability import AvailabilitySnapshot, Rental, find_free_unit
from .config import settings
from .exceptions import ConflictError, NotFoundError, ValidationError
from .notifications import notify_safely
from .pricing import PricingResult, booking_horizon, candidate_options, find_option, get_pricing_options
from .promotions import calculate_discount, normalize_code
from .refunds import refund_at_percent

logger = logging.getLogger("party_rentals")


def _load_rental(db: Session, product_id: int) -> Rental:
    product = crud.get_product(db, product_id)
    if product is None or not product.is_active:
        raise NotFoundError("Product not found")
    return Rental.from_product(product)


def _snapshot_around(db: Session, rental: Rental, event_date: datetime.date) -> AvailabilitySnapshot:
    # Sunday rentals start the day before, weekend rentals end two days after
    return crud.load_availability_snapshot(
        db, rental.product_id,
        event_date - datetime.timedelta(days=1),
        event_date + datetime.timedelta(days=2),
    )


def quote(db: Session, product_id: int, event_date: datetime.date, now: datetime.datetime) -> PricingResult:
    rental = _load_rental(db, product_id)
    return get_pricing_options(rental, event_date, _snapshot_around(db, rental, event_date), now)


def create_pending_booking(
        db: Session,
        booking_in: schemas.BookingCreate,
        now: datetime.datetime,
        today: datetime.date,
) -> models.Booking:
    """
    Prices the requested option, reserves a free unit and stores the booking as pending.
    The customer pays the deposit through checkout; the webhook confirms it.
    """
    rental = _load_rental(db, booking_in.product_id)
    event_date = booking_in.event_date

    if rental.daily_price <= 0:
        raise ValidationError("This rental is coming soon and not yet available for booking.")
    if not booking_horizon(now).contains(event_date):
        raise ValidationError("That event date is outside the booking window.")
    if booking_in.booking_type not in [o.booking_type for o in candidate_options(rental, event_date)]:
        raise ValidationError(
            f"{booking_in.booking_type.value.capitalize()} rentals are not offered for {event_date.strftime('%A')} events."
        )

    snapshot = _snapshot_around(db, rental, event_date)
    result = get_pricing_options(rental, event_date, snapshot, now)
    option = find_option(result, booking_in.booking_type)
    if option is None:
        raise ConflictError(result.reason or "This rental is already booked for those dates.")

    if booking_in.delivery_window not in [w.value for w in option.delivery_windows]:
        raise ValidationError("Invalid delivery window for this booking.")
    if booking_in.pickup_window not in [w.value for w in option.pickup_windows]:
        raise ValidationError("Invalid pickup window for this booking.")

    unit_id = find_free_unit(rental, option.delivery_date, option.pickup_date, snapshot)
    if unit_id is None:
        raise ConflictError("This rental is already booked for those dates.")

    promo = None
    discount = 0.0
    if booking_in.promo_code:
        promo = crud.get_promo_code(db, normalize_code(booking_in.promo_code))
        applied = calculate_discount(promo, option.price, today, rental.product_id)
        if not applied.valid:
            raise ValidationError(applied.error)
        discount = applied.discount

    subtotal = round(option.price - discount, 2)
    customer = crud.upsert_customer(db, booking_in.customer)

    booking = models.Booking(
        booking_number=crud.generate_booking_number(),
        product_id=rental.product_id,
        unit_id=unit_id,
        customer_id=customer.id,
        product_name=rental.name,
        event_date=event_date,
        booking_type=option.booking_type,
        delivery_date=option.delivery_date,
        pickup_date=option.pickup_date,
        delivery_window=booking_in.delivery_window,
        pickup_window=booking_in.pickup_window,
        address=booking_in.address,
        city=booking_in.city,
        notes=booking_in.notes,
        subtotal=subtotal,
        discount_amount=discount,
        deposit_amount=min(settings.DEPOSIT_AMOUNT, subtotal),
        amount_paid=0.0,
        promo_code_id=promo.id if promo else None,
        status=models.BookingStatus.PENDING,
    )
    booking = crud.create_booking(db, booking)
    logger.info(
        f"Booking {booking.booking_number} created for product {rental.product_id} unit {unit_id} "
        f"on {event_date} ({option.booking_type.value}, ${subtotal:.2f})"
    )
    return booking


def record_payment(
        db: Session,
        booking: models.Booking,
        amount: float,
        payment_reference: Optional[str] = None,
) -> models.Booking:
    """Adds a payment to the booking. Payments never exceed the subtotal, so balance_due stays >= 0."""
    if models.BookingStatus(booking.status) == models.BookingStatus.CANCELLED:
        raise ValidationError("Cannot record a payment on a cancelled booking")
    amount = round(amount, 2)
    if amount > booking.balance_due + 0.005:
        raise ValidationError(f"Payment exceeds the balance due of ${booking.balance_due:.2f}")

    booking.amount_paid = round((booking.amount_paid or 0) + amount, 2)
    if payment_reference and payment_reference.startswith("pi_"):
        booking.stripe_payment_intent_id = payment_reference
    crud.add_outbox_event(db, "booking.payment_recorded", booking, amount=amount)
    db.commit()
    db.refresh(booking)
    logger.info(f"Recorded ${amount:.2f} payment on {booking.booking_number}, balance ${booking.balance_due:.2f}")
    return booking


def update_status(db: Session, booking: models.Booking, target: models.BookingStatus) -> models.Booking:
    """Admin status change along the allowed transitions (delivery, pickup, completion)."""
    if target == models.BookingStatus.PENDING_CANCELLATION:
        raise ValidationError("Cancellation requests are opened by the customer, not set directly")
    # Leaving pending_cancellation goes through the request review, which also closes the request
    if models.BookingStatus(booking.status) == models.BookingStatus.PENDING_CANCELLATION:
        raise ValidationError("This booking has a pending cancellation request; approve or deny it instead")
    lifecycle.transition_booking(booking, target)
    if target == models.BookingStatus.CANCELLED:
        booking.cancelled_at = models.utcnow()
        booking.cancelled_by = "admin"
    crud.add_outbox_event(db, f"booking.{target.value}", booking)
    db.commit()
    db.refresh(booking)
    return booking


def confirm_checkout(
        db: Session,
        session_id: str,
        payment_intent_id: Optional[str],
        amount_total_cents: Optional[int],
        notifier,
) -> Optional[models.Booking]:
    """
    Handles a completed deposit checkout. Repeated deliveries of the same event are no-ops.
    Returns None when no booking matches the session.
    """
    booking = crud.get_booking_by_checkout_session(db, session_id)
    if booking is None:
        logger.warning(f"Checkout session {session_id} does not match any booking")
        return None

    paid = round(amount_total_cents / 100, 2) if amount_total_cents is not None else booking.deposit_amount
    current = models.BookingStatus(booking.status)
    if current == models.BookingStatus.PENDING_CANCELLATION and booking.stripe_payment_intent_id is None:
        return _record_late_deposit(db, booking, paid, payment_intent_id)
    if current != models.BookingStatus.PENDING:
        logger.info(f"Booking {booking.booking_number} already {current.value}; ignoring checkout event")
        return booking

    lifecycle.transition_booking(booking, models.BookingStatus.CONFIRMED)
    booking.amount_paid = round(min((booking.amount_paid or 0) + paid, booking.subtotal), 2)
    booking.stripe_payment_intent_id = payment_intent_id

    if booking.promo_code_id is not None:
        promo = crud.get_promo_code_by_id(db, booking.promo_code_id)
        if promo is not None:
            promo.usage_count = (promo.usage_count or 0) + 1

    crud.add_outbox_event(db, "booking.confirmed", booking, amount_paid=booking.amount_paid)
    db.commit()
    db.refresh(booking)
    logger.info(f"Booking {booking.booking_number} confirmed, deposit ${paid:.2f} received")

    notify_safely(
        notifier, "booking_confirmed", booking.customer.email if booking.customer else None,
        {
            "customer_name": booking.customer.first_name if booking.customer else "there",
            "booking_number": booking.booking_number,
            "product_name": booking.product_name,
            "event_date": f"{booking.event_date:%A, %B} {booking.event_date.day}",
            "balance_due": booking.balance_due,
        },
    )
    return booking


def _record_late_deposit(
        db: Session,
        booking: models.Booking,
        paid: float,
        payment_intent_id: Optional[str],
) -> models.Booking:
    """
    The deposit cleared after the customer asked to cancel. The payment is recorded and the
    pending request's refund is re-derived from its frozen percent and fee, so the admin
    can still refund it.
    """
    booking.amount_paid = round(min((booking.amount_paid or 0) + paid, booking.subtotal), 2)
    booking.stripe_payment_intent_id = payment_intent_id

    request = crud.get_pending_cancellation_request(db, booking.id)
    if request is not None:
        request.original_paid = booking.amount_paid
        request.suggested_refund = refund_at_percent(
            booking.amount_paid, request.policy_refund_percent or 0, request.processing_fee or 0.0
        )

    crud.add_outbox_event(db, "booking.payment_recorded", booking, amount=paid)
    db.commit()
    db.refresh(booking)
    logger.info(f"Deposit ${paid:.2f} recorded on {booking.booking_number} while its cancellation is pending")
    return booking


def attach_checkout_session(db: Session, booking: models.Booking, session_id: str) -> models.Booking:
    booking.stripe_session_id = session_id
    db.commit()
    db.refresh(booking)
    return booking


def release_pending_booking(db: Session, booking: models.Booking, reason: str) -> models.Booking:
    """
    Cancels an unpaid pending booking so its unit is free again. The row is kept.
    Does NOT commit; callers release in batches.
    """
    lifecycle.transition_booking(booking, models.BookingStatus.CANCELLED)
    booking.cancelled_at = models.utcnow()
    booking.cancelled_by = "system"
    booking.cancellation_reason = reason
    crud.add_outbox_event(db, "booking.expired", booking)
    return booking


def expire_checkout(db: Session, session_id: str) -> Optional[models.Booking]:
    booking = crud.get_booking_by_checkout_session(db, session_id)
    if booking is None or models.BookingStatus(booking.status) != models.BookingStatus.PENDING:
        return booking
    release_pending_booking(db, booking, "Checkout expired before the deposit was paid")
    db.commit()
    logger.info(f"Released booking {booking.booking_number} after checkout expired")
    return booking
