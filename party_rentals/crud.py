import json
import datetime
import secrets
from typing import Optional

from sqlalchemy.orm import Session

from . import models, schemas
from .availability import AvailabilitySnapshot, BlackoutInterval, BookedInterval
from .config import settings


# --- Catalog ---

def get_products(db: Session, skip: int = 0, limit: int = 100):
    return (
        db.query(models.Product)
        .filter(models.Product.is_active.is_(True))
        .order_by(models.Product.id)
        .offset(skip)
        .limit(limit)
        .all()
    )


def get_product(db: Session, product_id: int) -> Optional[models.Product]:
    return db.query(models.Product).filter(models.Product.id == product_id).first()


# --- Availability ---

def load_availability_snapshot(
        db: Session,
        product_id: int,
        start_date: datetime.date,
        end_date: datetime.date,
) -> AvailabilitySnapshot:
    """
    Reads every non-cancelled booking and blackout that touches [start_date, end_date]
    for the product. Overlap here uses the same inclusive rule as the availability checks.
    """
    bookings = db.query(models.Booking).filter(
        models.Booking.product_id == product_id,
        models.Booking.status != models.BookingStatus.CANCELLED,
        models.Booking.delivery_date <= end_date,
        models.Booking.pickup_date >= start_date,
    ).all()

    blackouts = db.query(models.BlackoutDate).filter(
        models.BlackoutDate.start_date <= end_date,
        models.BlackoutDate.end_date >= start_date,
    ).all()

    return AvailabilitySnapshot(
        bookings=tuple(
            BookedInterval(
                unit_id=b.unit_id,
                start=b.delivery_date,
                end=b.pickup_date,
                status=models.BookingStatus(b.status),
                booking_id=b.id,
            )
            for b in bookings
        ),
        blackouts=tuple(
            BlackoutInterval(
                start=b.start_date,
                end=b.end_date,
                product_id=b.product_id,
                unit_id=b.unit_id,
                reason=b.reason,
            )
            for b in blackouts
        ),
    )


# --- Customers ---

def upsert_customer(db: Session, customer: schemas.CustomerIn) -> models.Customer:
    """
    Finds the customer by email or creates one. Flushes but does NOT commit;
    the booking that references the customer is committed with it.
    """
    email = customer.email.lower()
    db_customer = db.query(models.Customer).filter(models.Customer.email == email).first()
    if db_customer is None:
        db_customer = models.Customer(email=email)
        db.add(db_customer)

    db_customer.first_name = customer.first_name
    db_customer.last_name = customer.last_name
    if customer.phone:
        db_customer.phone = customer.phone
    db.flush()
    return db_customer


# --- Bookings ---

def generate_booking_number() -> str:
    return f"PR-{secrets.token_hex(3).upper()}"


def create_booking(db: Session, booking: models.Booking, event_type: str = "booking.created") -> models.Booking:
    """
    Atomically creates a new booking and its outbox event.
    """
    db.add(booking)
    db.flush()
    add_outbox_event(db, event_type, booking)
    db.commit()
    db.refresh(booking)
    return booking


def get_booking(db: Session, booking_id: int) -> Optional[models.Booking]:
    return db.query(models.Booking).filter(models.Booking.id == booking_id).first()


def get_booking_by_number(db: Session, booking_number: str) -> Optional[models.Booking]:
    return db.query(models.Booking).filter(models.Booking.booking_number == booking_number).first()


def get_booking_by_checkout_session(db: Session, session_id: str) -> Optional[models.Booking]:
    return db.query(models.Booking).filter(models.Booking.stripe_session_id == session_id).first()


def list_bookings(
        db: Session,
        status: Optional[models.BookingStatus] = None,
        start_date: Optional[datetime.date] = None,
        end_date: Optional[datetime.date] = None,
        skip: int = 0,
        limit: int = 100,
):
    query = db.query(models.Booking)
    if status is not None:
        query = query.filter(models.Booking.status == status)
    if start_date is not None:
        query = query.filter(models.Booking.event_date >= start_date)
    if end_date is not None:
        query = query.filter(models.Booking.event_date <= end_date)
    return query.order_by(models.Booking.event_date, models.Booking.id).offset(skip).limit(limit).all()


def get_expired_pending_bookings(db: Session, created_before: datetime.datetime) -> list[models.Booking]:
    """
    Pending bookings whose checkout was started before `created_before` and never paid.
    """
    return db.query(models.Booking).filter(
        models.Booking.status == models.BookingStatus.PENDING,
        models.Booking.amount_paid == 0,
        models.Booking.created_at < created_before,
    ).all()


# --- Cancellation requests ---

def get_pending_cancellation_request(db: Session, booking_id: int) -> Optional[models.CancellationRequest]:
    return db.query(models.CancellationRequest).filter(
        models.CancellationRequest.booking_id == booking_id,
        models.CancellationRequest.status == models.CancellationRequestStatus.PENDING,
    ).first()


def has_pending_cancellation_request(db: Session, booking_id: int) -> bool:
    return get_pending_cancellation_request(db, booking_id) is not None


def get_cancellation_request(db: Session, request_id: int) -> Optional[models.CancellationRequest]:
    return db.query(models.CancellationRequest).filter(models.CancellationRequest.id == request_id).first()


def list_cancellation_requests(
        db: Session,
        status: Optional[models.CancellationRequestStatus] = None,
        limit: int = 50,
):
    query = db.query(models.CancellationRequest)
    if status is not None:
        query = query.filter(models.CancellationRequest.status == status)
    return query.order_by(models.CancellationRequest.created_at.desc(), models.CancellationRequest.id.desc()).limit(limit).all()


# --- Cancellation policy ---

def get_active_policy(db: Session) -> Optional[models.CancellationPolicy]:
    return db.query(models.CancellationPolicy).filter(models.CancellationPolicy.is_active.is_(True)).first()


def replace_active_policy(db: Session, policy: schemas.CancellationPolicyUpdate) -> models.CancellationPolicy:
    """
    Deactivates the current policy and stores `policy` as the only active one.
    Old rows are kept so existing requests can still be traced to the rules they were priced under.
    """
    db.query(models.CancellationPolicy).filter(
        models.CancellationPolicy.is_active.is_(True)
    ).update({models.CancellationPolicy.is_active: False}, synchronize_session=False)

    db_policy = models.CancellationPolicy(
        name=policy.name,
        is_active=True,
        rules=[rule.model_dump() for rule in policy.rules],
        weather_full_refund=policy.weather_full_refund,
        allow_reschedule=policy.allow_reschedule,
        processing_fee=policy.processing_fee,
    )
    db.add(db_policy)
    db.commit()
    db.refresh(db_policy)
    return db_policy


# --- Attention items ---

def create_attention_item(
        db: Session,
        booking_id: int,
        attention_type: str,
        priority: models.AttentionPriority,
        title: str,
        description: Optional[str] = None,
) -> models.AttentionItem:
    """
    Note: Does NOT commit. The calling workflow commits it with the state change it belongs to.
    """
    item = models.AttentionItem(
        booking_id=booking_id,
        attention_type=attention_type,
        priority=priority,
        status=models.AttentionStatus.PENDING,
        title=title,
        description=description,
    )
    db.add(item)
    return item


def resolve_attention_items(
        db: Session,
        booking_id: int,
        attention_type: str,
        resolution_action: str,
        resolution_notes: Optional[str] = None,
) -> int:
    """Marks matching pending items resolved. Does NOT commit."""
    items = db.query(models.AttentionItem).filter(
        models.AttentionItem.booking_id == booking_id,
        models.AttentionItem.attention_type == attention_type,
        models.AttentionItem.status == models.AttentionStatus.PENDING,
    ).all()
    for item in items:
        item.status = models.AttentionStatus.RESOLVED
        item.resolved_at = models.utcnow()
        item.resolution_action = resolution_action
        item.resolution_notes = resolution_notes
    return len(items)


def list_attention_items(db: Session, status: Optional[models.AttentionStatus] = models.AttentionStatus.PENDING):
    query = db.query(models.AttentionItem)
    if status is not None:
        query = query.filter(models.AttentionItem.status == status)
    return query.order_by(models.AttentionItem.created_at.desc(), models.AttentionItem.id.desc()).all()


# --- Blackout dates ---

def list_blackout_dates(
        db: Session,
        start_date: Optional[datetime.date] = None,
        end_date: Optional[datetime.date] = None,
):
    query = db.query(models.BlackoutDate)
    if end_date is not None:
        query = query.filter(models.BlackoutDate.start_date <= end_date)
    if start_date is not None:
        query = query.filter(models.BlackoutDate.end_date >= start_date)
    return query.order_by(models.BlackoutDate.start_date).all()


def create_blackout_date(db: Session, blackout: schemas.BlackoutDateCreate) -> models.BlackoutDate:
    db_blackout = models.BlackoutDate(**blackout.model_dump())
    db.add(db_blackout)
    db.commit()
    db.refresh(db_blackout)
    return db_blackout


def delete_blackout_date(db: Session, blackout_id: int) -> bool:
    db_blackout = db.query(models.BlackoutDate).filter(models.BlackoutDate.id == blackout_id).first()
    if db_blackout:
        db.delete(db_blackout)
        db.commit()
        return True
    return False


# --- Promotions ---

def get_promo_code(db: Session, code: str) -> Optional[models.PromoCode]:
    return db.query(models.PromoCode).filter(models.PromoCode.code == code).first()


def get_promo_code_by_id(db: Session, promo_code_id: int) -> Optional[models.PromoCode]:
    return db.query(models.PromoCode).filter(models.PromoCode.id == promo_code_id).first()


# --- Outbox ---

def add_outbox_event(db: Session, event_type: str, booking: models.Booking, **extra) -> models.OutboxEvent:
    """
    Adds a booking event to the outbox table.
    Note: Does NOT commit. The caller commits it together with the change it describes.
    """
    payload = {
        "event": event_type,
        "booking_id": booking.id,
        "booking_number": booking.booking_number,
        "product_id": booking.product_id,
        "unit_id": booking.unit_id,
        "status": models.BookingStatus(booking.status).value,
        "event_date": booking.event_date.isoformat(),
    }
    payload.update(extra)

    db_outbox_event = models.OutboxEvent(
        topic=settings.KAFKA_BOOKING_TOPIC,
        payload=json.dumps(payload, default=str),
        status="PENDING",
    )
    db.add(db_outbox_event)
    return db_outbox_event
