from sqlalchemy import (
    Boolean, Column, Date, Float, ForeignKey, Index, Integer, JSON, String, Text, TIMESTAMP
)
from sqlalchemy.orm import relationship
from sqlalchemy import Enum as SQLEnum
from enum import Enum as PyEnum
import datetime

from .database import Base


def utcnow() -> datetime.datetime:
    """Naive UTC timestamp, matching the TIMESTAMP columns below."""
    return datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)


# --- Status enums ---

class BookingStatus(str, PyEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    DELIVERED = "delivered"
    PICKED_UP = "picked_up"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    PENDING_CANCELLATION = "pending_cancellation"


class BookingType(str, PyEnum):
    DAILY = "daily"
    WEEKEND = "weekend"
    SUNDAY = "sunday"


class RefundStatus(str, PyEnum):
    NONE = "none"
    PENDING = "pending"
    PROCESSED = "processed"


class CancellationRequestStatus(str, PyEnum):
    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"
    REFUNDED = "refunded"


class CancellationType(str, PyEnum):
    CUSTOMER_REQUEST = "customer_request"
    WEATHER = "weather"
    EMERGENCY = "emergency"
    OUR_FAULT = "our_fault"
    GOODWILL = "goodwill"
    ADMIN_INITIATED = "admin_initiated"


class ReviewAction(str, PyEnum):
    APPROVE = "approve"
    DENY = "deny"
    REFUND = "refund"
    MARK_REFUNDED = "mark_refunded"


class RefundMethod(str, PyEnum):
    STRIPE = "stripe"
    VENMO = "venmo"
    ZELLE = "zelle"
    CASH = "cash"
    CHECK = "check"


class AttentionPriority(str, PyEnum):
    URGENT = "urgent"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class AttentionStatus(str, PyEnum):
    PENDING = "pending"
    RESOLVED = "resolved"


class DiscountType(str, PyEnum):
    PERCENT = "percent"
    FIXED = "fixed"


class PromoCodeStatus(str, PyEnum):
    ACTIVE = "active"
    USED = "used"
    EXPIRED = "expired"
    DISABLED = "disabled"


# --- Catalog ---

class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    slug = Column(String(100), unique=True, index=True, nullable=False)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)

    daily_price = Column(Float, nullable=False, default=0)
    weekend_price = Column(Float, nullable=False, default=0)
    sunday_price = Column(Float, nullable=False, default=0)

    # Event-style rentals come back the same evening
    same_day_pickup_only = Column(Boolean, nullable=False, default=False)
    # None means every booking type is offered
    available_booking_types = Column(JSON, nullable=True)

    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(TIMESTAMP, default=utcnow)

    units = relationship("Unit", back_populates="product", order_by="Unit.id")


class Unit(Base):
    __tablename__ = "units"

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), index=True, nullable=False)
    label = Column(String(100), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)

    product = relationship("Product", back_populates="units")


class Customer(Base):
    __tablename__ = "customers"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    phone = Column(String(40), nullable=True)
    created_at = Column(TIMESTAMP, default=utcnow)

    bookings = relationship("Booking", back_populates="customer")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


# --- Bookings ---

class Booking(Base):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True)
    booking_number = Column(String(20), unique=True, index=True, nullable=False)

    product_id = Column(Integer, ForeignKey("products.id"), index=True, nullable=False)
    unit_id = Column(Integer, ForeignKey("units.id"), index=True, nullable=False)
    customer_id = Column(Integer, ForeignKey("customers.id"), index=True, nullable=False)
    # Name at booking time; the catalog entry may be renamed later
    product_name = Column(String(255), nullable=False)

    event_date = Column(Date, nullable=False)
    booking_type = Column(SQLEnum(BookingType), nullable=False)
    delivery_date = Column(Date, nullable=False)
    pickup_date = Column(Date, nullable=False)
    delivery_window = Column(String(50), nullable=False)
    pickup_window = Column(String(50), nullable=False)

    address = Column(String(255), nullable=False)
    city = Column(String(100), nullable=False)
    notes = Column(Text, nullable=True)

    # Money
    subtotal = Column(Float, nullable=False)
    discount_amount = Column(Float, nullable=False, default=0)
    deposit_amount = Column(Float, nullable=False)
    amount_paid = Column(Float, nullable=False, default=0)
    promo_code_id = Column(Integer, ForeignKey("promo_codes.id"), nullable=True)

    status = Column(SQLEnum(BookingStatus), default=BookingStatus.PENDING, nullable=False, index=True)

    # Payment provider references
    stripe_session_id = Column(String(255), nullable=True)
    stripe_payment_intent_id = Column(String(255), nullable=True)

    # Cancellation / refund bookkeeping
    cancelled_at = Column(TIMESTAMP, nullable=True)
    cancelled_by = Column(String(50), nullable=True)
    cancellation_reason = Column(Text, nullable=True)
    refund_amount = Column(Float, nullable=True)
    refund_status = Column(SQLEnum(RefundStatus), default=RefundStatus.NONE, nullable=False)
    stripe_refund_id = Column(String(255), nullable=True)
    refund_processed_at = Column(TIMESTAMP, nullable=True)
    internal_notes = Column(Text, nullable=True)

    created_at = Column(TIMESTAMP, default=utcnow)
    updated_at = Column(TIMESTAMP, default=utcnow, onupdate=utcnow)

    customer = relationship("Customer", back_populates="bookings")
    cancellation_requests = relationship("CancellationRequest", back_populates="booking")

    __table_args__ = (
        Index("ix_bookings_unit_dates", "unit_id", "delivery_date", "pickup_date"),
    )

    @property
    def balance_due(self) -> float:
        return round((self.subtotal or 0) - (self.amount_paid or 0), 2)


class BlackoutDate(Base):
    __tablename__ = "blackout_dates"

    id = Column(Integer, primary_key=True, index=True)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)

    # Both empty: applies to everything
    product_id = Column(Integer, ForeignKey("products.id"), nullable=True)
    unit_id = Column(Integer, ForeignKey("units.id"), nullable=True)

    reason = Column(String(255), nullable=True)
    created_at = Column(TIMESTAMP, default=utcnow)


# --- Cancellations ---

class CancellationPolicy(Base):
    __tablename__ = "cancellation_policies"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False, default="Standard Policy")
    is_active = Column(Boolean, nullable=False, default=False, index=True)

    # [{"min_days": 7, "max_days": null, "refund_percent": 100, "label": "..."}]
    rules = Column(JSON, nullable=False, default=list)
    weather_full_refund = Column(Boolean, nullable=False, default=True)
    allow_reschedule = Column(Boolean, nullable=False, default=True)
    processing_fee = Column(Float, nullable=False, default=0)

    created_at = Column(TIMESTAMP, default=utcnow)


class CancellationRequest(Base):
    __tablename__ = "cancellation_requests"

    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), index=True, nullable=False)

    status = Column(
        SQLEnum(CancellationRequestStatus),
        default=CancellationRequestStatus.PENDING,
        nullable=False,
        index=True,
    )
    reason = Column(Text, nullable=True)
    cancellation_type = Column(
        SQLEnum(CancellationType), default=CancellationType.CUSTOMER_REQUEST, nullable=False
    )

    # Frozen at request time; later policy edits do not touch these
    days_before_event = Column(Integer, nullable=False)
    policy_refund_percent = Column(Integer, nullable=False)
    original_paid = Column(Float, nullable=False)
    suggested_refund = Column(Float, nullable=False)
    processing_fee = Column(Float, nullable=False, default=0)

    approved_refund = Column(Float, nullable=True)
    refund_method = Column(SQLEnum(RefundMethod), nullable=True)
    admin_notes = Column(Text, nullable=True)
    reviewed_at = Column(TIMESTAMP, nullable=True)
    stripe_refund_id = Column(String(255), nullable=True)
    refund_processed_at = Column(TIMESTAMP, nullable=True)

    created_at = Column(TIMESTAMP, default=utcnow)

    booking = relationship("Booking", back_populates="cancellation_requests")


class AttentionItem(Base):
    __tablename__ = "attention_items"

    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), index=True, nullable=False)
    attention_type = Column(String(50), nullable=False)
    priority = Column(SQLEnum(AttentionPriority), default=AttentionPriority.MEDIUM, nullable=False)
    status = Column(SQLEnum(AttentionStatus), default=AttentionStatus.PENDING, nullable=False, index=True)

    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)

    resolution_action = Column(String(50), nullable=True)
    resolution_notes = Column(Text, nullable=True)
    resolved_at = Column(TIMESTAMP, nullable=True)
    created_at = Column(TIMESTAMP, default=utcnow)


# --- Promotions ---

class PromoCode(Base):
    __tablename__ = "promo_codes"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(50), unique=True, index=True, nullable=False)
    discount_type = Column(SQLEnum(DiscountType), nullable=False)
    discount_amount = Column(Float, nullable=False)
    max_discount_cap = Column(Float, nullable=True)
    minimum_order_amount = Column(Float, nullable=True)
    expiration_date = Column(Date, nullable=True)
    usage_limit = Column(Integer, nullable=True)
    usage_count = Column(Integer, nullable=False, default=0)
    applicable_products = Column(JSON, nullable=True)
    excluded_products = Column(JSON, nullable=True)
    status = Column(SQLEnum(PromoCodeStatus), default=PromoCodeStatus.ACTIVE, nullable=False)
    description = Column(String(255), nullable=True)
    created_at = Column(TIMESTAMP, default=utcnow)


# --- Event stream ---

class OutboxEvent(Base):
    __tablename__ = "outbox_events"

    id = Column(Integer, primary_key=True, index=True)

    # Status to track if the event has been sent
    status = Column(String(20), default="PENDING", nullable=False)
    topic = Column(String(255), nullable=False)
    payload = Column(Text, nullable=False)

    created_at = Column(TIMESTAMP, default=utcnow)

    # The poller filters on status
    __table_args__ = (
        Index('ix_outbox_events_status', 'status'),
    )
