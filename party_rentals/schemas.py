from pydantic import BaseModel, EmailStr, Field, model_validator
from typing import Optional
import datetime

from .models import (
    AttentionPriority, AttentionStatus, BookingStatus, BookingType, CancellationRequestStatus,
    CancellationType, RefundMethod, RefundStatus, ReviewAction,
)


# --- Catalog ---

class ProductRead(BaseModel):
    id: int
    slug: str
    name: str
    description: Optional[str] = None
    daily_price: float
    weekend_price: float
    sunday_price: float
    same_day_pickup_only: bool
    available_booking_types: Optional[list[BookingType]] = None

    class Config:
        from_attributes = True


# --- Pricing ---

class TimeWindowRead(BaseModel):
    label: str
    value: str

    class Config:
        from_attributes = True


class PricingOptionRead(BaseModel):
    booking_type: BookingType
    label: str
    description: str
    price: float
    delivery_day: str
    pickup_day: str
    delivery_date: datetime.date
    pickup_date: datetime.date
    delivery_windows: list[TimeWindowRead]
    pickup_windows: list[TimeWindowRead]
    recommended: bool = False
    badge: Optional[str] = None

    class Config:
        from_attributes = True


class PricingResultRead(BaseModel):
    available: bool
    reason: Optional[str] = None
    options: list[PricingOptionRead] = []

    class Config:
        from_attributes = True


# --- Bookings ---

class CustomerIn(BaseModel):
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    email: EmailStr
    phone: Optional[str] = Field(default=None, max_length=40)


class BookingCreate(BaseModel):
    product_id: int
    event_date: datetime.date
    booking_type: BookingType
    delivery_window: str
    pickup_window: str
    customer: CustomerIn
    address: str = Field(min_length=3, max_length=255)
    city: str = Field(min_length=1, max_length=100)
    notes: Optional[str] = None
    promo_code: Optional[str] = None


class BookingRead(BaseModel):
    id: int
    booking_number: str
    product_id: int
    unit_id: int
    product_name: str
    event_date: datetime.date
    booking_type: BookingType
    delivery_date: datetime.date
    pickup_date: datetime.date
    delivery_window: str
    pickup_window: str
    address: str
    city: str
    subtotal: float
    discount_amount: float
    deposit_amount: float
    amount_paid: float
    balance_due: float
    status: BookingStatus
    refund_status: RefundStatus
    refund_amount: Optional[float] = None
    created_at: datetime.datetime

    class Config:
        from_attributes = True


class BookingCheckout(BaseModel):
    booking: BookingRead
    checkout_url: str


class BookingStatusUpdate(BaseModel):
    status: BookingStatus


class PaymentCreate(BaseModel):
    amount: float = Field(gt=0)
    payment_reference: Optional[str] = None


# --- Blackouts ---

class BlackoutDateCreate(BaseModel):
    start_date: datetime.date
    end_date: datetime.date
    product_id: Optional[int] = None
    unit_id: Optional[int] = None
    reason: Optional[str] = Field(default=None, max_length=255)

    @model_validator(mode="after")
    def check_range(self):
        if self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class BlackoutDateRead(BlackoutDateCreate):
    id: int
    created_at: datetime.datetime

    class Config:
        from_attributes = True


# --- Cancellation policy ---

class PolicyRule(BaseModel):
    min_days: int = Field(ge=0)
    max_days: Optional[int] = Field(default=None, ge=0)
    refund_percent: int = Field(ge=0, le=100)
    label: str


class CancellationPolicyUpdate(BaseModel):
    name: str = "Standard Policy"
    rules: list[PolicyRule] = Field(min_length=1)
    weather_full_refund: bool = True
    allow_reschedule: bool = True
    processing_fee: float = Field(default=0, ge=0)


class CancellationPolicyRead(BaseModel):
    name: str
    rules: list[PolicyRule]
    weather_full_refund: bool
    allow_reschedule: bool
    processing_fee: float
    summary: list[str] = []


# --- Cancellations ---

class RefundBreakdown(BaseModel):
    refund_amount: float
    refund_percent: int
    processing_fee: float
    days_until_event: int
    policy_label: str
    is_eligible: bool
    amount_paid: float
    has_payment: bool


class BookingSummary(BaseModel):
    id: int
    booking_number: str
    product_name: str
    event_date: datetime.date
    status: BookingStatus
    delivery_window: str

    class Config:
        from_attributes = True


class CancellationPreview(BaseModel):
    booking: BookingSummary
    refund: RefundBreakdown
    policy: CancellationPolicyRead
    reschedule_dates: list[datetime.date] = []


class CancellationCreate(BaseModel):
    booking_id: int
    email: EmailStr
    reason: Optional[str] = Field(default=None, max_length=2000)
    cancellation_type: CancellationType = CancellationType.CUSTOMER_REQUEST
    declined_reschedule: bool = False


class RescheduleCreate(BaseModel):
    email: EmailStr
    new_event_date: datetime.date
    # Kept from the booking when omitted
    delivery_window: Optional[str] = None
    pickup_window: Optional[str] = None


class CancellationRequestRead(BaseModel):
    id: int
    booking_id: int
    status: CancellationRequestStatus
    reason: Optional[str] = None
    cancellation_type: CancellationType
    days_before_event: int
    policy_refund_percent: int
    original_paid: float
    suggested_refund: float
    processing_fee: float
    approved_refund: Optional[float] = None
    refund_method: Optional[RefundMethod] = None
    admin_notes: Optional[str] = None
    reviewed_at: Optional[datetime.datetime] = None
    stripe_refund_id: Optional[str] = None
    refund_processed_at: Optional[datetime.datetime] = None
    created_at: datetime.datetime

    class Config:
        from_attributes = True


class CancellationReview(BaseModel):
    action: ReviewAction
    refund_amount: Optional[float] = Field(default=None, ge=0)
    refund_method: Optional[RefundMethod] = None
    override_reason: Optional[CancellationType] = None
    admin_notes: Optional[str] = None


class ReviewResult(BaseModel):
    status: CancellationRequestStatus
    message: str
    refund_id: Optional[str] = None
    refund_error: Optional[str] = None
    refund_pending: bool = False

    class Config:
        from_attributes = True


# --- Admin dashboard ---

class AttentionItemRead(BaseModel):
    id: int
    booking_id: int
    attention_type: str
    priority: AttentionPriority
    status: AttentionStatus
    title: str
    description: Optional[str] = None
    resolution_action: Optional[str] = None
    resolved_at: Optional[datetime.datetime] = None
    created_at: datetime.datetime

    class Config:
        from_attributes = True


# --- Promotions ---

class PromoValidateRequest(BaseModel):
    code: str = Field(min_length=1, max_length=50)
    order_amount: float = Field(gt=0)
    product_id: Optional[int] = None


class PromoValidateResponse(BaseModel):
    valid: bool
    code: Optional[str] = None
    discount: float = 0
    error: Optional[str] = None
