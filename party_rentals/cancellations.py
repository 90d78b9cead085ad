"""
Customer cancellation requests and their admin review.

A request is created `pending` with the refund frozen at request time, then an
admin approves or denies it. Approval cancels the booking first and only then
tries the card refund, so a payment provider outage never blocks a cancellation.
Emails are best effort; a failed send never undoes a committed state change.
"""
from dataclasses import asdict
import datetime
import logging
from typing import Optional

from sqlalchemy.orm import Session

from . import crud, lifecycle, models, schemas
from .availability import AvailabilitySnapshot, Rental, find_free_unit, unit_is_free
from .config import settings
from .exceptions import ConflictError, EmailMismatchError, NotFoundError, RefundFailedError, ValidationError
from .notifications import notify_safely
from .pricing import booking_horizon, candidate_options, find_option, get_pricing_options, suggest_dates
from .refunds import (
    DEFAULT_POLICY, OVERRIDE_LABELS, RefundPolicy, calculate_refund, describe_rules, refund_for_days,
)

logger = logging.getLogger("party_rentals")

ATTENTION_TYPE = "cancellation_request"

RESCHEDULE_LEAD_DAYS = 2
RESCHEDULE_WINDOW_DAYS = 45
RESCHEDULE_SUGGESTIONS = 5

# Our-fault, goodwill and admin-initiated cancellations are set by an admin on review
CUSTOMER_CANCELLATION_TYPES = frozenset({
    models.CancellationType.CUSTOMER_REQUEST,
    models.CancellationType.WEATHER,
    models.CancellationType.EMERGENCY,
})


def attention_priority(days_until_event: int) -> models.AttentionPriority:
    if days_until_event <= 2:
        return models.AttentionPriority.URGENT
    if days_until_event <= 6:
        return models.AttentionPriority.HIGH
    return models.AttentionPriority.MEDIUM


def policy_read(policy: RefundPolicy) -> schemas.CancellationPolicyRead:
    return schemas.CancellationPolicyRead(
        name=policy.name,
        rules=[schemas.PolicyRule(**asdict(rule)) for rule in policy.ordered_rules()],
        weather_full_refund=policy.weather_full_refund,
        allow_reschedule=policy.allow_reschedule,
        processing_fee=policy.processing_fee,
        summary=describe_rules(policy),
    )


def _append_note(existing: Optional[str], note: str) -> str:
    return f"{existing or ''}\n{note}".strip()


def _pick_window(requested: Optional[str], current: Optional[str], allowed, kind: str) -> str:
    values = [w.value for w in allowed]
    if requested is not None:
        if requested not in values:
            raise ValidationError(f"Invalid {kind} window for this booking.")
        return requested
    # The old window may not exist on the new date, e.g. moving a weekday rental to a Sunday
    return current if current in values else values[0]


class CancellationService:

    def __init__(self, db: Session, refund_gateway, notifier, today: datetime.date,
                 now: Optional[datetime.datetime] = None):
        self.db = db
        self.refund_gateway = refund_gateway
        self.notifier = notifier
        self.today = today
        self.now = now or datetime.datetime.combine(today, datetime.time())

    # --- Helpers ---

    def active_policy(self) -> RefundPolicy:
        db_policy = crud.get_active_policy(self.db)
        if db_policy is None:
            return DEFAULT_POLICY
        return RefundPolicy.from_model(db_policy)

    def _customer_booking(self, booking_id: int, email: str) -> models.Booking:
        booking = crud.get_booking(self.db, booking_id)
        if booking is None:
            raise NotFoundError("Booking not found")
        if booking.customer is None or booking.customer.email.lower() != email.strip().lower():
            raise EmailMismatchError("Email does not match booking")
        return booking

    def _check_cancellable(self, booking: models.Booking) -> None:
        status = models.BookingStatus(booking.status)
        if status == models.BookingStatus.CANCELLED:
            raise ValidationError("This booking has already been cancelled")
        if status == models.BookingStatus.COMPLETED:
            raise ValidationError("Completed bookings cannot be cancelled")
        if crud.has_pending_cancellation_request(self.db, booking.id):
            raise ValidationError("A cancellation request is already pending for this booking")
        if not lifecycle.can_transition_booking(status, models.BookingStatus.PENDING_CANCELLATION):
            raise ValidationError("This rental is already underway and can no longer be cancelled online")

    def _email_data(self, booking: models.Booking, **extra) -> dict:
        data = {
            "customer_name": booking.customer.first_name if booking.customer else "there",
            "booking_number": booking.booking_number,
            "product_name": booking.product_name,
            "event_date": f"{booking.event_date:%A, %B} {booking.event_date.day}",
        }
        data.update(extra)
        return data

    def _customer_email(self, booking: models.Booking) -> Optional[str]:
        return booking.customer.email if booking.customer else None

    def _snapshot_without(self, booking: models.Booking, start: datetime.date,
                          end: datetime.date) -> AvailabilitySnapshot:
        # Widen by a day each side for Sunday deliveries and weekend pickups
        snapshot = crud.load_availability_snapshot(
            self.db, booking.product_id, start - datetime.timedelta(days=1), end + datetime.timedelta(days=2)
        )
        # The booking being moved does not block its own new dates
        return AvailabilitySnapshot(
            bookings=tuple(b for b in snapshot.bookings if b.booking_id != booking.id),
            blackouts=snapshot.blackouts,
        )

    def _reschedule_dates(self, booking: models.Booking) -> list[datetime.date]:
        product = crud.get_product(self.db, booking.product_id)
        if product is None:
            return []
        rental = Rental.from_product(product)
        start = self.today + datetime.timedelta(days=RESCHEDULE_LEAD_DAYS)
        end = self.today + datetime.timedelta(days=RESCHEDULE_WINDOW_DAYS)
        snapshot = self._snapshot_without(booking, start, end)
        return suggest_dates(rental, snapshot, self.now, start, end, limit=RESCHEDULE_SUGGESTIONS)

    # --- Customer side ---

    def preview(self, booking_id: int, email: str) -> schemas.CancellationPreview:
        booking = self._customer_booking(booking_id, email)
        self._check_cancellable(booking)

        policy = self.active_policy()
        amount_paid = booking.amount_paid or 0.0
        refund = calculate_refund(
            booking.event_date, amount_paid, policy, models.CancellationType.CUSTOMER_REQUEST, self.today
        )

        reschedule_dates = self._reschedule_dates(booking) if policy.allow_reschedule else []

        return schemas.CancellationPreview(
            booking=schemas.BookingSummary.model_validate(booking),
            refund=schemas.RefundBreakdown(
                refund_amount=refund.refund_amount,
                refund_percent=refund.refund_percent,
                processing_fee=refund.processing_fee,
                days_until_event=refund.days_until_event,
                policy_label=refund.policy_label,
                is_eligible=refund.is_eligible,
                amount_paid=amount_paid,
                has_payment=amount_paid > 0,
            ),
            policy=policy_read(policy),
            reschedule_dates=reschedule_dates,
        )

    def request_cancellation(
            self,
            booking_id: int,
            email: str,
            reason: Optional[str] = None,
            cancellation_type: models.CancellationType = models.CancellationType.CUSTOMER_REQUEST,
            declined_reschedule: bool = False,
    ) -> models.CancellationRequest:
        """
        Opens a pending request and moves the booking to pending_cancellation.

        The pending-request check is a read immediately before the insert; two requests
        racing each other could both pass it.
        """
        if cancellation_type not in CUSTOMER_CANCELLATION_TYPES:
            raise ValidationError(
                f"Cancellation type '{models.CancellationType(cancellation_type).value}' cannot be requested by a customer"
            )
        booking = self._customer_booking(booking_id, email)
        self._check_cancellable(booking)

        policy = self.active_policy()
        amount_paid = booking.amount_paid or 0.0
        refund = calculate_refund(booking.event_date, amount_paid, policy, cancellation_type, self.today)

        request = models.CancellationRequest(
            booking_id=booking.id,
            status=models.CancellationRequestStatus.PENDING,
            reason=reason,
            cancellation_type=cancellation_type,
            days_before_event=refund.days_until_event,
            policy_refund_percent=refund.refund_percent,
            original_paid=amount_paid,
            suggested_refund=refund.refund_amount,
            processing_fee=refund.processing_fee,
        )
        self.db.add(request)

        customer_name = booking.customer.full_name or "Customer"
        crud.create_attention_item(
            self.db,
            booking_id=booking.id,
            attention_type=ATTENTION_TYPE,
            priority=attention_priority(refund.days_until_event),
            title=f"Cancellation Request - {customer_name}",
            description=(
                f"{customer_name} requested to cancel their {booking.product_name} rental for "
                f"{booking.event_date.isoformat()}. Suggested refund: ${refund.refund_amount:.2f}"
            ),
        )

        lifecycle.transition_booking(booking, models.BookingStatus.PENDING_CANCELLATION)
        declined = " (declined reschedule)" if declined_reschedule else ""
        booking.internal_notes = _append_note(
            booking.internal_notes,
            f"Cancellation requested on {self.today.isoformat()}{declined}. Reason: {reason or 'Not provided'}",
        )
        crud.add_outbox_event(self.db, "booking.cancellation_requested", booking,
                              suggested_refund=refund.refund_amount)

        self.db.commit()
        self.db.refresh(request)
        logger.info(
            f"Cancellation request {request.id} opened for booking {booking.booking_number} "
            f"({refund.days_until_event} days out, suggested refund ${refund.refund_amount:.2f})"
        )

        notify_safely(
            self.notifier, "cancellation_received", self._customer_email(booking),
            self._email_data(booking, suggested_refund=refund.refund_amount),
        )
        notify_safely(
            self.notifier, "admin_cancellation_alert", settings.ADMIN_NOTIFY_EMAIL,
            self._email_data(
                booking,
                customer_name=customer_name,
                customer_email=self._customer_email(booking) or "unknown",
                suggested_refund=refund.refund_amount,
                reason=reason,
                review_url=f"{settings.PUBLIC_BASE_URL}/admin/cancellations",
            ),
        )
        return request

    def reschedule_booking(
            self,
            booking_id: int,
            email: str,
            new_event_date: datetime.date,
            delivery_window: Optional[str] = None,
            pickup_window: Optional[str] = None,
    ) -> models.Booking:
        """
        Moves a booking to another open date at the price already agreed.

        The booking keeps its type when the new date offers it; otherwise it takes the
        first option for that weekday. A booking waiting on a cancellation request goes
        back to confirmed and the request is closed.
        """
        booking = self._customer_booking(booking_id, email)
        status = models.BookingStatus(booking.status)
        if status not in (models.BookingStatus.CONFIRMED, models.BookingStatus.PENDING_CANCELLATION):
            raise ValidationError("This booking cannot be rescheduled")
        if not self.active_policy().allow_reschedule:
            raise ValidationError("Rescheduling is not available under the current cancellation policy")
        if new_event_date == booking.event_date:
            raise ValidationError("The booking is already on that date")
        earliest = self.today + datetime.timedelta(days=RESCHEDULE_LEAD_DAYS)
        if new_event_date < earliest or not booking_horizon(self.now).contains(new_event_date):
            raise ValidationError(
                f"New event date must be between {earliest.isoformat()} and the end of the booking window"
            )

        product = crud.get_product(self.db, booking.product_id)
        if product is None:
            raise NotFoundError("Product not found")
        rental = Rental.from_product(product)
        if not candidate_options(rental, new_event_date):
            raise ValidationError(f"This rental is not available for {new_event_date.strftime('%A')} events.")

        # Re-checked here even if the date came from the preview suggestions
        snapshot = self._snapshot_without(booking, new_event_date, new_event_date)
        result = get_pricing_options(rental, new_event_date, snapshot, self.now)
        if not result.available:
            raise ConflictError(result.reason or "Sorry, this date is no longer available. Please choose another date.")
        option = find_option(result, models.BookingType(booking.booking_type)) or result.options[0]

        # Stay on the same unit when it is free
        if booking.unit_id in rental.unit_ids and unit_is_free(
                rental, booking.unit_id, option.delivery_date, option.pickup_date, snapshot, booking.id):
            unit_id = booking.unit_id
        else:
            unit_id = find_free_unit(rental, option.delivery_date, option.pickup_date, snapshot,
                                     exclude_booking_id=booking.id)
        if unit_id is None:
            raise ConflictError("Sorry, this date is no longer available. Please choose another date.")

        delivery = _pick_window(delivery_window, booking.delivery_window, option.delivery_windows, "delivery")
        pickup = _pick_window(pickup_window, booking.pickup_window, option.pickup_windows, "pickup")

        previous_date = booking.event_date
        booking.event_date = new_event_date
        booking.booking_type = option.booking_type
        booking.delivery_date = option.delivery_date
        booking.pickup_date = option.pickup_date
        booking.unit_id = unit_id
        booking.delivery_window = delivery
        booking.pickup_window = pickup

        if status == models.BookingStatus.PENDING_CANCELLATION:
            self._close_request_for_reschedule(booking, new_event_date)

        booking.internal_notes = _append_note(
            booking.internal_notes,
            f"Rescheduled on {self.today.isoformat()} from {previous_date.isoformat()} to {new_event_date.isoformat()}",
        )
        crud.add_outbox_event(self.db, "booking.rescheduled", booking, previous_event_date=previous_date.isoformat())
        self.db.commit()
        self.db.refresh(booking)
        logger.info(f"Booking {booking.booking_number} rescheduled from {previous_date} to {new_event_date} (unit {unit_id})")

        notify_safely(
            self.notifier, "booking_rescheduled", self._customer_email(booking),
            self._email_data(
                booking,
                previous_event_date=f"{previous_date:%A, %B} {previous_date.day}",
                delivery_window=delivery,
            ),
        )
        return booking

    def _close_request_for_reschedule(self, booking: models.Booking, new_event_date: datetime.date) -> None:
        note = f"Customer rescheduled to {new_event_date.isoformat()}"
        request = crud.get_pending_cancellation_request(self.db, booking.id)
        if request is not None:
            lifecycle.transition_request(request, models.CancellationRequestStatus.DENIED)
            request.admin_notes = note
            request.reviewed_at = models.utcnow()
        crud.resolve_attention_items(self.db, booking.id, ATTENTION_TYPE, "rescheduled", note)
        lifecycle.transition_booking(booking, models.BookingStatus.CONFIRMED)

    # --- Admin side ---

    def list_requests(self, status: Optional[models.CancellationRequestStatus] = None, limit: int = 50):
        return crud.list_cancellation_requests(self.db, status=status, limit=limit)

    def review(self, request_id: int, review: schemas.CancellationReview) -> schemas.ReviewResult:
        request = crud.get_cancellation_request(self.db, request_id)
        if request is None:
            raise NotFoundError("Cancellation request not found")
        if request.booking is None:
            raise NotFoundError("Booking not found")

        if review.action == models.ReviewAction.APPROVE:
            return self.approve(request, review)
        if review.action == models.ReviewAction.DENY:
            return self.deny(request, review.admin_notes)
        if review.action == models.ReviewAction.REFUND:
            return self.refund(request, review.refund_amount, review.admin_notes)
        return self.mark_refunded(request, review.refund_method, review.admin_notes)

    def approve(self, request: models.CancellationRequest, review: schemas.CancellationReview) -> schemas.ReviewResult:
        booking = request.booking
        if models.CancellationRequestStatus(request.status) != models.CancellationRequestStatus.PENDING:
            raise ValidationError(f"Request has already been {models.CancellationRequestStatus(request.status).value}")

        override = review.override_reason
        notes = review.admin_notes or ""
        if override is not None and override in OVERRIDE_LABELS:
            notes = f"[Override: {OVERRIDE_LABELS[override]}] {notes}".strip()

        if review.refund_amount is not None:
            amount = review.refund_amount
        elif override is not None and override in OVERRIDE_LABELS:
            amount = refund_for_days(
                request.days_before_event, request.original_paid, self.active_policy(), override
            ).refund_amount
        else:
            amount = request.suggested_refund or 0.0
        amount = round(amount, 2)
        if amount > (request.original_paid or 0) + 0.005:
            raise ValidationError("Refund amount exceeds the amount paid")

        method = review.refund_method or models.RefundMethod.STRIPE
        now = models.utcnow()

        lifecycle.transition_request(request, models.CancellationRequestStatus.APPROVED)
        request.approved_refund = amount
        request.refund_method = method
        request.admin_notes = notes or None
        request.reviewed_at = now

        crud.resolve_attention_items(
            self.db, booking.id, ATTENTION_TYPE, "cancellation_approved",
            notes or f"Cancellation approved. Refund: ${amount:.2f}",
        )

        lifecycle.transition_booking(booking, models.BookingStatus.CANCELLED)
        booking.cancelled_at = now
        booking.cancelled_by = "weather" if override == models.CancellationType.WEATHER else "customer"
        booking.cancellation_reason = request.reason or "Customer request"
        booking.refund_amount = amount
        booking.refund_status = models.RefundStatus.PENDING if amount > 0 else models.RefundStatus.NONE
        crud.add_outbox_event(self.db, "booking.cancelled", booking, refund_amount=amount)

        # The cancellation stands even if the refund below fails
        self.db.commit()
        logger.info(f"Cancellation request {request.id} approved for {booking.booking_number} (${amount:.2f} via {method.value})")

        if method == models.RefundMethod.STRIPE and amount > 0:
            if not booking.stripe_payment_intent_id:
                message = (
                    f"Cancellation approved. No card payment on file; "
                    f"${amount:.2f} refund must be sent manually."
                )
                self._send_approved(booking, amount, method)
                return schemas.ReviewResult(
                    status=request.status, message=message, refund_pending=True,
                )

            result = self.refund_gateway.process_refund(
                booking.stripe_payment_intent_id, amount, f"Booking {booking.booking_number} cancellation"
            )
            if result.success:
                self._record_refund(request, booking, result.refund_id)
                self.db.commit()
                notify_safely(
                    self.notifier, "cancellation_refunded", self._customer_email(booking),
                    self._email_data(booking, refund_amount=amount, refund_method=method.value),
                )
                return schemas.ReviewResult(
                    status=request.status,
                    message=f"Cancellation approved and ${amount:.2f} refunded to card",
                    refund_id=result.refund_id,
                )

            logger.warning(f"Refund for request {request.id} failed after approval: {result.error}")
            self._send_approved(booking, amount, method)
            return schemas.ReviewResult(
                status=request.status,
                message=f"Cancellation approved. Stripe refund failed: {result.error}. Retry the refund or send it manually.",
                refund_error=result.error,
                refund_pending=True,
            )

        self._send_approved(booking, amount, method)
        if amount > 0:
            message = f"Cancellation approved. ${amount:.2f} refund pending via {method.value}."
        else:
            message = "Cancellation approved. No refund applicable."
        return schemas.ReviewResult(status=request.status, message=message, refund_pending=amount > 0)

    def deny(self, request: models.CancellationRequest, admin_notes: Optional[str] = None) -> schemas.ReviewResult:
        booking = request.booking
        lifecycle.transition_request(request, models.CancellationRequestStatus.DENIED)
        request.admin_notes = admin_notes
        request.reviewed_at = models.utcnow()

        crud.resolve_attention_items(
            self.db, booking.id, ATTENTION_TYPE, "cancellation_denied", admin_notes or "Cancellation denied",
        )

        lifecycle.transition_booking(booking, models.BookingStatus.CONFIRMED)
        booking.internal_notes = _append_note(
            booking.internal_notes,
            f"Cancellation request denied on {self.today.isoformat()}. {admin_notes or ''}".strip(),
        )
        crud.add_outbox_event(self.db, "booking.cancellation_denied", booking)
        self.db.commit()
        logger.info(f"Cancellation request {request.id} denied for {booking.booking_number}")

        notify_safely(
            self.notifier, "cancellation_denied", self._customer_email(booking),
            self._email_data(booking, reason=admin_notes),
        )
        return schemas.ReviewResult(status=request.status, message="Cancellation request denied")

    def refund(self, request: models.CancellationRequest, amount: Optional[float] = None,
               admin_notes: Optional[str] = None) -> schemas.ReviewResult:
        """Retries the card refund on an approved request. Failure leaves it approved."""
        booking = request.booking
        if models.CancellationRequestStatus(request.status) != models.CancellationRequestStatus.APPROVED:
            raise ValidationError("Can only refund approved requests")

        amount = round(amount if amount is not None else (request.approved_refund or 0), 2)
        if amount <= 0:
            raise ValidationError("No refund amount specified")
        if not booking.stripe_payment_intent_id:
            raise ValidationError("No payment found to refund. Use mark_refunded for manual refunds.")

        result = self.refund_gateway.process_refund(
            booking.stripe_payment_intent_id, amount, f"Booking {booking.booking_number} cancellation"
        )
        if not result.success:
            logger.error(f"Refund retry for request {request.id} failed: {result.error}")
            raise RefundFailedError(result.error or "Refund failed")

        request.approved_refund = amount
        request.refund_method = models.RefundMethod.STRIPE
        if admin_notes:
            request.admin_notes = _append_note(request.admin_notes, admin_notes)
        booking.refund_amount = amount
        self._record_refund(request, booking, result.refund_id)
        self.db.commit()

        notify_safely(
            self.notifier, "cancellation_refunded", self._customer_email(booking),
            self._email_data(booking, refund_amount=amount, refund_method=models.RefundMethod.STRIPE.value),
        )
        return schemas.ReviewResult(
            status=request.status,
            message=f"Refund of ${amount:.2f} processed successfully",
            refund_id=result.refund_id,
        )

    def mark_refunded(self, request: models.CancellationRequest,
                      refund_method: Optional[models.RefundMethod] = None,
                      admin_notes: Optional[str] = None) -> schemas.ReviewResult:
        """Bookkeeping for refunds sent outside the card processor. Never calls the gateway."""
        booking = request.booking
        if models.CancellationRequestStatus(request.status) != models.CancellationRequestStatus.APPROVED:
            raise ValidationError("Can only mark approved requests as refunded")

        method = refund_method or request.refund_method
        method_label = models.RefundMethod(method).value if method else "manual"
        amount = request.approved_refund or 0.0
        now = models.utcnow()

        lifecycle.transition_request(request, models.CancellationRequestStatus.REFUNDED)
        if method:
            request.refund_method = method
        request.refund_processed_at = now
        note = f"Refund sent via {method_label}. {admin_notes or ''}".strip()
        request.admin_notes = _append_note(request.admin_notes, note)

        booking.refund_status = models.RefundStatus.PROCESSED
        booking.refund_processed_at = now
        crud.add_outbox_event(self.db, "booking.refunded", booking, refund_amount=amount, refund_method=method_label)
        self.db.commit()
        logger.info(f"Request {request.id} marked refunded via {method_label}")

        notify_safely(
            self.notifier, "cancellation_refunded", self._customer_email(booking),
            self._email_data(booking, refund_amount=amount, refund_method=method_label),
        )
        return schemas.ReviewResult(status=request.status, message=f"Marked as refunded via {method_label}")

    def _record_refund(self, request: models.CancellationRequest, booking: models.Booking, refund_id: str) -> None:
        now = models.utcnow()
        lifecycle.transition_request(request, models.CancellationRequestStatus.REFUNDED)
        request.stripe_refund_id = refund_id
        request.refund_processed_at = now
        booking.refund_status = models.RefundStatus.PROCESSED
        booking.refund_processed_at = now
        booking.stripe_refund_id = refund_id
        crud.add_outbox_event(self.db, "booking.refunded", booking, refund_amount=booking.refund_amount,
                              refund_id=refund_id)

    def _send_approved(self, booking: models.Booking, amount: float, method: models.RefundMethod) -> None:
        notify_safely(
            self.notifier, "cancellation_approved", self._customer_email(booking),
            self._email_data(booking, refund_amount=amount, refund_method=method.value),
        )
