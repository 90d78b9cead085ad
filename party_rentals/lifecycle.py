"""
Allowed status changes for bookings and cancellation requests.

Status columns are never assigned directly outside this module.
"""
from .models import Booking, BookingStatus, CancellationRequest, CancellationRequestStatus
from .exceptions import InvalidTransitionError

BOOKING_TRANSITIONS: dict[BookingStatus, frozenset[BookingStatus]] = {
    BookingStatus.PENDING: frozenset({
        BookingStatus.CONFIRMED,
        BookingStatus.CANCELLED,
        BookingStatus.PENDING_CANCELLATION,
    }),
    BookingStatus.CONFIRMED: frozenset({
        BookingStatus.DELIVERED,
        BookingStatus.CANCELLED,
        BookingStatus.PENDING_CANCELLATION,
    }),
    BookingStatus.DELIVERED: frozenset({BookingStatus.PICKED_UP}),
    BookingStatus.PICKED_UP: frozenset({BookingStatus.COMPLETED}),
    BookingStatus.PENDING_CANCELLATION: frozenset({
        BookingStatus.CANCELLED,
        BookingStatus.CONFIRMED,
    }),
    BookingStatus.COMPLETED: frozenset(),
    BookingStatus.CANCELLED: frozenset(),
}

REQUEST_TRANSITIONS: dict[CancellationRequestStatus, frozenset[CancellationRequestStatus]] = {
    CancellationRequestStatus.PENDING: frozenset({
        CancellationRequestStatus.APPROVED,
        CancellationRequestStatus.DENIED,
    }),
    CancellationRequestStatus.APPROVED: frozenset({CancellationRequestStatus.REFUNDED}),
    CancellationRequestStatus.DENIED: frozenset(),
    CancellationRequestStatus.REFUNDED: frozenset(),
}


def can_transition_booking(current: BookingStatus, target: BookingStatus) -> bool:
    return target in BOOKING_TRANSITIONS[current]


def transition_booking(booking: Booking, target: BookingStatus) -> Booking:
    current = BookingStatus(booking.status)
    if not can_transition_booking(current, target):
        raise InvalidTransitionError(
            f"Booking {booking.booking_number} cannot move from {current.value} to {target.value}."
        )
    booking.status = target
    return booking


def transition_request(request: CancellationRequest, target: CancellationRequestStatus) -> CancellationRequest:
    current = CancellationRequestStatus(request.status)
    if target not in REQUEST_TRANSITIONS[current]:
        raise InvalidTransitionError(f"Request has already been {current.value}.")
    request.status = target
    return request
