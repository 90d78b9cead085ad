"""
Date-range availability checks over a read-only snapshot of bookings and blackouts.

Nothing here touches the database; `crud.load_availability_snapshot` builds the
snapshot and callers pass it in.
"""
from dataclasses import dataclass, field
import datetime
from typing import Optional

from .models import BookingStatus, BookingType


@dataclass(frozen=True)
class Rental:
    product_id: int
    name: str
    daily_price: float
    weekend_price: float
    sunday_price: float
    unit_ids: tuple[int, ...]
    same_day_pickup_only: bool = False
    # None means every booking type is offered
    available_booking_types: Optional[tuple[BookingType, ...]] = None

    @classmethod
    def from_product(cls, product) -> "Rental":
        types = None
        if product.available_booking_types:
            types = tuple(BookingType(t) for t in product.available_booking_types)
        return cls(
            product_id=product.id,
            name=product.name,
            daily_price=product.daily_price,
            weekend_price=product.weekend_price,
            sunday_price=product.sunday_price,
            unit_ids=tuple(u.id for u in product.units if u.is_active),
            same_day_pickup_only=bool(product.same_day_pickup_only),
            available_booking_types=types,
        )

    def price_for(self, booking_type: BookingType) -> float:
        if booking_type == BookingType.WEEKEND:
            return self.weekend_price
        if booking_type == BookingType.SUNDAY:
            return self.sunday_price
        return self.daily_price

    def offers(self, booking_type: BookingType) -> bool:
        return self.available_booking_types is None or booking_type in self.available_booking_types


@dataclass(frozen=True)
class BookedInterval:
    unit_id: int
    start: datetime.date
    end: datetime.date
    status: BookingStatus = BookingStatus.CONFIRMED
    booking_id: Optional[int] = None


@dataclass(frozen=True)
class BlackoutInterval:
    start: datetime.date
    end: datetime.date
    product_id: Optional[int] = None
    unit_id: Optional[int] = None
    reason: Optional[str] = None

    def applies_to(self, product_id: int, unit_id: int) -> bool:
        if self.product_id is None and self.unit_id is None:
            return True
        if self.unit_id is not None:
            return self.unit_id == unit_id
        return self.product_id == product_id


@dataclass(frozen=True)
class AvailabilitySnapshot:
    bookings: tuple[BookedInterval, ...] = field(default_factory=tuple)
    blackouts: tuple[BlackoutInterval, ...] = field(default_factory=tuple)


def intervals_overlap(
        a_start: datetime.date,
        a_end: datetime.date,
        b_start: datetime.date,
        b_end: datetime.date,
) -> bool:
    """
    Inclusive overlap: an interval ending on the day another starts still conflicts,
    since delivery and pickup both occupy the unit on those days.
    """
    return a_start <= b_end and a_end >= b_start


def blackout_for(
        rental: Rental,
        unit_id: int,
        start: datetime.date,
        end: datetime.date,
        snapshot: AvailabilitySnapshot,
) -> Optional[BlackoutInterval]:
    for blackout in snapshot.blackouts:
        if blackout.applies_to(rental.product_id, unit_id) and intervals_overlap(
                blackout.start, blackout.end, start, end):
            return blackout
    return None


def unit_is_free(
        rental: Rental,
        unit_id: int,
        start: datetime.date,
        end: datetime.date,
        snapshot: AvailabilitySnapshot,
        exclude_booking_id: Optional[int] = None,
) -> bool:
    if blackout_for(rental, unit_id, start, end, snapshot) is not None:
        return False

    for booked in snapshot.bookings:
        if booked.unit_id != unit_id or booked.status == BookingStatus.CANCELLED:
            continue
        if exclude_booking_id is not None and booked.booking_id == exclude_booking_id:
            continue
        if intervals_overlap(booked.start, booked.end, start, end):
            return False
    return True


def find_free_unit(
        rental: Rental,
        start: datetime.date,
        end: datetime.date,
        snapshot: AvailabilitySnapshot,
        exclude_booking_id: Optional[int] = None,
) -> Optional[int]:
    """Returns the first unit of the rental that is free for [start, end], or None."""
    for unit_id in rental.unit_ids:
        if unit_is_free(rental, unit_id, start, end, snapshot, exclude_booking_id):
            return unit_id
    return None
