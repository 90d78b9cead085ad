"""
Pricing options for a rental on a candidate event date.

Every function here is pure: the current time and the availability snapshot
are passed in by the caller.
"""
from dataclasses import dataclass, field
import datetime
from enum import Enum
from typing import Optional
from zoneinfo import ZoneInfo

from .availability import AvailabilitySnapshot, Rental, blackout_for, find_free_unit
from .config import settings
from .models import BookingType


class DayClass(str, Enum):
    WEEKDAY = "weekday"
    SATURDAY = "saturday"
    SUNDAY = "sunday"


@dataclass(frozen=True)
class TimeWindow:
    label: str
    value: str


# --- Operational schedule ---

DELIVERY_WINDOWS = (
    TimeWindow("8-11 AM", "morning"),
    TimeWindow("11 AM-2 PM", "midday"),
    TimeWindow("2-5 PM", "afternoon"),
)

# Sunday events are delivered the evening before
SATURDAY_EVENING_WINDOWS = (
    TimeWindow("5-7 PM (Saturday)", "saturday-evening"),
)

SAME_DAY_PICKUP_WINDOWS = (
    TimeWindow("6-8 PM", "evening"),
)

NEXT_MORNING_PICKUP_WINDOWS = (
    TimeWindow("By 10 AM (next day)", "next-morning"),
)

MONDAY_PICKUP_WINDOWS = (
    TimeWindow("By 10 AM (Monday)", "monday-morning"),
    TimeWindow("2-5 PM (Monday)", "monday-afternoon"),
)


@dataclass
class PricingOption:
    booking_type: BookingType
    label: str
    description: str
    price: float
    delivery_day: str
    pickup_day: str
    delivery_date: datetime.date
    pickup_date: datetime.date
    delivery_windows: tuple[TimeWindow, ...]
    pickup_windows: tuple[TimeWindow, ...]
    recommended: bool = False
    badge: Optional[str] = None


@dataclass
class PricingResult:
    available: bool
    options: list[PricingOption] = field(default_factory=list)
    reason: Optional[str] = None


@dataclass(frozen=True)
class BookingHorizon:
    earliest: datetime.date
    latest: datetime.date

    def contains(self, day: datetime.date) -> bool:
        return self.earliest <= day <= self.latest


def classify(event_date: datetime.date) -> DayClass:
    weekday = event_date.weekday()
    if weekday == 5:
        return DayClass.SATURDAY
    if weekday == 6:
        return DayClass.SUNDAY
    return DayClass.WEEKDAY


def delivery_date(event_date: datetime.date, booking_type: BookingType) -> datetime.date:
    """No Sunday deliveries: Sunday-only rentals go out on Saturday."""
    if booking_type == BookingType.SUNDAY:
        return event_date - datetime.timedelta(days=1)
    return event_date


def pickup_date(event_date: datetime.date, booking_type: BookingType) -> datetime.date:
    if booking_type == BookingType.WEEKEND:
        # Saturday event, Monday pickup
        return event_date + datetime.timedelta(days=2)
    if booking_type == BookingType.SUNDAY:
        return event_date + datetime.timedelta(days=1)
    return event_date


def local_now(now: datetime.datetime) -> datetime.datetime:
    """Naive datetimes are taken to already be in the business timezone."""
    if now.tzinfo is None:
        return now
    return now.astimezone(ZoneInfo(settings.BUSINESS_TIMEZONE)).replace(tzinfo=None)


def booking_horizon(
        now: datetime.datetime,
        cutoff_hour: Optional[int] = None,
        horizon_days: Optional[int] = None,
) -> BookingHorizon:
    """
    Tomorrow is bookable until the daily cutoff (noon by default); after that
    the earliest event date is the day after tomorrow.
    """
    cutoff_hour = settings.BOOKING_CUTOFF_HOUR if cutoff_hour is None else cutoff_hour
    horizon_days = settings.BOOKING_HORIZON_DAYS if horizon_days is None else horizon_days

    local = local_now(now)
    today = local.date()
    lead_days = 2 if local.hour >= cutoff_hour else 1
    return BookingHorizon(
        earliest=today + datetime.timedelta(days=lead_days),
        latest=today + datetime.timedelta(days=horizon_days),
    )


def _daily_option(rental: Rental, event_date: datetime.date) -> PricingOption:
    day_name = event_date.strftime("%A")
    if rental.same_day_pickup_only:
        pickup_day, pickup_windows = day_name, SAME_DAY_PICKUP_WINDOWS
        description = "Single day rental, picked up the same evening"
    else:
        next_day = event_date + datetime.timedelta(days=1)
        pickup_day, pickup_windows = next_day.strftime("%A"), NEXT_MORNING_PICKUP_WINDOWS
        description = "Single day rental, picked up the next morning"

    return PricingOption(
        booking_type=BookingType.DAILY,
        label=f"{day_name} only" if classify(event_date) == DayClass.SATURDAY else f"{day_name} rental",
        description=description,
        price=rental.daily_price,
        delivery_day=day_name,
        pickup_day=pickup_day,
        delivery_date=delivery_date(event_date, BookingType.DAILY),
        pickup_date=pickup_date(event_date, BookingType.DAILY),
        delivery_windows=DELIVERY_WINDOWS,
        pickup_windows=pickup_windows,
    )


def _weekend_option(rental: Rental, event_date: datetime.date, upsell_threshold: float) -> PricingOption:
    # Upsell flag depends only on the price gap, never on whether daily is bookable
    recommended = (rental.weekend_price - rental.daily_price) < upsell_threshold
    return PricingOption(
        booking_type=BookingType.WEEKEND,
        label="Full weekend",
        description="Keep it Saturday and Sunday, pickup Monday",
        price=rental.weekend_price,
        delivery_day="Saturday",
        pickup_day="Monday",
        delivery_date=delivery_date(event_date, BookingType.WEEKEND),
        pickup_date=pickup_date(event_date, BookingType.WEEKEND),
        delivery_windows=DELIVERY_WINDOWS,
        pickup_windows=MONDAY_PICKUP_WINDOWS,
        recommended=recommended,
        badge="Best value" if recommended else None,
    )


def _sunday_option(rental: Rental, event_date: datetime.date) -> PricingOption:
    return PricingOption(
        booking_type=BookingType.SUNDAY,
        label="Sunday only",
        description="Delivered Saturday 5-7 PM, pickup Monday",
        price=rental.sunday_price,
        delivery_day="Saturday",
        pickup_day="Monday",
        delivery_date=delivery_date(event_date, BookingType.SUNDAY),
        pickup_date=pickup_date(event_date, BookingType.SUNDAY),
        delivery_windows=SATURDAY_EVENING_WINDOWS,
        pickup_windows=MONDAY_PICKUP_WINDOWS,
    )


def candidate_options(
        rental: Rental,
        event_date: datetime.date,
        upsell_threshold: Optional[float] = None,
) -> list[PricingOption]:
    """
    Options for the weekday of `event_date`, before availability is considered.
    The base option always comes first so nobody is upgraded by default.
    """
    if upsell_threshold is None:
        upsell_threshold = settings.WEEKEND_UPSELL_THRESHOLD

    day_class = classify(event_date)
    if day_class == DayClass.SUNDAY:
        options = [_sunday_option(rental, event_date)]
    elif day_class == DayClass.SATURDAY:
        options = [_daily_option(rental, event_date), _weekend_option(rental, event_date, upsell_threshold)]
    else:
        options = [_daily_option(rental, event_date)]

    return [o for o in options if rental.offers(o.booking_type)]


def get_pricing_options(
        rental: Rental,
        event_date: datetime.date,
        snapshot: AvailabilitySnapshot,
        now: datetime.datetime,
        upsell_threshold: Optional[float] = None,
) -> PricingResult:
    """
    Returns the bookable options for `rental` on `event_date`.

    Options whose delivery-to-pickup interval has no free unit are left out;
    the result is unavailable when nothing remains.
    """
    if rental.daily_price <= 0:
        return PricingResult(
            available=False,
            reason="This rental is coming soon and not yet available for booking.",
        )

    horizon = booking_horizon(now)
    if event_date < horizon.earliest:
        return PricingResult(
            available=False,
            reason=f"The earliest available event date is {horizon.earliest.isoformat()}.",
        )
    if event_date > horizon.latest:
        return PricingResult(
            available=False,
            reason=f"Bookings open up to {horizon.latest.isoformat()}.",
        )

    options = candidate_options(rental, event_date, upsell_threshold)
    if not options:
        return PricingResult(
            available=False,
            reason=f"This rental is not available for {event_date.strftime('%A')} events.",
        )

    bookable = [
        o for o in options
        if find_free_unit(rental, o.delivery_date, o.pickup_date, snapshot) is not None
    ]
    if bookable:
        return PricingResult(available=True, options=bookable)

    # Report a blackout ahead of a plain booking conflict
    first = options[0]
    for unit_id in rental.unit_ids:
        blackout = blackout_for(rental, unit_id, first.delivery_date, first.pickup_date, snapshot)
        if blackout is not None:
            return PricingResult(
                available=False,
                reason=blackout.reason or "We're not available on this date. Please choose another day.",
            )
    return PricingResult(
        available=False,
        reason="This rental is already booked for those dates.",
    )


def find_option(result: PricingResult, booking_type: BookingType) -> Optional[PricingOption]:
    for option in result.options:
        if option.booking_type == booking_type:
            return option
    return None


def suggest_dates(
        rental: Rental,
        snapshot: AvailabilitySnapshot,
        now: datetime.datetime,
        start: datetime.date,
        end: datetime.date,
        limit: int = 5,
) -> list[datetime.date]:
    """Open event dates between start and end, used to offer a reschedule instead of a cancellation."""
    found: list[datetime.date] = []
    day = start
    while day <= end and len(found) < limit:
        if get_pricing_options(rental, day, snapshot, now).available:
            found.append(day)
        day += datetime.timedelta(days=1)
    return found
