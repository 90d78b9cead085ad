import asyncio
import datetime
import logging
from typing import Optional
from sqlalchemy.orm import Session

from . import bookings, crud, models
from .config import settings
from .database import SessionLocal
from .exceptions import BookingError
from .notifications import EmailNotifier, notify_safely

logger = logging.getLogger("party_rentals")


async def release_abandoned_bookings(db: Session, notifier=None, now: Optional[datetime.datetime] = None) -> int:
    """
    Cancels pending bookings whose deposit was never paid within PENDING_EXPIRY_MINUTES,
    freeing their units. Rows are kept for the audit trail.
    """
    now = now or models.utcnow()
    cutoff = now - datetime.timedelta(minutes=settings.PENDING_EXPIRY_MINUTES)

    logger.info(f"Checking for pending bookings created before {cutoff}...")
    expired = crud.get_expired_pending_bookings(db, cutoff)
    if not expired:
        logger.info("No abandoned pending bookings.")
        return 0

    released = []
    for booking in expired:
        try:
            bookings.release_pending_booking(
                db, booking, f"Deposit not paid within {settings.PENDING_EXPIRY_MINUTES} minutes"
            )
            released.append(booking.booking_number)
        except BookingError as e:
            logger.error(f"Could not release booking {booking.booking_number}: {e.message}")

    if not released:
        db.rollback()
        return 0

    db.commit()
    logger.info(f"Released {len(released)} abandoned booking(s): {', '.join(released)}")

    notify_safely(
        notifier or EmailNotifier(),
        "pending_bookings_expired",
        settings.ADMIN_NOTIFY_EMAIL,
        {
            "count": len(released),
            "expiry_minutes": settings.PENDING_EXPIRY_MINUTES,
            "booking_numbers": released,
        },
    )
    return len(released)


async def run_booking_scheduler():
    """
    Main background loop for the scheduler.
    """
    while True:
        logger.info("Scheduler waking up to release abandoned bookings...")
        db: Session = SessionLocal()
        try:
            await release_abandoned_bookings(db)
        except Exception as e:
            logger.error(f"Error in booking scheduler loop: {e}")
            db.rollback()
        finally:
            db.close()

        await asyncio.sleep(settings.SCHEDULER_POLL_SECONDS)
