import asyncio
import datetime
import json
from unittest.mock import AsyncMock

from party_rentals import models
from party_rentals.booking_scheduler import release_abandoned_bookings
from party_rentals.config import settings
from party_rentals.outbox_poller import publish_pending_events


# --- Booking scheduler ---

def test_abandoned_pending_bookings_are_released(db_session, make_booking, notifier, monkeypatch):
    monkeypatch.setattr(settings, "ADMIN_NOTIFY_EMAIL", "owner@example.com")
    stale = make_booking(status=models.BookingStatus.PENDING, amount_paid=0.0, payment_intent=None)
    paid = make_booking(status=models.BookingStatus.PENDING, amount_paid=50.0, unit=1)

    later = models.utcnow() + datetime.timedelta(minutes=settings.PENDING_EXPIRY_MINUTES + 5)
    released = asyncio.run(release_abandoned_bookings(db_session, notifier, now=later))

    assert released == 1
    db_session.refresh(stale)
    db_session.refresh(paid)
    assert stale.status == models.BookingStatus.CANCELLED
    assert stale.cancelled_by == "system"
    assert paid.status == models.BookingStatus.PENDING

    # The row is kept for the audit trail
    assert db_session.query(models.Booking).count() == 2
    assert notifier.sent[0][0] == "pending_bookings_expired"
    assert notifier.sent[0][2]["booking_numbers"] == [stale.booking_number]


def test_fresh_pending_bookings_are_kept(db_session, make_booking, notifier):
    booking = make_booking(status=models.BookingStatus.PENDING, amount_paid=0.0)

    released = asyncio.run(release_abandoned_bookings(db_session, notifier, now=models.utcnow()))

    assert released == 0
    db_session.refresh(booking)
    assert booking.status == models.BookingStatus.PENDING
    assert notifier.sent == []


# --- Outbox poller ---

def test_published_events_are_removed(db_session, make_booking):
    from party_rentals import crud

    booking = make_booking()
    crud.add_outbox_event(db_session, "booking.confirmed", booking)
    crud.add_outbox_event(db_session, "booking.delivered", booking)
    db_session.commit()

    producer = AsyncMock()
    sent = asyncio.run(publish_pending_events(db_session, producer))

    assert sent == 2
    assert producer.send_and_wait.await_count == 2
    first = producer.send_and_wait.await_args_list[0].kwargs
    assert first["topic"] == settings.KAFKA_BOOKING_TOPIC
    assert json.loads(first["value"].decode("utf-8"))["event"] == "booking.confirmed"
    assert db_session.query(models.OutboxEvent).count() == 0


def test_failed_events_stay_in_outbox(db_session, make_booking):
    from party_rentals import crud

    booking = make_booking()
    crud.add_outbox_event(db_session, "booking.confirmed", booking)
    db_session.commit()

    producer = AsyncMock()
    producer.send_and_wait.side_effect = ConnectionError("broker down")
    sent = asyncio.run(publish_pending_events(db_session, producer))

    assert sent == 0
    assert db_session.query(models.OutboxEvent).count() == 1


def test_empty_outbox(db_session):
    producer = AsyncMock()
    assert asyncio.run(publish_pending_events(db_session, producer)) == 0
    producer.send_and_wait.assert_not_called()
