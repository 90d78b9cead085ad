# Import testing tools
import datetime
import json
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from party_rentals import models
from party_rentals.config import settings
from party_rentals.exceptions import PaymentProviderError

from conftest import TODAY

SATURDAY = datetime.date(2030, 6, 8)
SUNDAY = datetime.date(2030, 6, 9)


def booking_payload(product_id: int, **overrides) -> dict:
    payload = {
        "product_id": product_id,
        "event_date": str(SATURDAY),
        "booking_type": "weekend",
        "delivery_window": "morning",
        "pickup_window": "monday-morning",
        "customer": {"first_name": "Sam", "last_name": "Lee", "email": "sam@example.com"},
        "address": "42 Oak Avenue",
        "city": "Springfield",
    }
    payload.update(overrides)
    return payload


def checkout_completed(session_id: str, amount_cents: int = 5000) -> dict:
    return {
        "type": "checkout.session.completed",
        "data": {"object": {
            "id": session_id,
            "payment_status": "paid",
            "payment_intent": "pi_live_9",
            "amount_total": amount_cents,
        }},
    }


# --- Pricing options ---

def test_saturday_options(client: TestClient, product):
    response = client.get("/bookings/options", params={"product_id": product.id, "event_date": str(SATURDAY)})

    assert response.status_code == 200
    data = response.json()
    assert data["available"] is True
    assert [o["booking_type"] for o in data["options"]] == ["daily", "weekend"]
    weekend = data["options"][1]
    assert weekend["price"] == 225.0
    assert weekend["recommended"] is True
    assert weekend["pickup_date"] == "2030-06-10"
    assert weekend["pickup_windows"][0] == {"label": "By 10 AM (Monday)", "value": "monday-morning"}


def test_sunday_option_delivers_saturday(client: TestClient, product):
    response = client.get("/bookings/options", params={"product_id": product.id, "event_date": str(SUNDAY)})
    options = response.json()["options"]
    assert len(options) == 1
    assert options[0]["booking_type"] == "sunday"
    assert options[0]["delivery_date"] == str(SATURDAY)


def test_options_for_fully_booked_date(client: TestClient, make_booking):
    booking = make_booking(unit=0)
    make_booking(unit=1)

    response = client.get(
        "/bookings/options", params={"product_id": booking.product_id, "event_date": str(booking.event_date)}
    )
    data = response.json()
    assert data["available"] is False
    assert data["options"] == []
    assert data["reason"]


def test_options_unknown_product(client: TestClient):
    response = client.get("/bookings/options", params={"product_id": 9999, "event_date": str(SATURDAY)})
    assert response.status_code == 404


# --- Creating bookings ---

def test_create_booking_starts_checkout(client: TestClient, product, db_session: Session, gateway):
    response = client.post("/bookings/", json=booking_payload(product.id))

    # --- Assertions for the API Response ---
    assert response.status_code == 201
    data = response.json()
    booking = data["booking"]
    assert booking["status"] == "pending"
    assert booking["booking_type"] == "weekend"
    assert booking["delivery_date"] == "2030-06-08"
    assert booking["pickup_date"] == "2030-06-10"
    assert booking["subtotal"] == 225.0
    assert booking["deposit_amount"] == settings.DEPOSIT_AMOUNT
    assert booking["balance_due"] == 225.0
    assert booking["booking_number"].startswith("PR-")
    assert data["checkout_url"] == "https://checkout.test/session"
    assert gateway.checkout_calls == [(booking["booking_number"], "sam@example.com")]

    # --- Assertions for the Outbox Event ---
    outbox_event = db_session.query(models.OutboxEvent).first()
    assert outbox_event is not None
    assert outbox_event.status == "PENDING"
    assert outbox_event.topic == settings.KAFKA_BOOKING_TOPIC
    payload = json.loads(outbox_event.payload)
    assert payload["event"] == "booking.created"
    assert payload["booking_number"] == booking["booking_number"]


def test_failed_checkout_releases_the_unit(client: TestClient, product, db_session: Session, gateway):
    gateway.checkout_error = PaymentProviderError("Unable to start checkout. Please try again.")

    response = client.post("/bookings/", json=booking_payload(product.id))

    assert response.status_code == 502
    failed = db_session.query(models.Booking).one()
    assert failed.status == models.BookingStatus.CANCELLED
    assert failed.cancelled_by == "system"
    assert failed.stripe_session_id is None

    # Both units are bookable again
    gateway.checkout_error = None
    first = client.post("/bookings/", json=booking_payload(product.id))
    second = client.post("/bookings/", json=booking_payload(product.id))
    assert first.status_code == 201
    assert second.status_code == 201


def test_second_booking_takes_the_other_unit(client: TestClient, product):
    first = client.post("/bookings/", json=booking_payload(product.id)).json()["booking"]
    second = client.post("/bookings/", json=booking_payload(product.id)).json()["booking"]
    assert {first["unit_id"], second["unit_id"]} == {u.id for u in product.units}

    third = client.post("/bookings/", json=booking_payload(product.id))
    assert third.status_code == 409


def test_pending_booking_blocks_the_date(client: TestClient, make_booking):
    booking = make_booking(status=models.BookingStatus.PENDING, amount_paid=0.0, unit=0)
    make_booking(status=models.BookingStatus.PENDING, amount_paid=0.0, unit=1)

    response = client.post("/bookings/", json=booking_payload(
        booking.product_id, event_date=str(booking.event_date), booking_type="daily", pickup_window="next-morning",
    ))
    assert response.status_code == 409


def test_booking_inside_cutoff_is_rejected(client: TestClient, product):
    response = client.post("/bookings/", json=booking_payload(
        product.id, event_date=str(TODAY), booking_type="daily", pickup_window="next-morning",
    ))
    assert response.status_code == 400
    assert "booking window" in response.json()["detail"]


def test_booking_type_not_offered_for_day(client: TestClient, product):
    response = client.post("/bookings/", json=booking_payload(
        product.id, event_date=str(TODAY + datetime.timedelta(days=2)),
    ))
    assert response.status_code == 400
    assert "not offered" in response.json()["detail"]


def test_invalid_pickup_window(client: TestClient, product):
    response = client.post("/bookings/", json=booking_payload(product.id, pickup_window="evening"))
    assert response.status_code == 400
    assert "pickup window" in response.json()["detail"]


def test_promo_code_reduces_subtotal(client: TestClient, product, db_session: Session):
    db_session.add(models.PromoCode(code="SAVE10", discount_type=models.DiscountType.FIXED, discount_amount=10))
    db_session.commit()

    response = client.post("/bookings/", json=booking_payload(product.id, promo_code="save10"))

    assert response.status_code == 201
    booking = response.json()["booking"]
    assert booking["discount_amount"] == 10.0
    assert booking["subtotal"] == 215.0


def test_invalid_promo_code_rejects_booking(client: TestClient, product):
    response = client.post("/bookings/", json=booking_payload(product.id, promo_code="NOPE"))
    assert response.status_code == 400
    assert response.json()["detail"] == "Code not found"


# --- Lookup ---

def test_lookup_by_number_and_email(client: TestClient, make_booking):
    booking = make_booking()
    response = client.get(
        "/bookings/lookup", params={"booking_number": booking.booking_number.lower(), "email": "PAT@example.com"}
    )
    assert response.status_code == 200
    assert response.json()["id"] == booking.id
    assert response.json()["balance_due"] == 100.0


def test_lookup_wrong_email(client: TestClient, make_booking):
    booking = make_booking()
    response = client.get(
        "/bookings/lookup", params={"booking_number": booking.booking_number, "email": "other@example.com"}
    )
    assert response.status_code == 403


def test_lookup_unknown_number(client: TestClient):
    response = client.get("/bookings/lookup", params={"booking_number": "PR-NOPE00", "email": "pat@example.com"})
    assert response.status_code == 404


# --- Stripe webhook ---

def test_checkout_completed_confirms_booking(client: TestClient, product, db_session: Session, gateway, notifier):
    db_session.add(models.PromoCode(code="SAVE10", discount_type=models.DiscountType.FIXED, discount_amount=10))
    db_session.commit()
    created = client.post("/bookings/", json=booking_payload(product.id, promo_code="SAVE10")).json()["booking"]

    gateway.webhook_event = checkout_completed(f"cs_test_{created['booking_number']}")
    response = client.post("/webhooks/stripe", content=b"{}", headers={"Stripe-Signature": "t=1,v1=abc"})

    assert response.status_code == 200
    assert response.json() == {"received": True}
    booking = db_session.query(models.Booking).filter(models.Booking.id == created["id"]).first()
    assert booking.status == models.BookingStatus.CONFIRMED
    assert booking.amount_paid == 50.0
    assert booking.stripe_payment_intent_id == "pi_live_9"
    assert db_session.query(models.PromoCode).filter(models.PromoCode.code == "SAVE10").first().usage_count == 1
    assert notifier.templates() == ["booking_confirmed"]
    assert notifier.sent[0][2]["balance_due"] == 165.0


def test_repeated_checkout_event_is_ignored(client: TestClient, product, db_session: Session, gateway, notifier):
    created = client.post("/bookings/", json=booking_payload(product.id)).json()["booking"]
    gateway.webhook_event = checkout_completed(f"cs_test_{created['booking_number']}")

    client.post("/webhooks/stripe", content=b"{}")
    client.post("/webhooks/stripe", content=b"{}")

    booking = db_session.query(models.Booking).filter(models.Booking.id == created["id"]).first()
    assert booking.amount_paid == 50.0
    assert notifier.templates() == ["booking_confirmed"]


def test_deposit_after_cancellation_request_is_recorded(client: TestClient, product, db_session: Session, gateway):
    created = client.post("/bookings/", json=booking_payload(product.id)).json()["booking"]
    requested = client.post("/cancellations/", json={"booking_id": created["id"], "email": "sam@example.com"})
    assert requested.json()["original_paid"] == 0.0

    gateway.webhook_event = checkout_completed(f"cs_test_{created['booking_number']}")
    client.post("/webhooks/stripe", content=b"{}")
    client.post("/webhooks/stripe", content=b"{}")

    booking = db_session.query(models.Booking).filter(models.Booking.id == created["id"]).first()
    assert booking.status == models.BookingStatus.PENDING_CANCELLATION
    assert booking.amount_paid == 50.0
    assert booking.stripe_payment_intent_id == "pi_live_9"

    # 5 days out: half of the deposit comes back
    request = db_session.query(models.CancellationRequest).one()
    db_session.refresh(request)
    assert request.original_paid == 50.0
    assert request.suggested_refund == 25.0


def test_expired_checkout_releases_unit(client: TestClient, product, db_session: Session, gateway):
    created = client.post("/bookings/", json=booking_payload(product.id)).json()["booking"]
    gateway.webhook_event = {
        "type": "checkout.session.expired",
        "data": {"object": {"id": f"cs_test_{created['booking_number']}"}},
    }

    response = client.post("/webhooks/stripe", content=b"{}")

    assert response.status_code == 200
    booking = db_session.query(models.Booking).filter(models.Booking.id == created["id"]).first()
    assert booking.status == models.BookingStatus.CANCELLED
    assert booking.cancelled_by == "system"


def test_unknown_webhook_event_is_acknowledged(client: TestClient, gateway):
    gateway.webhook_event = {"type": "charge.refunded", "data": {"object": {"id": "ch_1"}}}
    response = client.post("/webhooks/stripe", content=b"{}")
    assert response.status_code == 200


# --- Catalog and promotions ---

def test_list_products_fills_cache(client: TestClient, product, cache):
    response = client.get("/products/")
    assert response.status_code == 200
    assert [p["name"] for p in response.json()] == ["Castle Bounce House"]
    cache.set.assert_called_once()
    assert cache.set.call_args.args[0] == "all_products"


def test_product_served_from_cache(client: TestClient, cache):
    cache.get.return_value = json.dumps({
        "id": 7, "slug": "foam-pit", "name": "Foam Pit", "description": None,
        "daily_price": 100.0, "weekend_price": 150.0, "sunday_price": 120.0,
        "same_day_pickup_only": True, "available_booking_types": None,
    })
    response = client.get("/products/7")
    assert response.status_code == 200
    assert response.json()["name"] == "Foam Pit"
    cache.set.assert_not_called()


def test_validate_promo_code(client: TestClient, db_session: Session):
    db_session.add(models.PromoCode(code="SUMMER20", discount_type=models.DiscountType.PERCENT, discount_amount=20))
    db_session.commit()

    ok = client.post("/promo-codes/validate", json={"code": "summer20", "order_amount": 150})
    assert ok.status_code == 200
    assert ok.json() == {"valid": True, "code": "SUMMER20", "discount": 30.0, "error": None}

    missing = client.post("/promo-codes/validate", json={"code": "NOPE", "order_amount": 150})
    assert missing.status_code == 200
    assert missing.json()["valid"] is False


# --- Rescheduling ---

def test_reschedule_booking(client: TestClient, make_booking, notifier):
    booking = make_booking()
    new_date = TODAY + datetime.timedelta(days=3)

    response = client.post(f"/bookings/{booking.id}/reschedule", json={
        "email": "pat@example.com", "new_event_date": str(new_date),
    })

    assert response.status_code == 200
    data = response.json()
    assert data["event_date"] == str(new_date)
    assert data["status"] == "confirmed"
    assert notifier.templates() == ["booking_rescheduled"]


def test_reschedule_to_taken_date_is_a_conflict(client: TestClient, make_booking):
    booking = make_booking()
    new_date = TODAY + datetime.timedelta(days=3)
    make_booking(event_date=new_date, unit=0, email="sam@example.com")
    make_booking(event_date=new_date, unit=1, email="sam@example.com")

    response = client.post(f"/bookings/{booking.id}/reschedule", json={
        "email": "pat@example.com", "new_event_date": str(new_date),
    })
    assert response.status_code == 409


def test_reschedule_wrong_email(client: TestClient, make_booking):
    booking = make_booking()
    response = client.post(f"/bookings/{booking.id}/reschedule", json={
        "email": "who@example.com", "new_event_date": str(TODAY + datetime.timedelta(days=3)),
    })
    assert response.status_code == 403


def test_reschedule_unknown_booking(client: TestClient):
    response = client.post("/bookings/4242/reschedule", json={
        "email": "pat@example.com", "new_event_date": str(TODAY + datetime.timedelta(days=3)),
    })
    assert response.status_code == 404
