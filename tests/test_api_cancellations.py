import datetime
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from party_rentals import models

from conftest import TODAY, create_test_token


def open_request(client: TestClient, booking, email: str = "pat@example.com", **extra):
    body = {"booking_id": booking.id, "email": email, "reason": "Rained out"}
    body.update(extra)
    return client.post("/cancellations/", json=body)


# --- Customer endpoints ---

def test_preview(client: TestClient, make_booking):
    booking = make_booking(event_date=TODAY + datetime.timedelta(days=5))

    response = client.get("/cancellations/preview", params={"booking_id": booking.id, "email": "pat@example.com"})

    assert response.status_code == 200
    data = response.json()
    assert data["booking"]["booking_number"] == booking.booking_number
    assert data["refund"]["refund_percent"] == 50
    assert data["refund"]["refund_amount"] == 25.0
    assert data["refund"]["days_until_event"] == 5
    assert data["policy"]["name"] == "Standard Policy"
    assert len(data["reschedule_dates"]) == 5


def test_preview_wrong_email(client: TestClient, make_booking):
    booking = make_booking()
    response = client.get("/cancellations/preview", params={"booking_id": booking.id, "email": "who@example.com"})
    assert response.status_code == 403


def test_preview_unknown_booking(client: TestClient):
    response = client.get("/cancellations/preview", params={"booking_id": 4242, "email": "pat@example.com"})
    assert response.status_code == 404


def test_create_request(client: TestClient, make_booking, db_session: Session):
    booking = make_booking()

    response = open_request(client, booking, declined_reschedule=True)

    assert response.status_code == 201
    data = response.json()
    assert data["status"] == "pending"
    assert data["booking_id"] == booking.id
    assert data["suggested_refund"] == 50.0
    assert data["days_before_event"] == 10

    db_session.refresh(booking)
    assert booking.status == models.BookingStatus.PENDING_CANCELLATION
    assert "declined reschedule" in booking.internal_notes


def test_duplicate_request_is_a_bad_request(client: TestClient, make_booking):
    booking = make_booking()
    assert open_request(client, booking).status_code == 201

    response = open_request(client, booking)
    assert response.status_code == 400
    assert "already pending" in response.json()["detail"]


def test_customer_cannot_request_goodwill(client: TestClient, make_booking):
    booking = make_booking(event_date=TODAY + datetime.timedelta(days=1), amount_paid=150.0)

    response = open_request(client, booking, cancellation_type="goodwill")

    assert response.status_code == 400
    assert "cannot be requested by a customer" in response.json()["detail"]


def test_request_for_cancelled_booking(client: TestClient, make_booking):
    booking = make_booking(status=models.BookingStatus.CANCELLED)
    assert open_request(client, booking).status_code == 400


# --- Admin review ---

def test_admin_approves_and_refunds(client: TestClient, make_booking, admin_headers, gateway, db_session: Session):
    booking = make_booking()
    request_id = open_request(client, booking).json()["id"]

    pending = client.get("/admin/cancellations", params={"status": "pending"}, headers=admin_headers)
    assert [r["id"] for r in pending.json()] == [request_id]
    items = client.get("/admin/attention-items", headers=admin_headers).json()
    assert items[0]["attention_type"] == "cancellation_request"

    response = client.post(
        f"/admin/cancellations/{request_id}/review", json={"action": "approve"}, headers=admin_headers,
    )

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "refunded"
    assert data["refund_id"] == "re_test_123"
    assert len(gateway.refund_calls) == 1
    db_session.refresh(booking)
    assert booking.status == models.BookingStatus.CANCELLED
    assert client.get("/admin/attention-items", headers=admin_headers).json() == []


def test_admin_denies(client: TestClient, make_booking, admin_headers, db_session: Session):
    booking = make_booking()
    request_id = open_request(client, booking).json()["id"]

    response = client.post(
        f"/admin/cancellations/{request_id}/review",
        json={"action": "deny", "admin_notes": "Within 48 hours"},
        headers=admin_headers,
    )

    assert response.status_code == 200
    assert response.json()["status"] == "denied"
    db_session.refresh(booking)
    assert booking.status == models.BookingStatus.CONFIRMED


def test_refund_retry_failure_is_bad_gateway(client: TestClient, make_booking, admin_headers, gateway):
    from party_rentals.payments import RefundResult

    booking = make_booking()
    request_id = open_request(client, booking).json()["id"]
    gateway.refund_result = RefundResult(success=False, error="processing_error")

    approved = client.post(f"/admin/cancellations/{request_id}/review", json={"action": "approve"}, headers=admin_headers)
    assert approved.status_code == 200
    assert approved.json()["refund_error"] == "processing_error"

    retry = client.post(f"/admin/cancellations/{request_id}/review", json={"action": "refund"}, headers=admin_headers)
    assert retry.status_code == 502


def test_review_unknown_request(client: TestClient, admin_headers):
    response = client.post("/admin/cancellations/999/review", json={"action": "deny"}, headers=admin_headers)
    assert response.status_code == 404


# --- Admin auth ---

def test_admin_requires_token(client: TestClient):
    response = client.get("/admin/cancellations")
    assert response.status_code in (401, 403)


def test_admin_rejects_bad_token(client: TestClient):
    response = client.get("/admin/cancellations", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401


def test_admin_rejects_non_admin_role(client: TestClient):
    headers = {"Authorization": create_test_token(role="customer", subject="pat@example.com")}
    response = client.get("/admin/cancellations", headers=headers)
    assert response.status_code == 403
