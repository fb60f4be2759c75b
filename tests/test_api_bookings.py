# Import testing tools
import json
from datetime import date, datetime, timedelta

from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from shortlet_service import models
from shortlet_service.config import Settings, settings as service_settings
from shortlet_service.dependencies import get_settings
from shortlet_service.lifecycle import DATES_UNAVAILABLE_MESSAGE
from shortlet_service.main import app


def _stay(start_offset: int, nights: int) -> dict:
    check_in = date.today() + timedelta(days=start_offset)
    return {"check_in": str(check_in), "check_out": str(check_in + timedelta(days=nights))}


def _request_mode_settings():
    """Bookings go straight to the host without waiting for payment."""
    app.dependency_overrides[get_settings] = lambda: Settings(PAYMENT_BEFORE_CONFIRMATION=False)


# --- Create ---

def test_create_booking_waits_for_payment(client: TestClient, auth_headers, make_listing, db_session: Session):
    """By default a new booking is pending_payment and does not block the calendar yet."""
    make_listing(101)
    response = client.post("/bookings/", json={"property_id": 101, **_stay(10, 5)}, headers=auth_headers)

    assert response.status_code == 201
    data = response.json()
    assert data["property_id"] == 101
    assert data["guest_user_id"] == 1
    assert data["host_user_id"] == 50
    assert data["status"] == "pending_payment"
    assert data["nights"] == 5
    assert data["total_amount_minor"] == 5 * 25000 + 3000

    assert db_session.query(models.OutboxEvent).count() == 0


def test_create_booking_request_mode_blocks_dates(client: TestClient, auth_headers, make_listing, db_session: Session):
    make_listing(102)
    _request_mode_settings()

    response = client.post("/bookings/", json={"property_id": 102, **_stay(10, 2)}, headers=auth_headers)

    assert response.status_code == 201
    data = response.json()
    assert data["status"] == "pending"
    assert data["respond_by"] is not None

    outbox_event = db_session.query(models.OutboxEvent).first()
    assert outbox_event is not None
    assert outbox_event.status == "PENDING"
    assert outbox_event.topic == service_settings.KAFKA_AVAILABILITY_TOPIC
    payload = json.loads(outbox_event.payload)
    assert payload["property_id"] == 102
    assert payload["event"] == "range_blocked"
    assert payload["booking_id"] == data["id"]


def test_create_booking_invalid_dates(client: TestClient, auth_headers, make_listing):
    make_listing(103)
    today = str(date.today() + timedelta(days=3))
    response = client.post(
        "/bookings/", json={"property_id": 103, "check_in": today, "check_out": today}, headers=auth_headers,
    )
    assert response.status_code == 400
    assert "Check-out must be after check-in" in response.json()["detail"]


def test_create_booking_unknown_listing(client: TestClient, auth_headers):
    response = client.post("/bookings/", json={"property_id": 999, **_stay(10, 2)}, headers=auth_headers)
    assert response.status_code == 404


def test_create_booking_conflict(client: TestClient, auth_headers, make_listing, make_booking):
    make_listing(104)
    start = date.today() + timedelta(days=10)
    make_booking(104, start, start + timedelta(days=3), status="confirmed")

    response = client.post(
        "/bookings/",
        json={"property_id": 104, "check_in": str(start + timedelta(days=1)), "check_out": str(start + timedelta(days=5))},
        headers=auth_headers,
    )

    assert response.status_code == 409
    assert response.json()["detail"] == DATES_UNAVAILABLE_MESSAGE


def test_create_booking_ignores_non_blocking_bookings(client: TestClient, auth_headers, make_listing, make_booking):
    make_listing(105)
    start = date.today() + timedelta(days=10)
    make_booking(105, start, start + timedelta(days=3), status="cancelled")
    make_booking(105, start, start + timedelta(days=3), status="pending_payment")

    response = client.post("/bookings/", json={"property_id": 105, **_stay(10, 3)}, headers=auth_headers)
    assert response.status_code == 201


def test_create_booking_respects_prep_days(client: TestClient, auth_headers, make_listing, make_booking):
    make_listing(106, prep_days=1)
    start = date.today() + timedelta(days=10)
    make_booking(106, start, start + timedelta(days=2))

    # Back-to-back would be fine without the turnover day
    response = client.post(
        "/bookings/",
        json={"property_id": 106, "check_in": str(start + timedelta(days=2)), "check_out": str(start + timedelta(days=4))},
        headers=auth_headers,
    )
    assert response.status_code == 409


def test_create_booking_stay_rules(client: TestClient, auth_headers, make_listing):
    make_listing(107, min_nights=3, max_nights=7, advance_notice_hours=72)

    too_short = client.post("/bookings/", json={"property_id": 107, **_stay(10, 2)}, headers=auth_headers)
    too_long = client.post("/bookings/", json={"property_id": 107, **_stay(10, 8)}, headers=auth_headers)
    too_soon = client.post("/bookings/", json={"property_id": 107, **_stay(1, 3)}, headers=auth_headers)

    assert too_short.status_code == 409
    assert "minimum" in too_short.json()["detail"]
    assert too_long.status_code == 409
    assert "maximum" in too_long.json()["detail"]
    assert too_soon.status_code == 409
    assert "notice" in too_soon.json()["detail"]


def test_create_booking_needs_nightly_price(client: TestClient, auth_headers, make_listing):
    make_listing(108, nightly_price_minor=None)
    response = client.post("/bookings/", json={"property_id": 108, **_stay(10, 2)}, headers=auth_headers)
    assert response.status_code == 409
    assert "nightly price" in response.json()["detail"]


def test_create_booking_no_auth(client: TestClient, make_listing):
    make_listing(109)
    response = client.post("/bookings/", json={"property_id": 109, **_stay(10, 2)})
    assert response.status_code in (401, 403)


def test_read_user_bookings(client: TestClient, auth_headers, make_booking):
    make_booking(201, date(2025, 1, 1), date(2025, 1, 5), guest_user_id=1)
    make_booking(202, date(2025, 2, 1), date(2025, 2, 5), guest_user_id=1)
    make_booking(203, date(2025, 3, 1), date(2025, 3, 5), guest_user_id=2)

    response = client.get("/bookings/", headers=auth_headers)

    assert response.status_code == 200
    data = response.json()
    assert len(data) == 2
    assert data[0]["property_id"] == 201
    assert data[1]["property_id"] == 202


# --- Host responses ---

def test_host_accepts_pending_booking(client: TestClient, host_headers, make_booking, db_session: Session):
    start = date.today() + timedelta(days=10)
    booking_id = make_booking(301, start, start + timedelta(days=2), status="pending").id

    response = client.post(f"/bookings/{booking_id}/respond", json={"action": "accept"}, headers=host_headers)

    assert response.status_code == 200
    assert response.json()["status"] == "confirmed"
    # pending -> confirmed keeps the same nights blocked
    assert db_session.query(models.OutboxEvent).count() == 0


def test_host_declines_with_reason(client: TestClient, host_headers, make_booking, db_session: Session):
    start = date.today() + timedelta(days=10)
    booking_id = make_booking(302, start, start + timedelta(days=2), status="pending").id

    response = client.post(
        f"/bookings/{booking_id}/respond",
        json={"action": "decline", "reason": "  Unit under repair  "},
        headers=host_headers,
    )

    assert response.status_code == 200
    assert response.json()["status"] == "declined"
    booking = db_session.get(models.Booking, booking_id)
    assert booking.host_decision_reason == "Unit under repair"
    payload = json.loads(db_session.query(models.OutboxEvent).first().payload)
    assert payload["event"] == "range_released"


def test_host_legacy_approve(client: TestClient, host_headers, make_booking):
    start = date.today() + timedelta(days=10)
    booking_id = make_booking(303, start, start + timedelta(days=2), status="pending").id

    response = client.post(f"/bookings/{booking_id}/respond", json={"action": "approve"}, headers=host_headers)
    assert response.json()["status"] == "confirmed"


def test_respond_requires_pending(client: TestClient, host_headers, make_booking):
    start = date.today() + timedelta(days=10)
    booking_id = make_booking(304, start, start + timedelta(days=2), status="confirmed").id

    response = client.post(f"/bookings/{booking_id}/respond", json={"action": "decline"}, headers=host_headers)

    assert response.status_code == 409
    assert "INVALID_STATUS_TRANSITION" in response.json()["detail"]


def test_respond_only_by_host(client: TestClient, auth_headers, make_booking):
    start = date.today() + timedelta(days=10)
    booking_id = make_booking(305, start, start + timedelta(days=2), status="pending").id

    response = client.post(f"/bookings/{booking_id}/respond", json={"action": "accept"}, headers=auth_headers)
    assert response.status_code == 403


def test_respond_after_window_closed(client: TestClient, host_headers, make_booking):
    start = date.today() + timedelta(days=10)
    booking_id = make_booking(
        306, start, start + timedelta(days=2), status="pending",
        respond_by=datetime.utcnow() - timedelta(hours=1),
    ).id

    response = client.post(f"/bookings/{booking_id}/respond", json={"action": "accept"}, headers=host_headers)
    assert response.status_code == 409


def test_respond_unknown_booking(client: TestClient, host_headers):
    response = client.post("/bookings/424242/respond", json={"action": "accept"}, headers=host_headers)
    assert response.status_code == 404


# --- Host inbox ---

def test_host_inbox_filters(client: TestClient, host_headers, make_booking):
    soon = date.today() + timedelta(days=10)
    make_booking(401, soon, soon + timedelta(days=2), status="pending",
                 respond_by=datetime.utcnow() + timedelta(hours=6))
    make_booking(402, soon, soon + timedelta(days=2), status="confirmed")
    make_booking(403, date(2025, 1, 1), date(2025, 1, 3), status="completed")
    make_booking(404, soon, soon + timedelta(days=2), status="pending_payment")

    everything = client.get("/bookings/host", headers=host_headers).json()
    awaiting = client.get("/bookings/host?filter=awaiting", headers=host_headers).json()
    upcoming = client.get("/bookings/host?filter=upcoming", headers=host_headers).json()
    past = client.get("/bookings/host?filter=past", headers=host_headers).json()

    assert {b["property_id"] for b in everything} == {401, 402, 403}
    assert [b["property_id"] for b in awaiting] == [401]
    assert awaiting[0]["inbox_filter"] == "awaiting_approval"
    assert [b["property_id"] for b in upcoming] == [402]
    assert [b["property_id"] for b in past] == [403]


def test_host_inbox_unknown_filter(client: TestClient, host_headers):
    assert client.get("/bookings/host?filter=someday", headers=host_headers).status_code == 400


# --- Cancellation ---

def test_guest_cancels_paid_booking(client: TestClient, headers_for, make_booking, db_session: Session):
    start = date.today() + timedelta(days=10)
    booking_id = make_booking(501, start, start + timedelta(days=2), status="confirmed").id
    db_session.add(models.Payment(reference="pay-501", booking_id=booking_id, status="succeeded", amount_minor=50000))
    db_session.commit()

    response = client.post(f"/bookings/{booking_id}/cancel", json={}, headers=headers_for(99))

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "cancelled"
    assert data["refund_required"] is True


def test_cancel_unpaid_booking_needs_no_refund(client: TestClient, headers_for, make_booking):
    start = date.today() + timedelta(days=10)
    booking_id = make_booking(502, start, start + timedelta(days=2), status="pending_payment").id

    response = client.post(f"/bookings/{booking_id}/cancel", headers=headers_for(99))

    assert response.status_code == 200
    assert response.json()["refund_required"] is False


def test_cancel_terminal_booking_conflicts(client: TestClient, headers_for, make_booking):
    booking_id = make_booking(503, date(2025, 1, 1), date(2025, 1, 3), status="completed").id
    response = client.post(f"/bookings/{booking_id}/cancel", headers=headers_for(99))
    assert response.status_code == 409


def test_cancel_by_stranger_forbidden(client: TestClient, headers_for, make_booking):
    start = date.today() + timedelta(days=10)
    booking_id = make_booking(504, start, start + timedelta(days=2)).id
    assert client.post(f"/bookings/{booking_id}/cancel", headers=headers_for(7)).status_code == 403


# --- Payment return page ---

def test_return_status_keeps_polling_while_booking_catches_up(
        client: TestClient, headers_for, make_booking, db_session: Session):
    start = date.today() + timedelta(days=10)
    booking_id = make_booking(601, start, start + timedelta(days=2), status="pending_payment").id
    db_session.add(models.Payment(reference="pay-601", booking_id=booking_id, status="succeeded"))
    db_session.commit()

    data = client.get(f"/bookings/{booking_id}/return-status", headers=headers_for(99)).json()

    assert data["ui_state"] == "processing"
    assert data["should_poll"] is True
    assert data["stop_reason"] == "continue"
    assert data["message"] is None


def test_return_status_timeout_message(client: TestClient, headers_for, make_booking, db_session: Session):
    start = date.today() + timedelta(days=10)
    booking_id = make_booking(602, start, start + timedelta(days=2), status="pending_payment").id
    db_session.add(models.Payment(reference="pay-602", booking_id=booking_id, status="succeeded"))
    db_session.commit()

    data = client.get(
        f"/bookings/{booking_id}/return-status?elapsed_ms=60000", headers=headers_for(99),
    ).json()

    assert data["should_poll"] is False
    assert data["stop_reason"] == "timeout"
    assert "does not mean your payment failed" in data["message"]


def test_return_status_confirmed(client: TestClient, headers_for, make_booking):
    start = date.today() + timedelta(days=10)
    booking_id = make_booking(603, start, start + timedelta(days=2), status="confirmed").id

    data = client.get(f"/bookings/{booking_id}/return-status", headers=headers_for(99)).json()

    assert data["ui_state"] == "confirmed"
    assert data["should_poll"] is False
    assert data["payment_status"] is None


def test_return_status_only_for_guest(client: TestClient, host_headers, make_booking):
    start = date.today() + timedelta(days=10)
    booking_id = make_booking(604, start, start + timedelta(days=2)).id
    assert client.get(f"/bookings/{booking_id}/return-status", headers=host_headers).status_code == 403
