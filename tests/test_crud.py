# Import necessary modules
import json
import pytest
from datetime import date, timedelta
from sqlalchemy.orm import Session
from unittest.mock import MagicMock

from shortlet_service import crud, models, schemas
from shortlet_service.lifecycle import BookingStatus
from shortlet_service.pricing import calculate_pricing


# --- Helper function to create a mock Booking object ---
def create_mock_booking(start_offset: int, end_offset: int, status: str = "pending", property_id: int = 1):
    """Creates a Booking object with dates relative to today."""
    return models.Booking(
        id=1,
        property_id=property_id,
        guest_user_id=1,
        host_user_id=50,
        check_in=date.today() + timedelta(days=start_offset),
        check_out=date.today() + timedelta(days=end_offset),
        status=status,
    )


def _outbox_payloads(mock_db):
    return [
        json.loads(call.args[0].payload)
        for call in mock_db.add.call_args_list
        if isinstance(call.args[0], models.OutboxEvent)
    ]


# --- apply_booking_status ---

def test_apply_booking_status_releases_range_when_leaving_blocking_status():
    mock_db = MagicMock(spec=Session)
    booking = create_mock_booking(2, 5, status="confirmed")

    crud.apply_booking_status(mock_db, booking, BookingStatus.CANCELLED, refund_required=True)

    assert booking.status == "cancelled"
    assert booking.refund_required is True
    payloads = _outbox_payloads(mock_db)
    assert len(payloads) == 1
    assert payloads[0]["event"] == "range_released"
    assert payloads[0]["booking_id"] == 1
    assert payloads[0]["start"] == booking.check_in.isoformat()
    mock_db.commit.assert_not_called()


def test_apply_booking_status_blocks_range_when_payment_settles():
    mock_db = MagicMock(spec=Session)
    booking = create_mock_booking(2, 5, status="pending_payment")

    crud.apply_booking_status(mock_db, booking, BookingStatus.PENDING)

    payloads = _outbox_payloads(mock_db)
    assert [p["event"] for p in payloads] == ["range_blocked"]


def test_apply_booking_status_no_event_between_blocking_statuses():
    """pending -> confirmed keeps the same dates blocked."""
    mock_db = MagicMock(spec=Session)
    booking = create_mock_booking(2, 5, status="pending")

    crud.apply_booking_status(mock_db, booking, BookingStatus.CONFIRMED)

    assert booking.status == "confirmed"
    assert _outbox_payloads(mock_db) == []


def test_apply_booking_status_no_event_between_non_blocking_statuses():
    mock_db = MagicMock(spec=Session)
    booking = create_mock_booking(2, 5, status="pending_payment")

    crud.apply_booking_status(mock_db, booking, BookingStatus.CANCELLED)

    assert _outbox_payloads(mock_db) == []


# --- create_booking ---

def test_create_booking_rolls_back_and_reraises_on_failure():
    mock_db = MagicMock(spec=Session)
    mock_db.flush.side_effect = RuntimeError("exclusion constraint shortlet_bookings_no_overlap")
    booking = schemas.BookingCreate(property_id=1, check_in=date(2026, 3, 10), check_out=date(2026, 3, 12))
    pricing = calculate_pricing(booking.check_in, booking.check_out, 25000, 3000)

    with pytest.raises(RuntimeError):
        crud.create_booking(mock_db, booking, 1, 50, pricing, BookingStatus.PENDING, "NGN")

    mock_db.rollback.assert_called_once()
    mock_db.commit.assert_not_called()


def test_create_booking_pending_payment_emits_no_event():
    mock_db = MagicMock(spec=Session)
    booking = schemas.BookingCreate(property_id=1, check_in=date(2026, 3, 10), check_out=date(2026, 3, 12))
    pricing = calculate_pricing(booking.check_in, booking.check_out, 25000, 3000)

    db_booking = crud.create_booking(mock_db, booking, 1, 50, pricing, BookingStatus.PENDING_PAYMENT, "NGN")

    assert db_booking.status == "pending_payment"
    assert db_booking.total_amount_minor == 53000
    assert db_booking.pricing_snapshot["subtotal_minor"] == 50000
    assert _outbox_payloads(mock_db) == []
    mock_db.commit.assert_called_once()


# --- list_blocking_rows ---

def test_list_blocking_rows_maps_rows_into_entities():
    mock_db = MagicMock(spec=Session)
    booking_row = create_mock_booking(2, 5, status="confirmed")
    block_row = models.ShortletBlock(id=9, property_id=1, date_from=date(2026, 3, 1), date_to=date(2026, 3, 3))

    booking_query = MagicMock()
    booking_query.order_by.return_value.all.return_value = [booking_row]
    block_query = MagicMock()
    block_query.order_by.return_value.all.return_value = [block_row]
    mock_db.query.return_value.filter.side_effect = [booking_query, block_query]

    rows = crud.list_blocking_rows(mock_db, 1, date(2026, 1, 1), date(2027, 1, 1))

    assert rows.bookings[0].id == 1
    assert rows.bookings[0].date_from == booking_row.check_in
    assert rows.blocks[0].id == 9
    assert rows.blocks[0].date_to == date(2026, 3, 3)


# --- Host blocks ---

def test_delete_block_missing_returns_false():
    mock_db = MagicMock(spec=Session)
    mock_db.query.return_value.filter.return_value.first.return_value = None

    assert crud.delete_block(mock_db, 1, 123) is False
    mock_db.delete.assert_not_called()
    mock_db.commit.assert_not_called()


def test_delete_block_emits_range_released():
    mock_db = MagicMock(spec=Session)
    block = models.ShortletBlock(id=4, property_id=1, date_from=date(2026, 3, 1), date_to=date(2026, 3, 3))
    mock_db.query.return_value.filter.return_value.first.return_value = block

    assert crud.delete_block(mock_db, 1, 4) is True
    payloads = _outbox_payloads(mock_db)
    assert payloads[0]["event"] == "range_released"
    assert payloads[0]["booking_id"] is None
    mock_db.delete.assert_called_once_with(block)
    mock_db.commit.assert_called_once()


# --- Payments ---

def test_record_payment_status_creates_new_payment():
    mock_db = MagicMock(spec=Session)
    mock_db.query.return_value.filter.return_value.first.return_value = None
    webhook = schemas.PaymentWebhook(reference="ref-1", booking_id=7, status="succeeded", amount_minor=53000)

    payment = crud.record_payment_status(mock_db, webhook, "succeeded")

    assert payment.reference == "ref-1"
    assert payment.status == "succeeded"
    assert payment.amount_minor == 53000
    mock_db.add.assert_called_once_with(payment)
    mock_db.commit.assert_not_called()


def test_record_payment_status_updates_existing_payment():
    mock_db = MagicMock(spec=Session)
    existing = models.Payment(reference="ref-1", booking_id=7, status="initiated", amount_minor=53000)
    mock_db.query.return_value.filter.return_value.first.return_value = existing
    webhook = schemas.PaymentWebhook(reference="ref-1", booking_id=7, status="failed")

    payment = crud.record_payment_status(mock_db, webhook, "failed")

    assert payment is existing
    assert payment.status == "failed"
    assert payment.amount_minor == 53000
    mock_db.add.assert_not_called()
