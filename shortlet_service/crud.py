import json
import datetime
from typing import Optional
from sqlalchemy.orm import Session
from . import models, schemas
from .config import settings  # Need this for the topic name
from .entities import BlockingRows, BlockSpan, BookingSpan, SettingsSnapshot
from .lifecycle import BLOCKING_STATUSES, BookingStatus, blocks_availability
from .pricing import PricingBreakdown
from .ranges import SOURCE_BOOKING, SOURCE_HOST_BLOCK, UnavailableRange

BLOCKING_STATUS_VALUES = [s.value for s in BLOCKING_STATUSES]


# --- Shortlet settings ---

def get_shortlet_settings_row(db: Session, property_id: int) -> Optional[models.ShortletSettings]:
    return db.query(models.ShortletSettings).filter(models.ShortletSettings.property_id == property_id).first()


def get_shortlet_settings(db: Session, property_id: int) -> Optional[SettingsSnapshot]:
    row = get_shortlet_settings_row(db, property_id)
    return SettingsSnapshot.from_row(row) if row else None


def upsert_shortlet_settings(
        db: Session, property_id: int, host_user_id: int, data: schemas.ShortletSettingsUpdate
) -> models.ShortletSettings:
    row = get_shortlet_settings_row(db, property_id)
    if row is None:
        row = models.ShortletSettings(property_id=property_id, host_user_id=host_user_id)
        db.add(row)
    for key, value in data.model_dump().items():
        setattr(row, key, value)
    db.commit()
    db.refresh(row)
    return row


def list_search_candidates(db: Session) -> list[SettingsSnapshot]:
    """Listings that can be booked at all: they need a nightly price."""
    rows = db.query(models.ShortletSettings).filter(
        models.ShortletSettings.nightly_price_minor.isnot(None),
        models.ShortletSettings.nightly_price_minor > 0,
    ).order_by(models.ShortletSettings.property_id).all()
    return [SettingsSnapshot.from_row(row) for row in rows]


# --- Blocking rows (the availability resolver's storage boundary) ---

def list_blocking_rows(
        db: Session,
        property_id: int,
        date_from: datetime.date,
        date_to: datetime.date,
        exclude_booking_id: Optional[int] = None,
) -> BlockingRows:
    """
    Bookings in a blocking status and host blocks overlapping [date_from, date_to).
    The logic for an overlap is:
    (Existing Start Date < Window End) AND (Existing End Date > Window Start)
    """
    booking_query = db.query(models.Booking).filter(
        models.Booking.property_id == property_id,
        models.Booking.status.in_(BLOCKING_STATUS_VALUES),
        models.Booking.check_in < date_to,
        models.Booking.check_out > date_from,
    )
    if exclude_booking_id is not None:
        booking_query = booking_query.filter(models.Booking.id != exclude_booking_id)

    blocks = db.query(models.ShortletBlock).filter(
        models.ShortletBlock.property_id == property_id,
        models.ShortletBlock.date_from < date_to,
        models.ShortletBlock.date_to > date_from,
    ).order_by(models.ShortletBlock.date_from).all()

    return BlockingRows(
        bookings=[
            BookingSpan(id=b.id, date_from=b.check_in, date_to=b.check_out, status=b.status)
            for b in booking_query.order_by(models.Booking.check_in).all()
        ],
        blocks=[
            BlockSpan(id=b.id, date_from=b.date_from, date_to=b.date_to, reason=b.reason)
            for b in blocks
        ],
    )


class SqlBlockingRowStore:
    """Binds the storage functions to one session for the availability resolver."""

    def __init__(self, db: Session):
        self.db = db

    def list_blocking_rows(self, property_id, date_from, date_to, exclude_booking_id=None) -> BlockingRows:
        return list_blocking_rows(self.db, property_id, date_from, date_to, exclude_booking_id)

    def get_shortlet_settings(self, property_id) -> Optional[SettingsSnapshot]:
        return get_shortlet_settings(self.db, property_id)


def list_unavailable_ranges_for_properties(
        db: Session,
        property_ids: list[int],
        date_from: datetime.date,
        date_to: datetime.date,
) -> dict[int, list[UnavailableRange]]:
    """Batch version of list_blocking_rows for search results."""
    ranges: dict[int, list[UnavailableRange]] = {pid: [] for pid in property_ids}
    if not property_ids:
        return ranges

    bookings = db.query(models.Booking).filter(
        models.Booking.property_id.in_(property_ids),
        models.Booking.status.in_(BLOCKING_STATUS_VALUES),
        models.Booking.check_in < date_to,
        models.Booking.check_out > date_from,
    ).all()
    blocks = db.query(models.ShortletBlock).filter(
        models.ShortletBlock.property_id.in_(property_ids),
        models.ShortletBlock.date_from < date_to,
        models.ShortletBlock.date_to > date_from,
    ).all()

    for b in bookings:
        ranges[b.property_id].append(
            UnavailableRange(start=b.check_in, end=b.check_out, source=SOURCE_BOOKING, booking_id=b.id)
        )
    for b in blocks:
        ranges[b.property_id].append(
            UnavailableRange(start=b.date_from, end=b.date_to, source=SOURCE_HOST_BLOCK)
        )
    return ranges


# --- Outbox ---

def create_availability_event_in_outbox(
        db: Session,
        property_id: int,
        event: str,
        start: Optional[datetime.date] = None,
        end: Optional[datetime.date] = None,
        booking_id: Optional[int] = None,
):
    """
    Creates an availability event in the outbox table.
    Note: Does NOT commit. The caller owns the transaction.
    """
    payload = {
        "property_id": property_id,
        "event": event,
        "booking_id": booking_id,
        "start": start.isoformat() if start else None,
        "end": end.isoformat() if end else None,
    }

    db_outbox_event = models.OutboxEvent(
        topic=settings.KAFKA_AVAILABILITY_TOPIC,
        payload=json.dumps(payload),
        status="PENDING"
    )
    db.add(db_outbox_event)


def _emit_booking_range_event(db: Session, booking: models.Booking, event: str):
    create_availability_event_in_outbox(
        db, booking.property_id, event,
        start=booking.check_in, end=booking.check_out, booking_id=booking.id,
    )


# --- Bookings ---

def create_booking(
        db: Session,
        booking: schemas.BookingCreate,
        guest_user_id: int,
        host_user_id: int,
        pricing: PricingBreakdown,
        status: BookingStatus,
        currency: str,
        respond_by: Optional[datetime.datetime] = None,
) -> models.Booking:
    """
    Atomically creates a new booking and, when it blocks dates, an outbox event.
    An overlapping insert is rejected by the exclusion constraint; the error is
    re-raised after rollback for the caller to classify.
    """
    db_booking = models.Booking(
        property_id=booking.property_id,
        guest_user_id=guest_user_id,
        host_user_id=host_user_id,
        check_in=booking.check_in,
        check_out=booking.check_out,
        nights=pricing.nights,
        nightly_price_minor=pricing.nightly_price_minor,
        cleaning_fee_minor=pricing.cleaning_fee_minor,
        deposit_minor=pricing.deposit_minor,
        total_amount_minor=pricing.total_amount_minor,
        currency=currency,
        pricing_snapshot=pricing.as_snapshot(),
        status=status.value,
        respond_by=respond_by,
        expires_at=respond_by,
    )

    try:
        db.add(db_booking)
        db.flush()
        if blocks_availability(status):
            _emit_booking_range_event(db, db_booking, "range_blocked")
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(db_booking)
    return db_booking


def get_booking(db: Session, booking_id: int) -> Optional[models.Booking]:
    return db.query(models.Booking).filter(models.Booking.id == booking_id).first()


def get_bookings_by_guest(db: Session, guest_user_id: int, skip: int = 0, limit: int = 100):
    return db.query(models.Booking).filter(
        models.Booking.guest_user_id == guest_user_id
    ).order_by(models.Booking.id).offset(skip).limit(limit).all()


def get_bookings_by_host(db: Session, host_user_id: int, limit: int = 100):
    return db.query(models.Booking).filter(
        models.Booking.host_user_id == host_user_id,
        models.Booking.status != BookingStatus.PENDING_PAYMENT.value,
    ).order_by(models.Booking.created_at.desc(), models.Booking.id.desc()).limit(limit).all()


def apply_booking_status(db: Session, booking: models.Booking, new_status: BookingStatus, **fields):
    """
    Moves a booking to new_status and records the availability change in the outbox.
    Note: Does NOT commit.
    """
    was_blocking = blocks_availability(booking.status)
    booking.status = new_status.value
    for key, value in fields.items():
        setattr(booking, key, value)

    now_blocking = blocks_availability(new_status)
    if now_blocking and not was_blocking:
        _emit_booking_range_event(db, booking, "range_blocked")
    elif was_blocking and not now_blocking:
        _emit_booking_range_event(db, booking, "range_released")
    db.flush()


def get_due_pending_bookings(db: Session, now: datetime.datetime) -> list[models.Booking]:
    """Pending requests whose host response window has closed."""
    return db.query(models.Booking).filter(
        models.Booking.status == BookingStatus.PENDING.value,
        models.Booking.respond_by.isnot(None),
        models.Booking.respond_by < now,
    ).all()


def get_confirmed_bookings_ended_before(db: Session, day: datetime.date) -> list[models.Booking]:
    """Confirmed stays whose checkout date has passed."""
    return db.query(models.Booking).filter(
        models.Booking.status == BookingStatus.CONFIRMED.value,
        models.Booking.check_out < day,
    ).all()


# --- Host blocks ---

def list_blocks(db: Session, property_id: int) -> list[models.ShortletBlock]:
    return db.query(models.ShortletBlock).filter(
        models.ShortletBlock.property_id == property_id
    ).order_by(models.ShortletBlock.date_from).all()


def create_block(db: Session, property_id: int, block: schemas.BlockCreate) -> models.ShortletBlock:
    db_block = models.ShortletBlock(property_id=property_id, **block.model_dump())
    db.add(db_block)
    create_availability_event_in_outbox(
        db, property_id, "range_blocked", start=block.date_from, end=block.date_to,
    )
    db.commit()
    db.refresh(db_block)
    return db_block


def delete_block(db: Session, property_id: int, block_id: int) -> bool:
    db_block = db.query(models.ShortletBlock).filter(
        models.ShortletBlock.id == block_id,
        models.ShortletBlock.property_id == property_id,
    ).first()
    if db_block is None:
        return False
    create_availability_event_in_outbox(
        db, property_id, "range_released", start=db_block.date_from, end=db_block.date_to,
    )
    db.delete(db_block)
    db.commit()
    return True


# --- Payments ---

def get_latest_payment_for_booking(db: Session, booking_id: int) -> Optional[models.Payment]:
    return db.query(models.Payment).filter(
        models.Payment.booking_id == booking_id
    ).order_by(models.Payment.updated_at.desc(), models.Payment.id.desc()).first()


def get_payment_by_reference(db: Session, reference: str) -> Optional[models.Payment]:
    return db.query(models.Payment).filter(models.Payment.reference == reference).first()


def record_payment_status(db: Session, webhook: schemas.PaymentWebhook, status: str) -> models.Payment:
    """
    Upserts the payment row by reference. Note: Does NOT commit.
    """
    payment = get_payment_by_reference(db, webhook.reference)
    if payment is None:
        payment = models.Payment(
            reference=webhook.reference,
            booking_id=webhook.booking_id,
            provider=webhook.provider,
            amount_minor=webhook.amount_minor,
        )
        db.add(payment)
    payment.status = status
    if webhook.amount_minor:
        payment.amount_minor = webhook.amount_minor
    db.flush()
    return payment
