from sqlalchemy import (
    Boolean, Column, Date, DDL, Integer, String, Text, TIMESTAMP, Index, JSON, event,
)
from .database import Base
import datetime


class ShortletSettings(Base):
    __tablename__ = "shortlet_settings"

    # One row per listing. The listing itself lives in the property service.
    property_id = Column(Integer, primary_key=True)
    host_user_id = Column(Integer, index=True, nullable=False)

    booking_mode = Column(String(20), default="request", nullable=False)
    nightly_price_minor = Column(Integer, nullable=True)
    cleaning_fee_minor = Column(Integer, default=0, nullable=False)
    deposit_minor = Column(Integer, default=0, nullable=False)
    currency = Column(String(3), default="NGN", nullable=False)

    min_nights = Column(Integer, default=1, nullable=False)
    max_nights = Column(Integer, nullable=True)
    advance_notice_hours = Column(Integer, default=0, nullable=False)
    prep_days = Column(Integer, default=0, nullable=False)
    cancellation_policy = Column(String(20), default="flexible_48h", nullable=True)

    checkin_time = Column(String(5), nullable=True)
    checkout_time = Column(String(5), nullable=True)

    created_at = Column(TIMESTAMP, default=datetime.datetime.utcnow)
    updated_at = Column(TIMESTAMP, default=datetime.datetime.utcnow, onupdate=datetime.datetime.utcnow)


class Booking(Base):
    __tablename__ = "shortlet_bookings"

    id = Column(Integer, primary_key=True, index=True)

    # These are just IDs from other services.
    # No direct DB relationship is enforced.
    property_id = Column(Integer, index=True, nullable=False)
    guest_user_id = Column(Integer, index=True, nullable=False)
    host_user_id = Column(Integer, index=True, nullable=False)

    # Half-open stay: check_out is not a night
    check_in = Column(Date, nullable=False)
    check_out = Column(Date, nullable=False)
    nights = Column(Integer, nullable=False)

    # Priced once at creation, never recomputed from the live listing price
    nightly_price_minor = Column(Integer, nullable=False)
    cleaning_fee_minor = Column(Integer, default=0, nullable=False)
    deposit_minor = Column(Integer, default=0, nullable=False)
    total_amount_minor = Column(Integer, nullable=False)
    currency = Column(String(3), default="NGN", nullable=False)
    pricing_snapshot = Column(JSON, nullable=True)

    status = Column(String(20), default="pending_payment", nullable=False)
    respond_by = Column(TIMESTAMP, nullable=True)
    expires_at = Column(TIMESTAMP, nullable=True)
    refund_required = Column(Boolean, default=False, nullable=False)
    host_decision_reason = Column(Text, nullable=True)

    created_at = Column(TIMESTAMP, default=datetime.datetime.utcnow)
    updated_at = Column(TIMESTAMP, default=datetime.datetime.utcnow, onupdate=datetime.datetime.utcnow)

    __table_args__ = (
        Index("ix_shortlet_bookings_property_dates", "property_id", "check_in", "check_out"),
    )


# The real double-booking guard. The availability check in the API is only a
# pre-flight filter; concurrent inserts are settled here. SQLite (tests) skips it.
event.listen(
    Booking.__table__,
    "after_create",
    DDL(
        "CREATE EXTENSION IF NOT EXISTS btree_gist; "
        "ALTER TABLE shortlet_bookings ADD CONSTRAINT shortlet_bookings_no_overlap "
        "EXCLUDE USING gist (property_id WITH =, daterange(check_in, check_out, '[)') WITH &&) "
        "WHERE (status IN ('pending', 'confirmed'))"
    ).execute_if(dialect="postgresql"),
)


class ShortletBlock(Base):
    __tablename__ = "shortlet_blocks"

    id = Column(Integer, primary_key=True, index=True)
    property_id = Column(Integer, index=True, nullable=False)

    # Half-open like bookings: date_to is the first free night
    date_from = Column(Date, nullable=False)
    date_to = Column(Date, nullable=False)
    reason = Column(String(255), nullable=True)

    created_at = Column(TIMESTAMP, default=datetime.datetime.utcnow)


class Payment(Base):
    __tablename__ = "shortlet_payments"

    id = Column(Integer, primary_key=True, index=True)
    reference = Column(String(100), unique=True, index=True, nullable=False)
    booking_id = Column(Integer, index=True, nullable=False)
    provider = Column(String(30), nullable=True)
    amount_minor = Column(Integer, default=0, nullable=False)

    # The provider is authoritative; we only record what its webhook says
    status = Column(String(20), default="initiated", nullable=False)

    created_at = Column(TIMESTAMP, default=datetime.datetime.utcnow)
    updated_at = Column(TIMESTAMP, default=datetime.datetime.utcnow, onupdate=datetime.datetime.utcnow)


class OutboxEvent(Base):
    __tablename__ = "outbox_events"

    id = Column(Integer, primary_key=True, index=True)

    # Status to track if the event has been sent
    status = Column(String(20), default="PENDING", nullable=False)

    # The Kafka topic to send the message to
    topic = Column(String(255), nullable=False)

    # The full JSON payload to be sent
    payload = Column(Text, nullable=False)

    created_at = Column(TIMESTAMP, default=datetime.datetime.utcnow)

    # An index on 'status' will make the poller's query much faster
    __table_args__ = (
        Index('ix_outbox_events_status', 'status'),
    )
