"""
Typed views of storage rows.

crud.py maps ORM rows into these right after loading them so the engine
modules never work on ORM objects or loose dicts.
"""
import datetime
from dataclasses import dataclass, field
from typing import Optional


@dataclass(frozen=True)
class BookingSpan:
    id: int
    date_from: datetime.date
    date_to: datetime.date
    status: str = "pending"


@dataclass(frozen=True)
class BlockSpan:
    date_from: datetime.date
    date_to: datetime.date
    id: Optional[int] = None
    reason: Optional[str] = None


@dataclass(frozen=True)
class BlockingRows:
    bookings: list[BookingSpan] = field(default_factory=list)
    blocks: list[BlockSpan] = field(default_factory=list)


@dataclass(frozen=True)
class SettingsSnapshot:
    property_id: int
    host_user_id: int
    booking_mode: str = "request"
    nightly_price_minor: int = 0
    cleaning_fee_minor: int = 0
    deposit_minor: int = 0
    prep_days: int = 0
    cancellation_policy: Optional[str] = None
    min_nights: int = 1
    max_nights: Optional[int] = None
    advance_notice_hours: int = 0
    currency: str = "NGN"

    @classmethod
    def from_row(cls, row) -> "SettingsSnapshot":
        return cls(
            property_id=row.property_id,
            host_user_id=row.host_user_id,
            booking_mode=row.booking_mode or "request",
            nightly_price_minor=max(0, int(row.nightly_price_minor or 0)),
            cleaning_fee_minor=max(0, int(row.cleaning_fee_minor or 0)),
            deposit_minor=max(0, int(row.deposit_minor or 0)),
            prep_days=max(0, int(row.prep_days or 0)),
            cancellation_policy=row.cancellation_policy,
            min_nights=max(1, int(row.min_nights or 1)),
            max_nights=int(row.max_nights) if row.max_nights else None,
            advance_notice_hours=max(0, int(row.advance_notice_hours or 0)),
            currency=row.currency or "NGN",
        )
