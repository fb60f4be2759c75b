"""
Availability resolution for a single property.

The check here is an optimistic pre-flight filter. Two guests can both pass it
before either booking commits; the exclusion constraint on the bookings table
is what finally rejects the second insert (see crud.create_booking).
"""
import datetime
import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional, Protocol

from .entities import BlockingRows, SettingsSnapshot
from .pricing import StayRange, ranges_overlap, try_parse_date_key
from .ranges import SOURCE_BOOKING, SOURCE_HOST_BLOCK, UnavailableRange, iter_nights

logger = logging.getLogger("shortlet_service")


class BlockingRowStore(Protocol):
    def list_blocking_rows(
            self,
            property_id: int,
            date_from: datetime.date,
            date_to: datetime.date,
            exclude_booking_id: Optional[int] = None,
    ) -> BlockingRows:
        ...

    def get_shortlet_settings(self, property_id: int) -> Optional[SettingsSnapshot]:
        ...


@dataclass(frozen=True)
class ConflictReport:
    has_conflict: bool
    conflicting_dates: list[datetime.date] = field(default_factory=list)
    conflicting_ranges: list[UnavailableRange] = field(default_factory=list)
    prep_days: int = 0


def to_unavailable_ranges(rows: BlockingRows) -> list[UnavailableRange]:
    ranges = [
        UnavailableRange(start=b.date_from, end=b.date_to, source=SOURCE_BOOKING, booking_id=b.id)
        for b in rows.bookings
    ]
    ranges.extend(
        UnavailableRange(start=b.date_from, end=b.date_to, source=SOURCE_HOST_BLOCK)
        for b in rows.blocks
    )
    return ranges


def apply_prep_buffer(ranges: Iterable[UnavailableRange], prep_days) -> list[UnavailableRange]:
    """
    Extends each booking's end by prep_days so the next stay cannot start
    before the unit has been turned over. Host blocks are left as they are.
    """
    days = max(0, int(prep_days or 0))
    if days < 1:
        return list(ranges)
    padding = datetime.timedelta(days=days)
    return [
        UnavailableRange(item.start, item.end + padding, item.source, item.booking_id)
        if item.is_booking else item
        for item in ranges
    ]


def resolve_availability_conflicts(
        check_in,
        check_out,
        unavailable_ranges: Iterable[UnavailableRange],
        prep_days=0,
) -> ConflictReport:
    start = try_parse_date_key(check_in)
    end = try_parse_date_key(check_out)
    days = max(0, int(prep_days or 0))
    if start is None or end is None or end <= start:
        return ConflictReport(has_conflict=False, prep_days=days)

    stay = StayRange(start, end)
    effective = [
        item for item in apply_prep_buffer(unavailable_ranges, days)
        if not item.is_degenerate and ranges_overlap(item, stay)
    ]
    if not effective:
        return ConflictReport(has_conflict=False, prep_days=days)

    conflicting_dates = [
        night for night in iter_nights(start, end)
        if any(item.start <= night < item.end for item in effective)
    ]
    return ConflictReport(
        has_conflict=bool(conflicting_dates),
        conflicting_dates=conflicting_dates,
        conflicting_ranges=effective,
        prep_days=days,
    )


def resolve_conflict(
        store: BlockingRowStore,
        property_id: int,
        check_in,
        check_out,
        exclude_booking_id: Optional[int] = None,
) -> ConflictReport:
    """
    Checks a candidate stay against the property's bookings and host blocks.

    The query window is widened backwards by prep_days: a booking that checked
    out up to prep_days before check_in still blocks the start of this stay.
    The booking being edited (exclude_booking_id) never conflicts with itself.
    """
    start = try_parse_date_key(check_in)
    end = try_parse_date_key(check_out)
    settings = store.get_shortlet_settings(property_id)
    prep_days = settings.prep_days if settings else 0

    if start is None or end is None or end <= start:
        return ConflictReport(has_conflict=False, prep_days=prep_days)

    window_start = start - datetime.timedelta(days=prep_days)
    rows = store.list_blocking_rows(property_id, window_start, end, exclude_booking_id=exclude_booking_id)
    ranges = [
        item for item in to_unavailable_ranges(rows)
        if exclude_booking_id is None or item.booking_id != exclude_booking_id
    ]

    report = resolve_availability_conflicts(start, end, ranges, prep_days)
    if report.has_conflict:
        logger.info(
            f"Property {property_id} unavailable for {start}..{end}: "
            f"{len(report.conflicting_dates)} night(s) blocked by {len(report.conflicting_ranges)} range(s)."
        )
    return report


def describe_conflicts(report: ConflictReport) -> list[str]:
    """Short diagnostics such as 'Mar 14-16 unavailable due to another booking'."""
    messages = []
    for item in report.conflicting_ranges:
        last_night = item.end - datetime.timedelta(days=1)
        cause = "another booking" if item.is_booking else "a host block"
        if last_night == item.start:
            span = item.start.strftime("%b %d")
        elif last_night.month == item.start.month:
            span = f"{item.start.strftime('%b %d')}-{last_night.day:02d}"
        else:
            span = f"{item.start.strftime('%b %d')}-{last_night.strftime('%b %d')}"
        messages.append(f"{span} unavailable due to {cause}")
    return messages
