import datetime
import logging
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from typing import List, Optional

from .. import schemas, crud, models, service
from ..availability import apply_prep_buffer, describe_conflicts, to_unavailable_ranges
from ..cancellation import cancellation_terms
from ..config import Settings
from ..database import get_db
from ..dependencies import CurrentUserId, get_listing_settings_or_404, get_settings, require_host
from ..entities import SettingsSnapshot
from ..errors import BookingRuleViolation, InvalidDate, InvalidNights
from ..ranges import expand_ranges_to_disabled_dates, next_valid_end_date

logger = logging.getLogger("shortlet_service")

router = APIRouter(prefix="/shortlets", tags=["Shortlets"])

STAY_LENGTH_VIOLATIONS = frozenset({"MIN_NIGHTS_NOT_MET", "MAX_NIGHTS_EXCEEDED"})


def _range_read(r) -> schemas.UnavailableRangeRead:
    return schemas.UnavailableRangeRead(start=r.start, end=r.end, source=r.source, booking_id=r.booking_id)


def _settings_read(row: models.ShortletSettings) -> schemas.ShortletSettingsRead:
    terms = cancellation_terms(row.cancellation_policy)
    return schemas.ShortletSettingsRead(
        property_id=row.property_id,
        host_user_id=row.host_user_id,
        booking_mode=row.booking_mode if row.booking_mode in ("instant", "request") else "request",
        nightly_price_minor=row.nightly_price_minor,
        cleaning_fee_minor=row.cleaning_fee_minor or 0,
        deposit_minor=row.deposit_minor or 0,
        currency=row.currency or "NGN",
        min_nights=row.min_nights or 1,
        max_nights=row.max_nights,
        advance_notice_hours=row.advance_notice_hours or 0,
        prep_days=row.prep_days or 0,
        cancellation_policy=terms.policy.value,
        checkin_time=row.checkin_time,
        checkout_time=row.checkout_time,
        cancellation_label=terms.label,
        free_cancellation=terms.free_cancellation,
    )


@router.get("/{property_id}/availability", response_model=schemas.AvailabilityRead)
def read_availability(
        property_id: int,
        date_from: Optional[datetime.date] = None,
        date_to: Optional[datetime.date] = None,
        db: Session = Depends(get_db),
        config: Settings = Depends(get_settings),
        row: models.ShortletSettings = Depends(get_listing_settings_or_404),
):
    """
    Booked and blocked ranges for the calendar, defaulting to the next AVAILABILITY_WINDOW_DAYS.
    """
    window_start = date_from or datetime.date.today()
    window_end = date_to or window_start + datetime.timedelta(days=config.AVAILABILITY_WINDOW_DAYS)
    if window_start >= window_end:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid availability window")

    listing = SettingsSnapshot.from_row(row)
    ranges = to_unavailable_ranges(crud.list_blocking_rows(db, property_id, window_start, window_end))
    return schemas.AvailabilityRead(
        property_id=property_id,
        window_start=window_start,
        window_end=window_end,
        blocked_ranges=[_range_read(r) for r in ranges if not r.is_booking],
        booked_ranges=[_range_read(r) for r in ranges if r.is_booking],
        prep_days=listing.prep_days,
        min_nights=listing.min_nights,
        max_nights=listing.max_nights,
    )


@router.get("/{property_id}/availability/check", response_model=schemas.ConflictReportRead)
def check_availability(
        property_id: int,
        check_in: datetime.date,
        check_out: datetime.date,
        exclude_booking_id: Optional[int] = None,
        db: Session = Depends(get_db),
        row: models.ShortletSettings = Depends(get_listing_settings_or_404),
):
    """
    Conflict report for a candidate stay; exclude_booking_id supports edit flows.
    """
    if check_in >= check_out:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Check-out must be after check-in.")

    report = service.check_availability(
        crud.SqlBlockingRowStore(db), property_id, check_in, check_out, exclude_booking_id,
    )
    return schemas.ConflictReportRead(
        has_conflict=report.has_conflict,
        conflicting_dates=report.conflicting_dates,
        conflicting_ranges=[_range_read(r) for r in report.conflicting_ranges],
        prep_days=report.prep_days,
        messages=describe_conflicts(report),
    )


@router.get("/{property_id}/quote", response_model=schemas.QuoteRead)
def quote_stay(
        property_id: int,
        check_in: datetime.date,
        check_out: datetime.date,
        db: Session = Depends(get_db),
        config: Settings = Depends(get_settings),
        row: models.ShortletSettings = Depends(get_listing_settings_or_404),
):
    """
    Price a stay from the listing's current rates, plus whether it is bookable.
    """
    listing = SettingsSnapshot.from_row(row)
    try:
        pricing = service.price_stay_for_listing(listing, check_in, check_out)
    except (InvalidDate, InvalidNights) as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)

    unavailable_reason = None
    try:
        service.validate_stay_rules(listing, check_in, check_out, datetime.datetime.utcnow())
    except BookingRuleViolation as e:
        unavailable_reason = e.code

    report = service.check_availability(crud.SqlBlockingRowStore(db), property_id, check_in, check_out)
    if unavailable_reason is None and report.has_conflict:
        unavailable_reason = "DATES_UNAVAILABLE"

    next_check_out = None
    if report.has_conflict or unavailable_reason in STAY_LENGTH_VIOLATIONS:
        window_end = check_in + datetime.timedelta(days=config.NEXT_END_SEARCH_LIMIT_DAYS)
        rows = crud.list_blocking_rows(
            db, property_id, check_in - datetime.timedelta(days=listing.prep_days), window_end,
        )
        disabled = expand_ranges_to_disabled_dates(
            apply_prep_buffer(to_unavailable_ranges(rows), listing.prep_days), check_in, window_end,
        )
        next_check_out = next_valid_end_date(
            check_in, disabled, listing.min_nights, listing.max_nights, config.NEXT_END_SEARCH_LIMIT_DAYS,
        )

    return schemas.QuoteRead(
        property_id=property_id,
        check_in=check_in,
        check_out=check_out,
        nights=pricing.nights,
        nightly_price_minor=pricing.nightly_price_minor,
        subtotal_minor=pricing.subtotal_minor,
        cleaning_fee_minor=pricing.cleaning_fee_minor,
        deposit_minor=pricing.deposit_minor,
        total_amount_minor=pricing.total_amount_minor,
        currency=listing.currency,
        available=unavailable_reason is None,
        unavailable_reason=unavailable_reason,
        next_valid_check_out=next_check_out,
    )


@router.get("/{property_id}/settings", response_model=schemas.ShortletSettingsRead)
def read_settings(row: models.ShortletSettings = Depends(get_listing_settings_or_404)):
    return _settings_read(row)


@router.put("/{property_id}/settings", response_model=schemas.ShortletSettingsRead)
def update_settings(
        property_id: int,
        payload: schemas.ShortletSettingsUpdate,
        user_id: CurrentUserId,
        db: Session = Depends(get_db),
):
    """
    Create or update the listing's shortlet settings. The first writer becomes the host.
    """
    existing = crud.get_shortlet_settings_row(db, property_id)
    if existing is not None:
        require_host(existing, user_id)
    row = crud.upsert_shortlet_settings(db, property_id, user_id, payload)
    logger.info(f"Shortlet settings saved for property {property_id}.")
    return _settings_read(row)


@router.get("/{property_id}/blocks", response_model=List[schemas.BlockRead])
def read_blocks(
        property_id: int,
        db: Session = Depends(get_db),
        row: models.ShortletSettings = Depends(get_listing_settings_or_404),
):
    return crud.list_blocks(db, property_id)


@router.post("/{property_id}/blocks", response_model=schemas.BlockRead, status_code=status.HTTP_201_CREATED)
def create_block(
        property_id: int,
        payload: schemas.BlockCreate,
        user_id: CurrentUserId,
        db: Session = Depends(get_db),
        row: models.ShortletSettings = Depends(get_listing_settings_or_404),
):
    """
    Host blocks nights [date_from, date_to). Blocking over an existing booking is refused.
    """
    require_host(row, user_id)
    rows = crud.list_blocking_rows(db, property_id, payload.date_from, payload.date_to)
    if rows.bookings:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="These dates overlap an existing booking.",
        )
    return crud.create_block(db, property_id, payload)


@router.delete("/{property_id}/blocks/{block_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_block(
        property_id: int,
        block_id: int,
        user_id: CurrentUserId,
        db: Session = Depends(get_db),
        row: models.ShortletSettings = Depends(get_listing_settings_or_404),
):
    require_host(row, user_id)
    if not crud.delete_block(db, property_id, block_id):
        raise HTTPException(status_code=404, detail="Block not found")
