"""
Engine entry points used by the routers.

Everything here is pure apart from check_availability, which reads through
the store it is given.
"""
import datetime
from typing import Mapping, Optional

from . import availability, lifecycle, pagination, pricing, return_status
from .config import Settings
from .entities import SettingsSnapshot
from .errors import BookingRuleViolation, InvalidNights


def check_availability(store, property_id: int, check_in, check_out, exclude_booking_id: Optional[int] = None):
    return availability.resolve_conflict(store, property_id, check_in, check_out, exclude_booking_id)


def price_stay(check_in, check_out, nightly_price_minor, fees: Optional[Mapping] = None) -> pricing.PricingBreakdown:
    fees = fees or {}
    return pricing.calculate_pricing(
        check_in,
        check_out,
        nightly_price_minor,
        cleaning_fee_minor=fees.get("cleaning_fee_minor", 0),
        deposit_minor=fees.get("deposit_minor", 0),
    )


def price_stay_for_listing(listing: SettingsSnapshot, check_in, check_out) -> pricing.PricingBreakdown:
    return price_stay(check_in, check_out, listing.nightly_price_minor, {
        "cleaning_fee_minor": listing.cleaning_fee_minor,
        "deposit_minor": listing.deposit_minor,
    })


def respond_to_booking(current_status, action) -> lifecycle.BookingStatus:
    return lifecycle.respond_to_booking(current_status, action)


def classify_booking_create_error(message) -> lifecycle.CreateErrorClassification:
    return lifecycle.classify_booking_create_error(message)


def reconcile_return_state(booking_status, payment_status, elapsed_ms=0, config: Optional[Settings] = None):
    timeout_ms = config.RETURN_POLL_TIMEOUT_MS if config else return_status.DEFAULT_POLL_TIMEOUT_MS
    return return_status.reconcile_return_state(booking_status, payment_status, elapsed_ms, timeout_ms)


def _search_limits(config: Optional[Settings]) -> tuple[int, int]:
    if config is None:
        return pagination.DEFAULT_MAX_LIMIT, pagination.DEFAULT_LIMIT
    return config.SEARCH_MAX_LIMIT, config.SEARCH_DEFAULT_LIMIT


def resolve_search_pagination(params: pagination.PaginationInput, config: Optional[Settings] = None):
    max_limit, default_limit = _search_limits(config)
    return pagination.resolve_pagination(params, max_limit, default_limit)


def paginate_search_results(rows, params: pagination.PaginationInput, config: Optional[Settings] = None):
    max_limit, default_limit = _search_limits(config)
    return pagination.paginate_search_results(rows, params, max_limit=max_limit, default_limit=default_limit)


def validate_stay_rules(
        listing: SettingsSnapshot,
        check_in: datetime.date,
        check_out: datetime.date,
        now: datetime.datetime,
) -> int:
    """
    Checks a requested stay against the listing's rules and returns its nights.
    Raises BookingRuleViolation with a code classify_booking_create_error knows.
    """
    if listing.nightly_price_minor <= 0:
        raise BookingRuleViolation("NIGHTLY_PRICE_REQUIRED")

    try:
        nights = pricing.calculate_nights(check_in, check_out)
    except InvalidNights:
        raise BookingRuleViolation("INVALID_NIGHTS")

    if nights < listing.min_nights:
        raise BookingRuleViolation("MIN_NIGHTS_NOT_MET")
    if listing.max_nights is not None and nights > listing.max_nights:
        raise BookingRuleViolation("MAX_NIGHTS_EXCEEDED")

    if check_in < now.date():
        raise BookingRuleViolation("ADVANCE_NOTICE_REQUIRED")
    # Check-in counts from midnight of the check-in date
    if listing.advance_notice_hours > 0:
        earliest = now + datetime.timedelta(hours=listing.advance_notice_hours)
        if datetime.datetime.combine(check_in, datetime.time.min) < earliest:
            raise BookingRuleViolation("ADVANCE_NOTICE_REQUIRED")

    return nights


def initial_booking_status(config: Settings) -> lifecycle.BookingStatus:
    if config.PAYMENT_BEFORE_CONFIRMATION:
        return lifecycle.BookingStatus.PENDING_PAYMENT
    return lifecycle.BookingStatus.PENDING


def respond_by_deadline(now: datetime.datetime, config: Settings) -> datetime.datetime:
    return now + datetime.timedelta(hours=config.HOST_RESPONSE_WINDOW_HOURS)
