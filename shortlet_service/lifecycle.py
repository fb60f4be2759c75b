import datetime
import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .errors import InvalidStatusTransition


class BookingStatus(str, Enum):
    PENDING_PAYMENT = "pending_payment"
    PENDING = "pending"
    CONFIRMED = "confirmed"
    DECLINED = "declined"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    COMPLETED = "completed"


class HostAction(str, Enum):
    ACCEPT = "accept"
    DECLINE = "decline"


class BookingMode(str, Enum):
    INSTANT = "instant"
    REQUEST = "request"


BLOCKING_STATUSES = frozenset({BookingStatus.PENDING, BookingStatus.CONFIRMED})
CANCELLABLE_STATUSES = frozenset({
    BookingStatus.PENDING_PAYMENT,
    BookingStatus.PENDING,
    BookingStatus.CONFIRMED,
})
TERMINAL_STATUSES = frozenset({
    BookingStatus.DECLINED,
    BookingStatus.CANCELLED,
    BookingStatus.EXPIRED,
    BookingStatus.COMPLETED,
})

# Older clients send approve/decline; everything inside speaks accept/decline
LEGACY_DECISIONS = {
    "approve": HostAction.ACCEPT,
    "accept": HostAction.ACCEPT,
    "decline": HostAction.DECLINE,
}


def normalize_booking_status(status) -> Optional[BookingStatus]:
    if isinstance(status, BookingStatus):
        return status
    try:
        return BookingStatus(str(status or "").strip().lower())
    except ValueError:
        return None


def can_host_respond_to_booking(status) -> bool:
    return normalize_booking_status(status) == BookingStatus.PENDING


def blocks_availability(status) -> bool:
    return normalize_booking_status(status) in BLOCKING_STATUSES


def can_cancel_booking(status) -> bool:
    return normalize_booking_status(status) in CANCELLABLE_STATUSES


def is_terminal_status(status) -> bool:
    return normalize_booking_status(status) in TERMINAL_STATUSES


def map_legacy_decision(decision) -> HostAction:
    if isinstance(decision, HostAction):
        return decision
    key = str(decision or "").strip().lower()
    if key not in LEGACY_DECISIONS:
        raise ValueError(f"Unknown host decision: {decision!r}")
    return LEGACY_DECISIONS[key]


def respond_to_booking(current_status, action) -> BookingStatus:
    """Host decision on a pending request: accept -> confirmed, decline -> declined."""
    host_action = map_legacy_decision(action)
    if not can_host_respond_to_booking(current_status):
        raise InvalidStatusTransition(current_status, host_action.value)
    if host_action == HostAction.ACCEPT:
        return BookingStatus.CONFIRMED
    return BookingStatus.DECLINED


def settle_payment(current_status, booking_mode) -> BookingStatus:
    """
    Status after the payment provider reports success.
    Instant-book listings confirm straight away; request listings wait for the host.
    """
    if normalize_booking_status(current_status) != BookingStatus.PENDING_PAYMENT:
        raise InvalidStatusTransition(current_status, "payment_succeeded")
    if str(getattr(booking_mode, "value", booking_mode) or "") == BookingMode.INSTANT.value:
        return BookingStatus.CONFIRMED
    return BookingStatus.PENDING


def cancel_booking(current_status) -> BookingStatus:
    if not can_cancel_booking(current_status):
        raise InvalidStatusTransition(current_status, "cancel")
    return BookingStatus.CANCELLED


def expire_booking(current_status) -> BookingStatus:
    if normalize_booking_status(current_status) != BookingStatus.PENDING:
        raise InvalidStatusTransition(current_status, "expire")
    return BookingStatus.EXPIRED


def complete_booking(current_status) -> BookingStatus:
    if normalize_booking_status(current_status) != BookingStatus.CONFIRMED:
        raise InvalidStatusTransition(current_status, "complete")
    return BookingStatus.COMPLETED


# --- Booking creation failures ---

@dataclass(frozen=True)
class CreateErrorClassification:
    http_status: int
    message: str


DATES_UNAVAILABLE_MESSAGE = "Those dates are no longer available. Please choose different dates."

_OVERLAP_PATTERN = re.compile(
    r"exclusion constraint|no_overlap|overlap|conflicting key value|unique constraint|"
    r"duplicate key|dates_unavailable|dates_blocked",
    re.IGNORECASE,
)

_RULE_MESSAGES = {
    "MIN_NIGHTS_NOT_MET": "This stay is shorter than the listing's minimum number of nights.",
    "MAX_NIGHTS_EXCEEDED": "This stay is longer than the listing's maximum number of nights.",
    "ADVANCE_NOTICE_REQUIRED": "This listing needs more notice before check-in.",
    "NIGHTLY_PRICE_REQUIRED": "This listing is not bookable yet because it has no nightly price.",
    "INVALID_NIGHTS": "Check-out must be after check-in.",
}


def classify_booking_create_error(message) -> CreateErrorClassification:
    """
    Storage-level overlap violations are the DatesUnavailable conflict (409),
    stay-rule violations are conflicts too, anything else is a 500.
    """
    text = str(message or "")
    if _OVERLAP_PATTERN.search(text):
        return CreateErrorClassification(409, DATES_UNAVAILABLE_MESSAGE)
    upper = text.upper()
    for code, friendly in _RULE_MESSAGES.items():
        if code in upper:
            return CreateErrorClassification(409, friendly)
    return CreateErrorClassification(500, "Unable to create booking right now.")


# --- Host inbox ---

class HostInboxFilter(str, Enum):
    AWAITING_APPROVAL = "awaiting_approval"
    UPCOMING = "upcoming"
    PAST = "past"
    CLOSED = "closed"


_INBOX_ALIASES = {
    "awaiting": HostInboxFilter.AWAITING_APPROVAL,
    "awaiting_approval": HostInboxFilter.AWAITING_APPROVAL,
    "pending": HostInboxFilter.AWAITING_APPROVAL,
    "upcoming": HostInboxFilter.UPCOMING,
    "past": HostInboxFilter.PAST,
    "closed": HostInboxFilter.CLOSED,
    "cancelled": HostInboxFilter.CLOSED,
}


def parse_host_inbox_filter(value) -> Optional[HostInboxFilter]:
    return _INBOX_ALIASES.get(str(value or "").strip().lower())


def is_awaiting_approval(status, respond_by: Optional[datetime.datetime], now: datetime.datetime) -> bool:
    if normalize_booking_status(status) != BookingStatus.PENDING:
        return False
    return respond_by is None or respond_by > now


def resolve_host_inbox_filter(
        status,
        check_out: Optional[datetime.date],
        respond_by: Optional[datetime.datetime],
        now: datetime.datetime,
) -> HostInboxFilter:
    current = normalize_booking_status(status)
    if current == BookingStatus.PENDING:
        if is_awaiting_approval(current, respond_by, now):
            return HostInboxFilter.AWAITING_APPROVAL
        return HostInboxFilter.CLOSED
    if current == BookingStatus.COMPLETED:
        return HostInboxFilter.PAST
    if current == BookingStatus.CONFIRMED:
        if check_out is not None and check_out < now.date():
            return HostInboxFilter.PAST
        return HostInboxFilter.UPCOMING
    # pending_payment is not the host's business yet; the rest are closed
    return HostInboxFilter.CLOSED
