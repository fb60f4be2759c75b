import datetime
from dataclasses import dataclass
from typing import Iterable, Optional

from .pricing import try_parse_date_key

ONE_DAY = datetime.timedelta(days=1)

SOURCE_BOOKING = "booking"
SOURCE_HOST_BLOCK = "host_block"


@dataclass(frozen=True)
class UnavailableRange:
    """Nights [start, end) a property cannot be booked for."""
    start: datetime.date
    end: datetime.date
    source: str = SOURCE_HOST_BLOCK
    booking_id: Optional[int] = None

    @property
    def is_booking(self) -> bool:
        return self.source == SOURCE_BOOKING or self.booking_id is not None

    @property
    def is_degenerate(self) -> bool:
        return self.end <= self.start


@dataclass(frozen=True)
class RangeValidation:
    valid: bool
    reason: Optional[str]
    nights: Optional[int]


def iter_nights(start: datetime.date, end: datetime.date):
    cursor = start
    while cursor < end:
        yield cursor
        cursor += ONE_DAY


def expand_ranges_to_disabled_dates(
        ranges: Iterable[UnavailableRange],
        window_start: Optional[datetime.date] = None,
        window_end: Optional[datetime.date] = None,
) -> set[datetime.date]:
    """
    Flattens unavailable ranges into the set of blocked nights inside the window.
    A range's end date is a valid checkout/checkin boundary and is never disabled.
    """
    disabled: set[datetime.date] = set()
    for item in ranges:
        if item is None or item.is_degenerate:
            continue
        start, stop = item.start, item.end
        if window_start is not None and start < window_start:
            start = window_start
        if window_end is not None and stop > window_end:
            stop = window_end
        disabled.update(iter_nights(start, stop))
    return disabled


def _normalize_bounds(min_nights, max_nights) -> tuple[int, Optional[int]]:
    minimum = max(1, int(min_nights)) if isinstance(min_nights, (int, float)) else 1
    maximum = None
    if isinstance(max_nights, (int, float)) and max_nights == max_nights and max_nights != float("inf"):
        maximum = max(minimum, int(max_nights))
    return minimum, maximum


def validate_range_selection(
        check_in,
        check_out,
        disabled: set[datetime.date],
        min_nights=1,
        max_nights=None,
) -> RangeValidation:
    if not check_in or not check_out:
        return RangeValidation(False, "missing_dates", None)

    start = try_parse_date_key(check_in)
    end = try_parse_date_key(check_out)
    if start is None or end is None:
        return RangeValidation(False, "invalid_date", None)

    nights = (end - start).days
    if nights < 1:
        return RangeValidation(False, "checkout_before_checkin", None)

    minimum, maximum = _normalize_bounds(min_nights, max_nights)
    if nights < minimum:
        return RangeValidation(False, "min_nights", nights)
    if maximum is not None and nights > maximum:
        return RangeValidation(False, "max_nights", nights)

    # The checkout date itself is not stayed, so same-day turnovers are fine
    for night in iter_nights(start, end):
        if night in disabled:
            return RangeValidation(False, "includes_unavailable_night", nights)

    return RangeValidation(True, None, nights)


def is_range_valid(check_in, check_out, disabled, min_nights=1, max_nights=None) -> bool:
    return validate_range_selection(check_in, check_out, disabled, min_nights, max_nights).valid


def next_valid_end_date(
        check_in,
        disabled: set[datetime.date],
        min_nights=1,
        max_nights=None,
        search_limit_days: int = 365,
) -> Optional[datetime.date]:
    """
    Nearest legal checkout for a check-in, scanning forward one day at a time.
    Returns None when a blocked night sits before min_nights is reached, since
    no longer stay can skip over it either.
    """
    start = try_parse_date_key(check_in)
    if start is None:
        return None

    minimum, maximum = _normalize_bounds(min_nights, max_nights)
    limit = max(1, int(search_limit_days or 0))

    for night in iter_nights(start, start + datetime.timedelta(days=minimum)):
        if night in disabled:
            return None

    for offset in range(minimum, limit + 1):
        if maximum is not None and offset > maximum:
            return None
        candidate = start + datetime.timedelta(days=offset)
        if is_range_valid(start, candidate, disabled, minimum, maximum):
            return candidate
        # Once a blocked night is inside the stay every longer stay contains it too
        if (candidate - ONE_DAY) in disabled:
            return None
    return None
