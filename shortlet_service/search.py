import datetime
from enum import Enum
from typing import Iterable, Mapping

from .availability import resolve_availability_conflicts
from .cancellation import is_free_policy
from .entities import SettingsSnapshot
from .lifecycle import BookingMode
from .ranges import UnavailableRange


class SearchSort(str, Enum):
    RECOMMENDED = "recommended"
    PRICE_LOW = "price_low"
    PRICE_HIGH = "price_high"
    NEWEST = "newest"


def parse_sort(value) -> SearchSort:
    try:
        return SearchSort(str(value or "").strip().lower())
    except ValueError:
        return SearchSort.RECOMMENDED


def unavailable_property_ids(
        candidates: Iterable[SettingsSnapshot],
        ranges_by_property: Mapping[int, list[UnavailableRange]],
        check_in: datetime.date,
        check_out: datetime.date,
) -> set[int]:
    """Listings that cannot take the stay, using each listing's own prep buffer."""
    unavailable = set()
    for listing in candidates:
        report = resolve_availability_conflicts(
            check_in, check_out, ranges_by_property.get(listing.property_id, []), listing.prep_days,
        )
        if report.has_conflict:
            unavailable.add(listing.property_id)
    return unavailable


def filter_free_cancellation(candidates: Iterable[SettingsSnapshot]) -> list[SettingsSnapshot]:
    return [listing for listing in candidates if is_free_policy(listing.cancellation_policy)]


def sort_search_results(rows: list[SettingsSnapshot], sort: SearchSort) -> list[SettingsSnapshot]:
    """
    Stable sorts; newer listings are assumed to carry higher property ids.
    Recommended puts instant-book first, then cheapest, then newest.
    """
    if sort == SearchSort.PRICE_LOW:
        return sorted(rows, key=lambda r: (r.nightly_price_minor, -r.property_id))
    if sort == SearchSort.PRICE_HIGH:
        return sorted(rows, key=lambda r: (-r.nightly_price_minor, -r.property_id))
    if sort == SearchSort.NEWEST:
        return sorted(rows, key=lambda r: -r.property_id)
    return sorted(
        rows,
        key=lambda r: (r.booking_mode != BookingMode.INSTANT.value, r.nightly_price_minor, -r.property_id),
    )
