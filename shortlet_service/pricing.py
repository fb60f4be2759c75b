import datetime
import math
from dataclasses import dataclass

from .errors import InvalidDate, InvalidNights


@dataclass(frozen=True)
class StayRange:
    """Half-open stay [check_in, check_out). The checkout date is not a night."""
    check_in: datetime.date
    check_out: datetime.date

    @property
    def start(self) -> datetime.date:
        return self.check_in

    @property
    def end(self) -> datetime.date:
        return self.check_out


@dataclass(frozen=True)
class PricingBreakdown:
    nights: int
    nightly_price_minor: int
    subtotal_minor: int
    cleaning_fee_minor: int
    deposit_minor: int
    total_amount_minor: int

    def as_snapshot(self) -> dict:
        return {
            "nights": self.nights,
            "nightly_price_minor": self.nightly_price_minor,
            "subtotal_minor": self.subtotal_minor,
            "cleaning_fee_minor": self.cleaning_fee_minor,
            "deposit_minor": self.deposit_minor,
            "total_amount_minor": self.total_amount_minor,
        }


def parse_date_key(value) -> datetime.date:
    """
    Turns a date, datetime or 'YYYY-MM-DD' string into a calendar date.
    Datetimes keep only their date part so no timezone drift can creep in.
    """
    if isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, datetime.date):
        return value
    if isinstance(value, str):
        raw = value.strip()
        if len(raw) == 10:
            try:
                return datetime.date.fromisoformat(raw)
            except ValueError:
                pass
    raise InvalidDate(f"INVALID_DATE: {value!r} is not a YYYY-MM-DD date")


def try_parse_date_key(value) -> datetime.date | None:
    try:
        return parse_date_key(value)
    except InvalidDate:
        return None


def calculate_nights(check_in, check_out) -> int:
    start = parse_date_key(check_in)
    end = parse_date_key(check_out)
    nights = (end - start).days
    if nights < 1:
        raise InvalidNights(f"INVALID_NIGHTS: {end.isoformat()} is not after {start.isoformat()}")
    return nights


def clamp_minor(value) -> int:
    """Money in minor units: non-negative integers only, never an error."""
    if value is None or isinstance(value, bool):
        return 0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    if not math.isfinite(number) or number <= 0:
        return 0
    return int(number)


def calculate_pricing(
        check_in,
        check_out,
        nightly_price_minor,
        cleaning_fee_minor=0,
        deposit_minor=0,
) -> PricingBreakdown:
    nights = calculate_nights(check_in, check_out)
    nightly = clamp_minor(nightly_price_minor)
    cleaning = clamp_minor(cleaning_fee_minor)
    deposit = clamp_minor(deposit_minor)

    subtotal = nightly * nights
    return PricingBreakdown(
        nights=nights,
        nightly_price_minor=nightly,
        subtotal_minor=subtotal,
        cleaning_fee_minor=cleaning,
        deposit_minor=deposit,
        total_amount_minor=subtotal + cleaning + deposit,
    )


def _bounds(value) -> tuple[datetime.date, datetime.date]:
    if isinstance(value, tuple):
        return value[0], value[1]
    return value.start, value.end


def ranges_overlap(a, b) -> bool:
    """
    Half-open overlap: a.start < b.end AND b.start < a.end.
    Accepts anything with start/end (StayRange, UnavailableRange) or (start, end) tuples.
    Zero-length or inverted ranges never overlap anything.
    """
    a_start, a_end = _bounds(a)
    b_start, b_end = _bounds(b)
    if a_end <= a_start or b_end <= b_start:
        return False
    return a_start < b_end and b_start < a_end
