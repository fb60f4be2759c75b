"""
Error taxonomy for the booking engine.

InvalidDate and InvalidNights point at bad input preparation upstream and are
raised. Availability conflicts are normally reported through a ConflictReport;
DatesUnavailable is raised only where a flow has to abort (booking creation,
payment settlement). Pagination input is never rejected, it is clamped.
"""


class ShortletError(Exception):
    """Base class for booking engine errors."""

    code = "SHORTLET_ERROR"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.code)
        self.message = message or self.code


class InvalidDate(ShortletError):
    code = "INVALID_DATE"


class InvalidNights(ShortletError):
    code = "INVALID_NIGHTS"


class DatesUnavailable(ShortletError):
    code = "DATES_UNAVAILABLE"

    def __init__(self, message: str | None = None, conflicting_dates=None):
        super().__init__(message)
        self.conflicting_dates = list(conflicting_dates or [])


# Host blocks and bookings surface the same conflict to callers
DatesBlocked = DatesUnavailable


class InvalidStatusTransition(ShortletError):
    code = "INVALID_STATUS_TRANSITION"

    def __init__(self, current_status, target: str | None = None):
        current = getattr(current_status, "value", current_status)
        detail = f"{self.code}: cannot move booking from '{current}'"
        if target:
            detail += f" via '{target}'"
        super().__init__(detail)
        self.current_status = current
        self.target = target


class BookingRuleViolation(ShortletError):
    """A booking request broke one of the listing's stay rules."""

    def __init__(self, code: str, message: str | None = None):
        self.code = code
        super().__init__(message or code)
