"""
Payment return page reconciliation.

Booking status is authoritative. Payment status arrives through its own webhook
and can run ahead of the booking: a 'succeeded' payment next to a booking that
is still 'pending_payment' means the booking side has not caught up yet, so the
client must keep polling rather than show a result.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .lifecycle import TERMINAL_STATUSES, BookingStatus, normalize_booking_status

DEFAULT_POLL_TIMEOUT_MS = 60_000


class PaymentStatus(str, Enum):
    INITIATED = "initiated"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    REFUNDED = "refunded"


class ReturnUiState(str, Enum):
    REFUNDED = "refunded"
    CONFIRMED = "confirmed"
    PENDING = "pending"
    CLOSED = "closed"
    FAILED = "failed"
    PROCESSING = "processing"


class PollingAction(str, Enum):
    CONTINUE = "continue"
    STOP = "stop"
    FINAL_FETCH_THEN_STOP = "final_fetch_then_wait_then_stop"


FAILURE_PAYMENT_STATUSES = frozenset({PaymentStatus.FAILED, PaymentStatus.REFUNDED})
TERMINAL_PAYMENT_STATUSES = frozenset({PaymentStatus.SUCCEEDED, PaymentStatus.FAILED, PaymentStatus.REFUNDED})


@dataclass(frozen=True)
class ReturnState:
    ui_state: ReturnUiState
    should_poll: bool


def normalize_payment_status(status) -> Optional[PaymentStatus]:
    if isinstance(status, PaymentStatus):
        return status
    value = str(status or "").strip().lower()
    # Providers spell the in-flight state differently
    if value in ("pending", "processing"):
        return PaymentStatus.INITIATED
    try:
        return PaymentStatus(value)
    except ValueError:
        return None


def is_terminal_payment_status(status) -> bool:
    return normalize_payment_status(status) in TERMINAL_PAYMENT_STATUSES


def is_payment_finalising(booking_status, payment_status) -> bool:
    return (
        normalize_booking_status(booking_status) == BookingStatus.PENDING_PAYMENT
        and normalize_payment_status(payment_status) == PaymentStatus.SUCCEEDED
    )


def resolve_ui_state(booking_status, payment_status) -> ReturnUiState:
    booking = normalize_booking_status(booking_status)
    payment = normalize_payment_status(payment_status)

    if payment == PaymentStatus.REFUNDED:
        return ReturnUiState.REFUNDED
    if booking == BookingStatus.CONFIRMED:
        return ReturnUiState.CONFIRMED
    if booking == BookingStatus.PENDING:
        return ReturnUiState.PENDING
    if booking in TERMINAL_STATUSES:
        return ReturnUiState.CLOSED
    if payment == PaymentStatus.FAILED:
        return ReturnUiState.FAILED
    return ReturnUiState.PROCESSING


def should_poll(booking_status, payment_status, elapsed_ms, timeout_ms: int = DEFAULT_POLL_TIMEOUT_MS) -> bool:
    if normalize_payment_status(payment_status) in FAILURE_PAYMENT_STATUSES:
        return False
    if (elapsed_ms or 0) >= timeout_ms:
        return False
    return normalize_booking_status(booking_status) == BookingStatus.PENDING_PAYMENT


def polling_stop_reason(booking_status, payment_status, elapsed_ms, timeout_ms: int = DEFAULT_POLL_TIMEOUT_MS) -> str:
    if normalize_payment_status(payment_status) in FAILURE_PAYMENT_STATUSES:
        return "terminal_payment"
    if (elapsed_ms or 0) >= timeout_ms:
        return "timeout"
    if normalize_booking_status(booking_status) != BookingStatus.PENDING_PAYMENT:
        return "terminal_booking"
    return "continue"


def resolve_polling_action(
        booking_status,
        payment_status,
        elapsed_ms,
        timeout_final_fetch_done: bool,
        timeout_ms: int = DEFAULT_POLL_TIMEOUT_MS,
) -> PollingAction:
    """After a timeout the client gets exactly one last fetch before giving up."""
    if should_poll(booking_status, payment_status, elapsed_ms, timeout_ms):
        return PollingAction.CONTINUE
    if (elapsed_ms or 0) >= timeout_ms and not timeout_final_fetch_done:
        return PollingAction.FINAL_FETCH_THEN_STOP
    return PollingAction.STOP


def timeout_message(booking_status, payment_status) -> str:
    if is_payment_finalising(booking_status, payment_status):
        return (
            "Payment received. Final confirmation is taking longer than usual. "
            "This does not mean your payment failed."
        )
    return "Confirmation is taking longer than usual. Recheck now or contact support if this keeps happening."


def reconcile_return_state(
        booking_status,
        payment_status,
        elapsed_ms=0,
        timeout_ms: int = DEFAULT_POLL_TIMEOUT_MS,
) -> ReturnState:
    return ReturnState(
        ui_state=resolve_ui_state(booking_status, payment_status),
        should_poll=should_poll(booking_status, payment_status, elapsed_ms, timeout_ms),
    )
