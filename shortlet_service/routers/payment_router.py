import datetime
import logging
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .. import schemas, crud, models, service
from ..availability import describe_conflicts
from ..config import Settings
from ..database import get_db
from ..dependencies import get_settings, verify_webhook_secret
from ..lifecycle import BookingStatus, normalize_booking_status, settle_payment
from ..return_status import PaymentStatus, normalize_payment_status

logger = logging.getLogger("shortlet_service")

REFUNDABLE_ON_LATE_PAYMENT = frozenset({
    BookingStatus.DECLINED,
    BookingStatus.CANCELLED,
    BookingStatus.EXPIRED,
})

router = APIRouter(prefix="/payments", tags=["Payments"])


def _settle_booking(db: Session, booking: models.Booking, webhook: schemas.PaymentWebhook, config: Settings):
    """
    Moves a pending_payment booking on after a successful payment.
    pending_payment holds no dates, so the stay is checked against bookings,
    host blocks and prep days first. If the dates were taken meanwhile (or the
    exclusion constraint rejects the move), the booking is cancelled for a refund.
    """
    listing = crud.get_shortlet_settings(db, booking.property_id)
    booking_mode = listing.booking_mode if listing else "request"
    next_status = settle_payment(booking.status, booking_mode)

    report = service.check_availability(
        crud.SqlBlockingRowStore(db), booking.property_id, booking.check_in, booking.check_out,
        exclude_booking_id=booking.id,
    )
    if report.has_conflict:
        logger.warning(
            f"Booking {booking.id} lost its dates before payment settled: "
            f"{'; '.join(describe_conflicts(report))}"
        )
        crud.apply_booking_status(db, booking, BookingStatus.CANCELLED, refund_required=True)
        return

    fields = {}
    if next_status == BookingStatus.PENDING:
        fields["respond_by"] = service.respond_by_deadline(datetime.datetime.utcnow(), config)
        fields["expires_at"] = fields["respond_by"]

    try:
        crud.apply_booking_status(db, booking, next_status, **fields)
    except IntegrityError as e:
        logger.error(f"Booking {booking.id} lost its dates before payment settled: {e}")
        db.rollback()
        crud.record_payment_status(db, webhook, PaymentStatus.SUCCEEDED.value)
        crud.apply_booking_status(db, booking, BookingStatus.CANCELLED, refund_required=True)


@router.post("/webhook", response_model=schemas.PaymentRead, dependencies=[Depends(verify_webhook_secret)])
def payment_webhook(
        webhook: schemas.PaymentWebhook,
        db: Session = Depends(get_db),
        config: Settings = Depends(get_settings),
):
    """
    Provider-neutral payment status update. Records the payment and moves the booking along.
    """
    payment_status = normalize_payment_status(webhook.status)
    if payment_status is None:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="Unknown payment status")

    booking = crud.get_booking(db, webhook.booking_id)
    if booking is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Booking not found")

    crud.record_payment_status(db, webhook, payment_status.value)

    if payment_status == PaymentStatus.SUCCEEDED:
        if normalize_booking_status(booking.status) == BookingStatus.PENDING_PAYMENT:
            _settle_booking(db, booking, webhook, config)
        elif normalize_booking_status(booking.status) in REFUNDABLE_ON_LATE_PAYMENT:
            # Paid for a booking that already closed
            booking.refund_required = True
    elif payment_status == PaymentStatus.REFUNDED:
        booking.refund_required = True

    db.commit()
    db.refresh(booking)
    payment = crud.get_payment_by_reference(db, webhook.reference)

    logger.info(
        f"Payment {webhook.reference} for booking {booking.id} is {payment_status.value}; "
        f"booking now {booking.status}."
    )
    return payment
