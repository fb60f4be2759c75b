import asyncio
import datetime
import logging
from sqlalchemy.orm import Session
from .database import SessionLocal
from .config import settings
from . import crud
from .lifecycle import complete_booking, expire_booking

logger = logging.getLogger("shortlet_service")


def expire_unanswered_requests(db: Session, now: datetime.datetime) -> int:
    """
    Pending requests the host never answered become 'expired'.
    Requests with a succeeded payment are flagged for a refund.
    """
    expired = 0
    for booking in crud.get_due_pending_bookings(db, now):
        payment = crud.get_latest_payment_for_booking(db, booking.id)
        refund_required = payment is not None and payment.status == "succeeded"
        try:
            crud.apply_booking_status(db, booking, expire_booking(booking.status), refund_required=refund_required)
            expired += 1
            logger.info(f"Booking {booking.id} expired; host did not respond by {booking.respond_by}.")
        except Exception as e:
            logger.error(f"Failed to expire booking {booking.id}: {e}")
    return expired


def complete_finished_stays(db: Session, today: datetime.date) -> int:
    """Confirmed stays whose checkout has passed become 'completed'."""
    completed = 0
    for booking in crud.get_confirmed_bookings_ended_before(db, today):
        try:
            crud.apply_booking_status(db, booking, complete_booking(booking.status))
            completed += 1
        except Exception as e:
            logger.error(f"Failed to complete booking {booking.id}: {e}")
    if completed:
        logger.info(f"Marked {completed} stays as completed.")
    return completed


async def sweep_bookings(db: Session):
    now = datetime.datetime.utcnow()
    logger.info(f"Sweeping bookings at {now.isoformat()}...")

    changed = expire_unanswered_requests(db, now) + complete_finished_stays(db, now.date())

    if changed > 0:
        db.commit()  # Commits the status changes and their outbox events together
        logger.info(f"Booking sweep updated {changed} bookings.")
    else:
        db.rollback()


async def run_booking_scheduler(poll_interval: int = None):
    """
    Main background loop for the scheduler.
    """
    interval = poll_interval or settings.SCHEDULER_POLL_INTERVAL_SECONDS
    while True:
        logger.info("Scheduler waking up to sweep bookings...")
        db: Session = SessionLocal()
        try:
            await sweep_bookings(db)
        except Exception as e:
            logger.error(f"Error in booking scheduler loop: {e}")
            db.rollback()
        finally:
            db.close()

        await asyncio.sleep(interval)
