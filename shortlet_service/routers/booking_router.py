import datetime
import logging
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from typing import List, Optional

from .. import schemas, crud, service
from ..config import Settings
from ..database import get_db
from ..dependencies import (
    CurrentUserId, create_booking_rate_limit, get_settings, read_rate_limit,
)
from ..errors import BookingRuleViolation, InvalidStatusTransition
from ..lifecycle import (
    BookingStatus, HostAction, cancel_booking, map_legacy_decision,
    parse_host_inbox_filter, resolve_host_inbox_filter,
)
from ..return_status import polling_stop_reason, timeout_message

logger = logging.getLogger("shortlet_service")

router = APIRouter(prefix="/bookings", tags=["Bookings"])


def _get_booking_or_404(db: Session, booking_id: int):
    booking = crud.get_booking(db, booking_id)
    if booking is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Booking not found")
    return booking


def _raise_create_failure(message: str):
    mapped = service.classify_booking_create_error(message)
    raise HTTPException(status_code=mapped.http_status, detail=mapped.message)


@router.post("/", response_model=schemas.BookingRead, status_code=status.HTTP_201_CREATED)
def create_booking(
        booking: schemas.BookingCreate,
        user_id: CurrentUserId,
        db: Session = Depends(get_db),
        config: Settings = Depends(get_settings),
        rate_limit: None = Depends(create_booking_rate_limit),
):
    """
    Create a new booking request for the authenticated guest.
    """
    if booking.check_in >= booking.check_out:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Check-out must be after check-in."
        )

    listing = crud.get_shortlet_settings(db, booking.property_id)
    if listing is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Shortlet listing not found")

    now = datetime.datetime.utcnow()
    try:
        service.validate_stay_rules(listing, booking.check_in, booking.check_out, now)
    except BookingRuleViolation as e:
        logger.info(f"Booking request for property {booking.property_id} rejected: {e.code}")
        _raise_create_failure(e.code)

    report = service.check_availability(
        crud.SqlBlockingRowStore(db), booking.property_id, booking.check_in, booking.check_out,
    )
    if report.has_conflict:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=service.classify_booking_create_error("DATES_UNAVAILABLE").message,
        )

    pricing = service.price_stay_for_listing(listing, booking.check_in, booking.check_out)
    initial_status = service.initial_booking_status(config)
    respond_by = service.respond_by_deadline(now, config) if initial_status == BookingStatus.PENDING else None

    try:
        # The exclusion constraint is the last word on overlapping stays
        db_booking = crud.create_booking(
            db=db,
            booking=booking,
            guest_user_id=user_id,
            host_user_id=listing.host_user_id,
            pricing=pricing,
            status=initial_status,
            currency=listing.currency,
            respond_by=respond_by,
        )
    except Exception as e:
        logger.error(f"Failed to create booking for property {booking.property_id}: {e}")
        _raise_create_failure(str(e))

    logger.info(f"Booking {db_booking.id} created for property {booking.property_id} as {db_booking.status}.")
    return db_booking


@router.get("/", response_model=List[schemas.BookingRead])
def read_guest_bookings(
        user_id: CurrentUserId,
        db: Session = Depends(get_db),
        skip: int = 0,
        limit: int = 100,
        rate_limit: None = Depends(read_rate_limit),
):
    """
    Get all bookings for the authenticated guest.
    """
    return crud.get_bookings_by_guest(db=db, guest_user_id=user_id, skip=skip, limit=limit)


@router.get("/host", response_model=List[schemas.HostInboxItem])
def read_host_inbox(
        user_id: CurrentUserId,
        db: Session = Depends(get_db),
        filter: Optional[str] = None,
):
    """
    The host's booking inbox, optionally narrowed to one bucket.
    """
    wanted = parse_host_inbox_filter(filter) if filter else None
    if filter and wanted is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Unknown inbox filter")

    now = datetime.datetime.utcnow()
    items = []
    for booking in crud.get_bookings_by_host(db, host_user_id=user_id):
        bucket = resolve_host_inbox_filter(booking.status, booking.check_out, booking.respond_by, now)
        if wanted is not None and bucket != wanted:
            continue
        item = schemas.BookingRead.model_validate(booking).model_dump()
        items.append(schemas.HostInboxItem(**item, inbox_filter=bucket.value))
    return items


@router.post("/{booking_id}/respond", response_model=schemas.BookingRead)
def respond_to_booking(
        booking_id: int,
        payload: schemas.BookingRespond,
        user_id: CurrentUserId,
        db: Session = Depends(get_db),
):
    """
    Host accepts or declines a pending request.
    """
    booking = _get_booking_or_404(db, booking_id)
    if booking.host_user_id != user_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")

    action = map_legacy_decision(payload.action)
    try:
        next_status = service.respond_to_booking(booking.status, action)
    except InvalidStatusTransition as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.message)

    # The expiry sweep may not have run yet
    if booking.respond_by is not None and booking.respond_by <= datetime.datetime.utcnow():
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="The response window for this booking has closed.")

    reason = (payload.reason or "").strip() or None
    fields = {}
    if action == HostAction.DECLINE and reason:
        fields["host_decision_reason"] = reason
    crud.apply_booking_status(db, booking, next_status, **fields)
    db.commit()
    db.refresh(booking)

    logger.info(f"Host {user_id} answered '{action.value}' on booking {booking_id}; now {booking.status}.")
    return booking


@router.post("/{booking_id}/cancel", response_model=schemas.BookingRead)
def cancel_guest_booking(
        booking_id: int,
        user_id: CurrentUserId,
        payload: Optional[schemas.BookingCancel] = None,
        db: Session = Depends(get_db),
):
    """
    Guest (or host) cancels a booking that has not reached a terminal state.
    """
    booking = _get_booking_or_404(db, booking_id)
    if user_id not in (booking.guest_user_id, booking.host_user_id):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")

    try:
        next_status = cancel_booking(booking.status)
    except InvalidStatusTransition as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.message)

    payment = crud.get_latest_payment_for_booking(db, booking_id)
    fields = {"refund_required": payment is not None and payment.status == "succeeded"}
    if payload is not None and payload.reason:
        fields["host_decision_reason"] = payload.reason.strip()
    crud.apply_booking_status(db, booking, next_status, **fields)
    db.commit()
    db.refresh(booking)

    logger.info(f"Booking {booking_id} cancelled by user {user_id}.")
    return booking


@router.get("/{booking_id}/return-status", response_model=schemas.ReturnStatusRead)
def read_return_status(
        booking_id: int,
        user_id: CurrentUserId,
        elapsed_ms: int = 0,
        db: Session = Depends(get_db),
        config: Settings = Depends(get_settings),
):
    """
    What the payment return page should show, and whether it should poll again.
    """
    booking = _get_booking_or_404(db, booking_id)
    if booking.guest_user_id != user_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")

    payment = crud.get_latest_payment_for_booking(db, booking_id)
    payment_status = payment.status if payment else None
    state = service.reconcile_return_state(booking.status, payment_status, elapsed_ms, config)
    reason = polling_stop_reason(booking.status, payment_status, elapsed_ms, config.RETURN_POLL_TIMEOUT_MS)

    return schemas.ReturnStatusRead(
        booking_id=booking.id,
        booking_status=booking.status,
        payment_status=payment_status,
        ui_state=state.ui_state.value,
        should_poll=state.should_poll,
        stop_reason=reason,
        message=timeout_message(booking.status, payment_status) if reason == "timeout" else None,
    )
