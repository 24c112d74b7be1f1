"""Booking approval workflow: Pending -> Approved / Rejected, plus deletion."""
from __future__ import annotations

import logging

from sqlalchemy import update
from sqlalchemy.orm import Session

from .errors import BusinessRuleError, NotFoundError
from .models import BLOCKING_BOOKING_STATUSES, Booking, BookingStatus, UsageSession, utcnow
from .policy import Operation, Resource, ensure
from .store import atomic, check_slot_free, load_authorized, lock_equipment
from .tokens import Principal

logger = logging.getLogger(__name__)

_DECISIONS = {
    BookingStatus.APPROVED: Operation.APPROVE,
    BookingStatus.REJECTED: Operation.REJECT,
}


def _reload(db: Session, booking_id: str) -> Booking:
    booking = db.get(Booking, booking_id, populate_existing=True)
    if booking is None:
        raise NotFoundError("Booking not found")
    return booking


def decide_booking(
    db: Session,
    principal: Principal,
    booking_id: str,
    decision: BookingStatus,
    strict: bool = False,
) -> Booking:
    """Record ``decision`` on a booking and who made it.

    Terminal bookings may be decided again unless ``strict`` is set. The
    current status is re-read under the equipment lock, and a booking that
    goes from Rejected back to a blocking status has its slot re-checked there.
    """

    operation = _DECISIONS[decision]
    ensure(principal, operation, Resource.BOOKING, message="Only teachers and admins can approve or reject bookings")
    booking = load_authorized(db, principal, Booking, booking_id, Resource.BOOKING, operation, "requester_id")

    with atomic(db):
        lock_equipment(db, booking.equipment_id)
        booking = _reload(db, booking.id)
        if strict and booking.status is not BookingStatus.PENDING:
            raise BusinessRuleError(f"Booking is already {booking.status.value}")
        if booking.status not in BLOCKING_BOOKING_STATUSES and decision in BLOCKING_BOOKING_STATUSES:
            check_slot_free(db, booking)
        booking.status = decision
        booking.approved_by = principal.user_id
        booking.approved_at = utcnow()
    db.refresh(booking)
    logger.info("booking %s %s by %s", booking.id, decision.value, principal.user_id)
    return booking


def approve_booking(db: Session, principal: Principal, booking_id: str, strict: bool = False) -> Booking:
    return decide_booking(db, principal, booking_id, BookingStatus.APPROVED, strict)


def reject_booking(db: Session, principal: Principal, booking_id: str, strict: bool = False) -> Booking:
    return decide_booking(db, principal, booking_id, BookingStatus.REJECTED, strict)


def delete_booking(db: Session, principal: Principal, booking_id: str) -> None:
    booking = load_authorized(db, principal, Booking, booking_id, Resource.BOOKING, Operation.DELETE, "requester_id")
    with atomic(db):
        lock_equipment(db, booking.equipment_id)
        booking = _reload(db, booking.id)
        # sessions started from this booking outlive it
        db.execute(
            update(UsageSession).where(UsageSession.booking_id == booking.id).values(booking_id=None),
            execution_options={"synchronize_session": False},
        )
        db.delete(booking)
    logger.info("booking %s deleted by %s", booking_id, principal.user_id)
