"""Booking creation, lookup, listing and descriptive updates."""
from __future__ import annotations

import logging
from datetime import date
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from .config import Settings
from .conflicts import validate_slot
from .errors import InvalidInputError, NotFoundError
from .models import Booking, BookingStatus, User
from .policy import Operation, Resource, ensure, scoped_owner
from .schemas import BookingCreate, BookingUpdate
from .store import insert_booking_if_free, load_authorized
from .tokens import Principal

logger = logging.getLogger(__name__)


def create_booking(db: Session, principal: Principal, booking_in: BookingCreate, settings: Settings) -> Booking:
    ensure(principal, Operation.CREATE, Resource.BOOKING)
    validate_slot(
        booking_in.slot_start,
        booking_in.slot_end,
        settings.booking_day_start_minute,
        settings.booking_day_end_minute,
    )
    requester = db.get(User, principal.user_id)
    if requester is None:
        raise NotFoundError("User not found")

    booking = Booking(
        equipment_id=booking_in.equipment_id,
        date=booking_in.date,
        slot_start=booking_in.slot_start,
        slot_end=booking_in.slot_end,
        title=booking_in.title,
        group_name=booking_in.group_name,
        attendees=booking_in.attendees,
        requester_id=requester.id,
        requester_name=requester.name,
        status=BookingStatus.PENDING,
    )
    insert_booking_if_free(db, booking)
    logger.info(
        "booking %s created by %s on %s %s [%s, %s)",
        booking.id,
        principal.user_id,
        booking.equipment_id,
        booking.date,
        booking.slot_start,
        booking.slot_end,
    )
    return booking


def get_booking(db: Session, principal: Principal, booking_id: str) -> Booking:
    return load_authorized(db, principal, Booking, booking_id, Resource.BOOKING, Operation.READ, "requester_id")


def list_bookings(
    db: Session,
    principal: Principal,
    equipment_id: Optional[str] = None,
    booking_date: Optional[date] = None,
    user_id: Optional[str] = None,
    status: Optional[BookingStatus] = None,
    page: int = 1,
    limit: int = 50,
) -> List[Booking]:
    """List bookings visible to ``principal``.

    A user filter wins; otherwise an equipment + date pair returns that day's
    schedule for everyone (it is what conflict checks are made against);
    otherwise the listing falls back to the principal's own scope.
    """

    if user_id is None and (equipment_id is None) != (booking_date is None):
        raise InvalidInputError("equipment_id and date must be supplied together")

    query = select(Booking)
    if user_id is None and equipment_id is not None:
        ensure(principal, Operation.VIEW_SCHEDULE, Resource.BOOKING)
        query = query.where(Booking.equipment_id == equipment_id, Booking.date == booking_date)
        query = query.order_by(Booking.slot_start)
    else:
        owner = scoped_owner(principal, Resource.BOOKING, user_id)
        if owner is not None:
            query = query.where(Booking.requester_id == owner)
        query = query.order_by(Booking.date.desc(), Booking.slot_start.desc())

    if status is not None:
        query = query.where(Booking.status == status)
    query = query.offset((page - 1) * limit).limit(limit)
    return list(db.scalars(query))


def update_booking(db: Session, principal: Principal, booking_id: str, booking_update: BookingUpdate) -> Booking:
    booking = load_authorized(db, principal, Booking, booking_id, Resource.BOOKING, Operation.UPDATE, "requester_id")
    for key, value in booking_update.model_dump(exclude_unset=True).items():
        setattr(booking, key, value)
    db.commit()
    db.refresh(booking)
    return booking
