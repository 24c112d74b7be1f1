"""Booking slot validation and overlap detection.

Slots are half-open ``[slot_start, slot_end)`` intervals in minutes of the
day, so two bookings that merely touch (one ends at 600, the next starts at
600) do not conflict.
"""
from __future__ import annotations

from datetime import date
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from .errors import InvalidInputError
from .models import BLOCKING_BOOKING_STATUSES, Booking

MINUTES_PER_DAY = 24 * 60


def validate_slot(
    slot_start: int,
    slot_end: int,
    day_start: int = 0,
    day_end: int = MINUTES_PER_DAY,
) -> None:
    if slot_start >= slot_end:
        raise InvalidInputError("slot_start must be before slot_end")
    if slot_start < day_start or slot_end > day_end:
        raise InvalidInputError(
            f"Slot must fall between minute {day_start} and minute {day_end} of the day"
        )


def slots_overlap(a_start: int, a_end: int, b_start: int, b_end: int) -> bool:
    return not (a_end <= b_start or a_start >= b_end)


def conflicting_bookings(
    db: Session,
    equipment_id: str,
    booking_date: date,
    slot_start: int,
    slot_end: int,
    exclude_booking_id: Optional[str] = None,
) -> List[Booking]:
    query = select(Booking).where(
        Booking.equipment_id == equipment_id,
        Booking.date == booking_date,
        Booking.status.in_(BLOCKING_BOOKING_STATUSES),
    )
    if exclude_booking_id is not None:
        query = query.where(Booking.id != exclude_booking_id)
    candidates = db.scalars(query.order_by(Booking.slot_start))
    return [
        existing
        for existing in candidates
        if slots_overlap(existing.slot_start, existing.slot_end, slot_start, slot_end)
    ]


def has_conflict(
    db: Session,
    equipment_id: str,
    booking_date: date,
    slot_start: int,
    slot_end: int,
    exclude_booking_id: Optional[str] = None,
) -> bool:
    return bool(
        conflicting_bookings(db, equipment_id, booking_date, slot_start, slot_end, exclude_booking_id)
    )
