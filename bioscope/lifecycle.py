"""Session lifecycle: NoSession -> Active -> Completed | Aborted.

Starting a session is guarded by two rules: a user holds at most one Active
session, and a session started from a booking needs that booking to be
Approved for the same equipment (and, for students, to be their own).
"""
from __future__ import annotations

import logging
from functools import partial
from typing import Dict, FrozenSet, List, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from .errors import BusinessRuleError, NotFoundError
from .models import Booking, BookingStatus, Equipment, SessionStatus, UsageSession, utcnow
from .policy import Operation, Resource, can, ensure, scoped_owner
from .store import active_session_for, atomic, insert_session_if_idle, load_authorized, lock_equipment
from .tokens import Principal

logger = logging.getLogger(__name__)

TRANSITIONS: Dict[SessionStatus, FrozenSet[SessionStatus]] = {
    SessionStatus.ACTIVE: frozenset({SessionStatus.COMPLETED, SessionStatus.ABORTED}),
    SessionStatus.COMPLETED: frozenset(),
    SessionStatus.ABORTED: frozenset(),
}


def _check_booking(db: Session, principal: Principal, booking_id: str, equipment_id: str) -> Booking:
    # decisions and deletes on the booking queue behind the same equipment lock
    lock_equipment(db, equipment_id)
    booking = db.get(Booking, booking_id, populate_existing=True)
    if booking is None:
        raise BusinessRuleError("Booking not found")
    if booking.status is not BookingStatus.APPROVED:
        raise BusinessRuleError("Booking is not approved")
    if booking.equipment_id != equipment_id:
        raise BusinessRuleError("Booking is for different equipment")
    # supervisors may start a session against anyone's approved booking
    if not can(principal, Operation.READ, Resource.BOOKING, booking.requester_id):
        raise BusinessRuleError("Booking belongs to another user")
    return booking


def start_session(
    db: Session,
    principal: Principal,
    equipment_id: str,
    booking_id: Optional[str] = None,
    notes: Optional[str] = None,
) -> UsageSession:
    ensure(principal, Operation.CREATE, Resource.SESSION)
    if db.get(Equipment, equipment_id) is None:
        raise NotFoundError("Equipment not found")

    session = UsageSession(
        user_id=principal.user_id,
        booking_id=booking_id,
        equipment_id=equipment_id,
        status=SessionStatus.ACTIVE,
        notes=notes,
    )
    precheck = None
    if booking_id is not None:
        precheck = partial(_check_booking, db, principal, booking_id, equipment_id)
    insert_session_if_idle(db, session, precheck)
    logger.info("session %s started by %s on %s", session.id, principal.user_id, equipment_id)
    return session


def _transition(db: Session, session_id: str, target: SessionStatus, **values) -> None:
    """Move a session to ``target`` only if it is still in a state that allows it.

    The status test and the write are one conditional UPDATE, so of several
    concurrent callers exactly one sees a changed row.
    """

    sources = [source for source, targets in TRANSITIONS.items() if target in targets]
    with atomic(db):
        result = db.execute(
            update(UsageSession)
            .where(UsageSession.id == session_id, UsageSession.status.in_(sources))
            .values(status=target, **values),
            execution_options={"synchronize_session": False},
        )
        if result.rowcount == 0:
            raise BusinessRuleError("Session is not active")


def end_session(db: Session, principal: Principal, session_id: str, notes: Optional[str] = None) -> UsageSession:
    session = load_authorized(db, principal, UsageSession, session_id, Resource.SESSION, Operation.END, "user_id")
    values = {"ended_at": utcnow()}
    if notes is not None:
        values["notes"] = notes
    _transition(db, session.id, SessionStatus.COMPLETED, **values)
    db.refresh(session)
    logger.info("session %s ended by %s", session.id, principal.user_id)
    return session


def get_session(db: Session, principal: Principal, session_id: str) -> UsageSession:
    return load_authorized(db, principal, UsageSession, session_id, Resource.SESSION, Operation.READ, "user_id")


def get_current_session(db: Session, principal: Principal) -> Optional[UsageSession]:
    return active_session_for(db, principal.user_id)


def list_sessions(
    db: Session,
    principal: Principal,
    equipment_id: Optional[str] = None,
    user_id: Optional[str] = None,
    status: Optional[SessionStatus] = None,
    active_only: bool = False,
    page: int = 1,
    limit: int = 50,
) -> List[UsageSession]:
    owner = scoped_owner(principal, Resource.SESSION, user_id)
    query = select(UsageSession)
    if owner is not None:
        query = query.where(UsageSession.user_id == owner)
    if equipment_id is not None:
        query = query.where(UsageSession.equipment_id == equipment_id)
    if status is not None:
        query = query.where(UsageSession.status == status)
    if active_only:
        query = query.where(UsageSession.status == SessionStatus.ACTIVE)
    query = query.order_by(UsageSession.started_at.desc()).offset((page - 1) * limit).limit(limit)
    return list(db.scalars(query))
