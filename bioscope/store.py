"""Storage primitives that need more than single-row atomicity.

Both compare-and-insert operations follow the same shape: write to a parent
row first (the equipment for bookings, the user for sessions) so that
concurrent transactions for the same parent queue behind each other on
SQLite and PostgreSQL alike, then re-check the invariant, insert and commit.
Booking decisions, deletes and session starts from a booking take the same
equipment lock before they re-read the booking.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Callable, Iterator, Optional, Type

from sqlalchemy import select, update
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm import Session

from .conflicts import conflicting_bookings
from .errors import ConflictError, NotFoundError
from .models import Base, Booking, Equipment, SessionStatus, UsageSession, User, utcnow
from .policy import Operation, Resource, ensure
from .tokens import Principal

logger = logging.getLogger(__name__)

_CONTENTION_SQLSTATES = {"40001", "40P01"}  # serialization failure, deadlock
ACTIVE_SESSION_EXISTS = "User already has an active session"


def _is_contention(exc: DBAPIError) -> bool:
    original = exc.orig
    code = getattr(original, "pgcode", None) or getattr(original, "sqlstate", None)
    if code in _CONTENTION_SQLSTATES:
        return True
    return "database is locked" in str(original).lower()


@contextmanager
def atomic(db: Session, integrity_message: Optional[str] = None) -> Iterator[None]:
    """Run the block and commit, translating lost races into ``ConflictError``."""

    try:
        yield
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        if integrity_message is not None:
            raise ConflictError(integrity_message) from exc
        raise
    except DBAPIError as exc:
        db.rollback()
        if _is_contention(exc):
            logger.warning("transaction lost a race: %s", exc.orig)
            raise ConflictError("The request raced with a concurrent update, please retry") from exc
        raise
    except Exception:
        db.rollback()
        raise


def claim_row(db: Session, model: Type[Base], row_id: str) -> bool:
    """Touch ``row_id`` so the current transaction holds its write lock."""

    result = db.execute(
        update(model).where(model.id == row_id).values(updated_at=utcnow()),
        execution_options={"synchronize_session": False},
    )
    return result.rowcount > 0


def _describe_clash(existing: Booking) -> str:
    return (
        "Time slot conflict with existing booking "
        f"'{existing.title}' ({existing.slot_start}-{existing.slot_end})"
    )


def lock_equipment(db: Session, equipment_id: str) -> None:
    """Take the equipment row lock every booking state change queues behind."""

    if not claim_row(db, Equipment, equipment_id):
        raise NotFoundError("Equipment not found")


def check_slot_free(db: Session, booking: Booking) -> None:
    """Fail if the slot overlaps a blocking booking; the equipment must already be locked."""

    clashes = conflicting_bookings(
        db,
        booking.equipment_id,
        booking.date,
        booking.slot_start,
        booking.slot_end,
        exclude_booking_id=booking.id,
    )
    if clashes:
        raise ConflictError(_describe_clash(clashes[0]))


def ensure_slot_free(db: Session, booking: Booking) -> None:
    lock_equipment(db, booking.equipment_id)
    check_slot_free(db, booking)


def insert_booking_if_free(db: Session, booking: Booking) -> Booking:
    with atomic(db):
        ensure_slot_free(db, booking)
        db.add(booking)
    db.refresh(booking)
    return booking


def active_session_for(db: Session, user_id: str) -> Optional[UsageSession]:
    return db.scalars(
        select(UsageSession)
        .where(UsageSession.user_id == user_id, UsageSession.status == SessionStatus.ACTIVE)
        .order_by(UsageSession.started_at.desc())
        .limit(1)
    ).first()


def insert_session_if_idle(
    db: Session,
    session: UsageSession,
    precheck: Optional[Callable[[], None]] = None,
) -> UsageSession:
    """Insert ``session`` unless its user already has an Active one.

    ``precheck`` runs inside the same transaction, after the user row is
    locked and before the insert.
    """

    with atomic(db, integrity_message=ACTIVE_SESSION_EXISTS):
        if not claim_row(db, User, session.user_id):
            raise NotFoundError("User not found")
        if precheck is not None:
            precheck()
        if active_session_for(db, session.user_id) is not None:
            raise ConflictError(ACTIVE_SESSION_EXISTS)
        db.add(session)
    db.refresh(session)
    return session


def load_authorized(
    db: Session,
    principal: Principal,
    model: Type[Base],
    object_id: str,
    resource: Resource,
    operation: Operation,
    owner_attr: str,
):
    """Fetch ``object_id`` and check ``operation`` against its owner.

    A principal limited to its own instances is denied before learning
    whether the id exists at all.
    """

    obj = db.get(model, object_id)
    owner_id = getattr(obj, owner_attr) if obj is not None else None
    ensure(principal, operation, resource, owner_id)
    if obj is None:
        raise NotFoundError(f"{resource.value.capitalize()} not found")
    return obj
