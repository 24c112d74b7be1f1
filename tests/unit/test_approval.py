"""Unit tests for the booking approval workflow and deletion."""
from datetime import date

import pytest
from sqlalchemy import select

from bioscope import approval, bookings, lifecycle
from bioscope.config import get_settings
from bioscope.database import SessionLocal
from bioscope.errors import AuthorizationError, BusinessRuleError, ConflictError, NotFoundError
from bioscope.models import BLOCKING_BOOKING_STATUSES, Booking, BookingStatus, UsageSession
from bioscope.schemas import BookingCreate

DAY = date(2024, 1, 15)


@pytest.fixture()
def request_booking(db_session, student_user, principal_for):
    def _request(start=540, end=600, title="Cells", user=None):
        return bookings.create_booking(
            db_session,
            principal_for(user or student_user),
            BookingCreate(equipment_id="bio-1", date=DAY, slot_start=start, slot_end=end, title=title),
            get_settings(),
        )

    return _request


class TestDecisions:
    def test_teacher_approves_pending_booking(self, db_session, teacher_user, principal_for, request_booking):
        booking = request_booking()

        approved = approval.approve_booking(db_session, principal_for(teacher_user), booking.id)
        assert approved.status is BookingStatus.APPROVED
        assert approved.approved_by == teacher_user.id
        assert approved.approved_at is not None

    def test_admin_rejects_pending_booking(self, db_session, admin_user, principal_for, request_booking):
        booking = request_booking()

        rejected = approval.reject_booking(db_session, principal_for(admin_user), booking.id)
        assert rejected.status is BookingStatus.REJECTED
        assert rejected.approved_by == admin_user.id

    def test_student_cannot_approve_even_own_booking(self, db_session, student_user, principal_for, request_booking):
        booking = request_booking()

        with pytest.raises(AuthorizationError) as exc_info:
            approval.approve_booking(db_session, principal_for(student_user), booking.id)
        assert exc_info.value.message == "Only teachers and admins can approve or reject bookings"

    def test_missing_booking(self, db_session, teacher_user, principal_for):
        with pytest.raises(NotFoundError):
            approval.approve_booking(db_session, principal_for(teacher_user), "missing")

    def test_rejected_booking_frees_the_slot(self, db_session, teacher_user, other_student, principal_for, request_booking):
        booking = request_booking()
        approval.reject_booking(db_session, principal_for(teacher_user), booking.id)

        replacement = request_booking(user=other_student, title="Other")
        assert replacement.status is BookingStatus.PENDING

    def test_terminal_bookings_can_be_decided_again(self, db_session, teacher_user, principal_for, request_booking):
        teacher = principal_for(teacher_user)
        booking = request_booking()
        approval.approve_booking(db_session, teacher, booking.id)

        assert approval.reject_booking(db_session, teacher, booking.id).status is BookingStatus.REJECTED
        assert approval.approve_booking(db_session, teacher, booking.id).status is BookingStatus.APPROVED

    def test_strict_mode_only_decides_pending(self, db_session, teacher_user, principal_for, request_booking):
        teacher = principal_for(teacher_user)
        booking = request_booking()
        approval.approve_booking(db_session, teacher, booking.id, strict=True)

        with pytest.raises(BusinessRuleError) as exc_info:
            approval.reject_booking(db_session, teacher, booking.id, strict=True)
        assert exc_info.value.message == "Booking is already approved"

    def test_reapproval_rechecks_the_slot(self, db_session, teacher_user, other_student, principal_for, request_booking):
        teacher = principal_for(teacher_user)
        booking = request_booking()
        approval.reject_booking(db_session, teacher, booking.id)
        request_booking(start=570, end=630, user=other_student, title="Taken")

        with pytest.raises(ConflictError):
            approval.approve_booking(db_session, teacher, booking.id)
        db_session.expire_all()
        assert db_session.get(Booking, booking.id).status is BookingStatus.REJECTED


class TestDecisionsAgainstConcurrentChanges:
    @staticmethod
    def blocking_in_slot(db):
        db.expire_all()
        return db.scalars(
            select(Booking).where(Booking.equipment_id == "bio-1", Booking.status.in_(BLOCKING_BOOKING_STATUSES))
        ).all()

    def test_outdated_pending_copy_does_not_skip_the_slot_check(
        self, db_session, teacher_user, other_student, principal_for, request_booking
    ):
        teacher = principal_for(teacher_user)
        booking = request_booking()
        with SessionLocal() as earlier:
            assert earlier.get(Booking, booking.id).status is BookingStatus.PENDING
            approval.reject_booking(db_session, teacher, booking.id)
            taken = request_booking(user=other_student, title="Taken")

            with pytest.raises(ConflictError):
                approval.approve_booking(earlier, teacher, booking.id)

        assert [b.id for b in self.blocking_in_slot(db_session)] == [taken.id]

    def test_strict_decision_sees_the_committed_status(self, db_session, teacher_user, principal_for, request_booking):
        teacher = principal_for(teacher_user)
        booking = request_booking()
        with SessionLocal() as earlier:
            earlier.get(Booking, booking.id)
            approval.reject_booking(db_session, teacher, booking.id, strict=True)

            with pytest.raises(BusinessRuleError) as exc_info:
                approval.approve_booking(earlier, teacher, booking.id, strict=True)
        assert exc_info.value.message == "Booking is already rejected"

    def test_reapproval_racing_a_new_request(
        self, db_session, teacher_user, other_student, principal_for, request_booking, run_concurrently
    ):
        teacher = principal_for(teacher_user)
        booking = request_booking()
        approval.reject_booking(db_session, teacher, booking.id)
        newcomer = BookingCreate(equipment_id="bio-1", date=DAY, slot_start=540, slot_end=600, title="Taken")

        outcomes = run_concurrently(
            lambda db: approval.approve_booking(db, teacher, booking.id),
            lambda db: bookings.create_booking(db, principal_for(other_student), newcomer, get_settings()),
        )

        assert len([o for o in outcomes if isinstance(o, ConflictError)]) == 1
        assert len(self.blocking_in_slot(db_session)) == 1


class TestDeleteBooking:
    def test_owner_deletes_booking(self, db_session, student_user, principal_for, request_booking):
        booking = request_booking()

        approval.delete_booking(db_session, principal_for(student_user), booking.id)
        assert db_session.get(Booking, booking.id) is None

    def test_student_cannot_delete_others_booking(self, db_session, other_student, principal_for, request_booking):
        booking = request_booking()

        with pytest.raises(AuthorizationError):
            approval.delete_booking(db_session, principal_for(other_student), booking.id)

    def test_student_denied_for_missing_booking(self, db_session, student_user, principal_for):
        with pytest.raises(AuthorizationError):
            approval.delete_booking(db_session, principal_for(student_user), "missing")

    def test_live_session_outlives_its_booking(
        self, db_session, student_user, teacher_user, principal_for, request_booking
    ):
        student = principal_for(student_user)
        booking = request_booking()
        approval.approve_booking(db_session, principal_for(teacher_user), booking.id)
        session = lifecycle.start_session(db_session, student, "bio-1", booking_id=booking.id)

        approval.delete_booking(db_session, student, booking.id)

        db_session.expire_all()
        survivor = db_session.get(UsageSession, session.id)
        assert survivor is not None
        assert survivor.booking_id is None
