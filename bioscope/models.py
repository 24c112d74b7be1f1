"""SQLAlchemy models shared across all services."""
from __future__ import annotations

import datetime as dt
import uuid
from enum import Enum
from typing import List, Optional, Type

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .database import Base


class RoleEnum(str, Enum):
    STUDENT = "student"
    TEACHER = "teacher"
    ADMIN = "admin"


class BookingStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class SessionStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    ABORTED = "aborted"


class EquipmentStatus(str, Enum):
    AVAILABLE = "available"
    IN_USE = "in_use"
    MAINTENANCE = "maintenance"
    OFFLINE = "offline"


# Statuses that occupy a slot on the equipment calendar.
BLOCKING_BOOKING_STATUSES = (BookingStatus.PENDING, BookingStatus.APPROVED)


def _new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def _enum_column(enum_cls: Type[Enum]) -> SqlEnum:
    # store the lower-case values so raw SQL predicates can use them
    return SqlEnum(
        enum_cls,
        values_callable=lambda members: [member.value for member in members],
        native_enum=False,
        length=20,
    )


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(255))
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    hashed_password: Mapped[str] = mapped_column(String(255))
    role: Mapped[RoleEnum] = mapped_column(_enum_column(RoleEnum), default=RoleEnum.STUDENT, index=True)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    bookings: Mapped[List["Booking"]] = relationship(back_populates="requester", foreign_keys="Booking.requester_id")
    sessions: Mapped[List["UsageSession"]] = relationship(back_populates="user")


class Equipment(Base):
    __tablename__ = "equipment"

    id: Mapped[str] = mapped_column(String(50), primary_key=True)
    name: Mapped[str] = mapped_column(String(255))
    location: Mapped[Optional[str]] = mapped_column(String(255), default=None)
    status: Mapped[EquipmentStatus] = mapped_column(
        _enum_column(EquipmentStatus), default=EquipmentStatus.AVAILABLE
    )
    specs: Mapped[dict] = mapped_column(JSON, default=dict)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class Booking(Base):
    __tablename__ = "bookings"
    __table_args__ = (
        CheckConstraint("slot_end > slot_start", name="ck_bookings_slot_order"),
        Index("ix_bookings_equipment_date", "equipment_id", "date"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    equipment_id: Mapped[str] = mapped_column(ForeignKey("equipment.id"))
    date: Mapped[dt.date] = mapped_column(Date)
    slot_start: Mapped[int] = mapped_column(Integer)
    slot_end: Mapped[int] = mapped_column(Integer)
    title: Mapped[str] = mapped_column(String(255))
    group_name: Mapped[Optional[str]] = mapped_column(String(255), default=None)
    attendees: Mapped[Optional[int]] = mapped_column(Integer, default=None)
    requester_id: Mapped[str] = mapped_column(ForeignKey("users.id"), index=True)
    requester_name: Mapped[str] = mapped_column(String(255))
    status: Mapped[BookingStatus] = mapped_column(
        _enum_column(BookingStatus), default=BookingStatus.PENDING, index=True
    )
    approved_by: Mapped[Optional[str]] = mapped_column(ForeignKey("users.id"), default=None)
    approved_at: Mapped[Optional[dt.datetime]] = mapped_column(DateTime(timezone=True), default=None)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    requester: Mapped[User] = relationship(back_populates="bookings", foreign_keys=[requester_id])


class UsageSession(Base):
    """A period of live equipment usage, optionally started from an approved booking."""

    __tablename__ = "sessions"
    __table_args__ = (
        Index(
            "uq_sessions_one_active_per_user",
            "user_id",
            unique=True,
            sqlite_where=text("status = 'active'"),
            postgresql_where=text("status = 'active'"),
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), index=True)
    booking_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("bookings.id", ondelete="SET NULL"), default=None, index=True
    )
    equipment_id: Mapped[str] = mapped_column(ForeignKey("equipment.id"), index=True)
    status: Mapped[SessionStatus] = mapped_column(
        _enum_column(SessionStatus), default=SessionStatus.ACTIVE, index=True
    )
    started_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)
    ended_at: Mapped[Optional[dt.datetime]] = mapped_column(DateTime(timezone=True), default=None)
    notes: Mapped[Optional[str]] = mapped_column(Text, default=None)

    user: Mapped[User] = relationship(back_populates="sessions")
