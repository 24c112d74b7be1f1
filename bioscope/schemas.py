"""Pydantic schemas shared across the services."""
from datetime import date, datetime
from typing import Any, Dict, Generic, Optional, TypeVar

from pydantic import BaseModel, EmailStr, Field, field_validator

from .models import BookingStatus, EquipmentStatus, RoleEnum, SessionStatus

T = TypeVar("T")


class ApiResponse(BaseModel, Generic[T]):
    """Envelope every endpoint answers with."""

    success: bool
    data: Optional[T] = None
    message: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, data: Any = None, message: Optional[str] = None) -> "ApiResponse":
        return cls(success=True, data=data, message=message)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=6)


class RefreshRequest(BaseModel):
    refresh_token: str


class UserBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr
    role: RoleEnum = RoleEnum.STUDENT


class UserCreate(UserBase):
    password: str = Field(..., min_length=8)


class UserRead(UserBase):
    id: str
    created_at: datetime

    model_config = {"from_attributes": True}


class TokenPairRead(BaseModel):
    token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int
    user: Optional[UserRead] = None


class EquipmentCreate(BaseModel):
    id: str = Field(..., min_length=1, max_length=50)
    name: str = Field(..., min_length=1, max_length=255)
    location: Optional[str] = Field(None, max_length=255)
    status: EquipmentStatus = EquipmentStatus.AVAILABLE
    specs: Dict[str, Any] = Field(default_factory=dict)


class EquipmentRead(EquipmentCreate):
    model_config = {"from_attributes": True}


class BookingCreate(BaseModel):
    equipment_id: str = Field(..., min_length=1, max_length=50)
    date: date
    slot_start: int = Field(..., ge=0, le=24 * 60)
    slot_end: int = Field(..., ge=0, le=24 * 60)
    title: str = Field(..., min_length=1, max_length=255)
    group_name: Optional[str] = Field(None, max_length=255)
    attendees: Optional[int] = Field(None, ge=1)


class BookingUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    group_name: Optional[str] = Field(None, max_length=255)
    attendees: Optional[int] = Field(None, ge=1)

    @field_validator("title")
    @classmethod
    def title_not_null(cls, value: Optional[str]) -> str:
        if value is None:
            raise ValueError("title cannot be null")
        return value


class BookingRead(BaseModel):
    id: str
    equipment_id: str
    date: date
    slot_start: int
    slot_end: int
    title: str
    group_name: Optional[str] = None
    attendees: Optional[int] = None
    requester_id: str
    requester_name: str
    status: BookingStatus
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class SessionCreate(BaseModel):
    equipment_id: str = Field(..., min_length=1, max_length=50)
    booking_id: Optional[str] = None
    notes: Optional[str] = None


class SessionEnd(BaseModel):
    notes: Optional[str] = None


class SessionRead(BaseModel):
    id: str
    user_id: str
    booking_id: Optional[str] = None
    equipment_id: str
    status: SessionStatus
    started_at: datetime
    ended_at: Optional[datetime] = None
    notes: Optional[str] = None

    model_config = {"from_attributes": True}
