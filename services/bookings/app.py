from contextlib import asynccontextmanager
from datetime import date
from typing import List, Optional

from fastapi import Depends, FastAPI, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session

from bioscope import approval, bookings, equipment
from bioscope.config import get_settings
from bioscope.context import AppContext, build_context
from bioscope.database import Base, SessionLocal, engine, get_db
from bioscope.dependencies import get_context, get_current_principal
from bioscope.errors import register_error_handlers
from bioscope.logging_middleware import add_audit_middleware
from bioscope.models import BookingStatus
from bioscope.rate_limit import apply_rate_limiter, limiter
from bioscope.schemas import (
    ApiResponse,
    BookingCreate,
    BookingRead,
    BookingUpdate,
    EquipmentCreate,
    EquipmentRead,
)
from bioscope.tokens import Principal

settings = get_settings()


@asynccontextmanager
async def lifespan(_: FastAPI):
    if settings.run_db_migrations:
        Base.metadata.create_all(bind=engine)
    if settings.seed_equipment:
        with SessionLocal() as db:
            equipment.seed_default_equipment(db)
    yield


def create_app() -> FastAPI:
    fastapi_app = FastAPI(title="Bookings Service", version="0.1.0", lifespan=lifespan)
    fastapi_app.state.context = build_context(settings)
    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    apply_rate_limiter(fastapi_app)
    add_audit_middleware(fastapi_app, "bookings")
    register_error_handlers(fastapi_app)
    return fastapi_app


app = create_app()


@app.get("/health", tags=["health"])
def health() -> dict[str, str]:
    return {"status": "ok", "service": "bookings"}


@app.get("/equipment", response_model=ApiResponse[List[EquipmentRead]])
def list_equipment(
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
) -> ApiResponse[List[EquipmentRead]]:
    return ApiResponse.ok(equipment.list_equipment(db, principal))


@app.post("/equipment", response_model=ApiResponse[EquipmentRead], status_code=status.HTTP_201_CREATED)
@limiter.limit("10/minute")
def register_equipment(
    request: Request,
    equipment_in: EquipmentCreate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
) -> ApiResponse[EquipmentRead]:
    created = equipment.create_equipment(db, principal, equipment_in)
    return ApiResponse.ok(EquipmentRead.model_validate(created))


@app.get("/bookings", response_model=ApiResponse[List[BookingRead]])
@limiter.limit("60/minute")
def list_bookings(
    request: Request,
    equipment_id: Optional[str] = None,
    booking_date: Optional[date] = Query(None, alias="date"),
    user_id: Optional[str] = None,
    booking_status: Optional[BookingStatus] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
) -> ApiResponse[List[BookingRead]]:
    rows = bookings.list_bookings(
        db,
        principal,
        equipment_id=equipment_id,
        booking_date=booking_date,
        user_id=user_id,
        status=booking_status,
        page=page,
        limit=limit,
    )
    return ApiResponse.ok([BookingRead.model_validate(row) for row in rows])


@app.post("/bookings", response_model=ApiResponse[BookingRead])
@limiter.limit("20/minute")
def create_booking(
    request: Request,
    booking_in: BookingCreate,
    principal: Principal = Depends(get_current_principal),
    context: AppContext = Depends(get_context),
    db: Session = Depends(get_db),
) -> ApiResponse[BookingRead]:
    booking = bookings.create_booking(db, principal, booking_in, context.settings)
    return ApiResponse.ok(BookingRead.model_validate(booking), message="Booking requested")


@app.get("/bookings/{booking_id}", response_model=ApiResponse[BookingRead])
def get_booking(
    booking_id: str,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
) -> ApiResponse[BookingRead]:
    return ApiResponse.ok(BookingRead.model_validate(bookings.get_booking(db, principal, booking_id)))


@app.put("/bookings/{booking_id}", response_model=ApiResponse[BookingRead])
@limiter.limit("20/minute")
def update_booking(
    request: Request,
    booking_id: str,
    booking_update: BookingUpdate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
) -> ApiResponse[BookingRead]:
    booking = bookings.update_booking(db, principal, booking_id, booking_update)
    return ApiResponse.ok(BookingRead.model_validate(booking))


@app.delete("/bookings/{booking_id}", response_model=ApiResponse[None])
@limiter.limit("20/minute")
def delete_booking(
    request: Request,
    booking_id: str,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
) -> ApiResponse[None]:
    approval.delete_booking(db, principal, booking_id)
    return ApiResponse.ok(message="Booking deleted")


@app.post("/bookings/{booking_id}/approve", response_model=ApiResponse[BookingRead])
@limiter.limit("30/minute")
def approve_booking(
    request: Request,
    booking_id: str,
    principal: Principal = Depends(get_current_principal),
    context: AppContext = Depends(get_context),
    db: Session = Depends(get_db),
) -> ApiResponse[BookingRead]:
    booking = approval.approve_booking(db, principal, booking_id, strict=context.settings.strict_booking_transitions)
    return ApiResponse.ok(BookingRead.model_validate(booking), message="Booking approved")


@app.post("/bookings/{booking_id}/reject", response_model=ApiResponse[BookingRead])
@limiter.limit("30/minute")
def reject_booking(
    request: Request,
    booking_id: str,
    principal: Principal = Depends(get_current_principal),
    context: AppContext = Depends(get_context),
    db: Session = Depends(get_db),
) -> ApiResponse[BookingRead]:
    booking = approval.reject_booking(db, principal, booking_id, strict=context.settings.strict_booking_transitions)
    return ApiResponse.ok(BookingRead.model_validate(booking), message="Booking rejected")
