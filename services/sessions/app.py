from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session

from bioscope import lifecycle
from bioscope.config import get_settings
from bioscope.context import build_context
from bioscope.database import Base, engine, get_db
from bioscope.dependencies import get_current_principal
from bioscope.errors import register_error_handlers
from bioscope.logging_middleware import add_audit_middleware
from bioscope.models import SessionStatus
from bioscope.rate_limit import apply_rate_limiter, limiter
from bioscope.schemas import ApiResponse, SessionCreate, SessionEnd, SessionRead
from bioscope.tokens import Principal

settings = get_settings()


@asynccontextmanager
async def lifespan(_: FastAPI):
    if settings.run_db_migrations:
        Base.metadata.create_all(bind=engine)
    yield


def create_app() -> FastAPI:
    fastapi_app = FastAPI(title="Sessions Service", version="0.1.0", lifespan=lifespan)
    fastapi_app.state.context = build_context(settings)
    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    apply_rate_limiter(fastapi_app)
    add_audit_middleware(fastapi_app, "sessions")
    register_error_handlers(fastapi_app)
    return fastapi_app


app = create_app()


@app.get("/health", tags=["health"])
def health() -> dict[str, str]:
    return {"status": "ok", "service": "sessions"}


@app.get("/sessions", response_model=ApiResponse[List[SessionRead]])
@limiter.limit("60/minute")
def list_sessions(
    request: Request,
    equipment_id: Optional[str] = None,
    user_id: Optional[str] = None,
    session_status: Optional[SessionStatus] = Query(None, alias="status"),
    active_only: bool = False,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
) -> ApiResponse[List[SessionRead]]:
    rows = lifecycle.list_sessions(
        db,
        principal,
        equipment_id=equipment_id,
        user_id=user_id,
        status=session_status,
        active_only=active_only,
        page=page,
        limit=limit,
    )
    return ApiResponse.ok([SessionRead.model_validate(row) for row in rows])


@app.post("/sessions", response_model=ApiResponse[SessionRead])
@limiter.limit("20/minute")
def start_session(
    request: Request,
    session_in: SessionCreate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
) -> ApiResponse[SessionRead]:
    session = lifecycle.start_session(
        db,
        principal,
        equipment_id=session_in.equipment_id,
        booking_id=session_in.booking_id,
        notes=session_in.notes,
    )
    return ApiResponse.ok(SessionRead.model_validate(session), message="Session started")


# registered before /sessions/{session_id} so "current" is not taken for an id
@app.get("/sessions/current", response_model=ApiResponse[Optional[SessionRead]])
def current_session(
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
) -> ApiResponse[Optional[SessionRead]]:
    session = lifecycle.get_current_session(db, principal)
    return ApiResponse.ok(SessionRead.model_validate(session) if session is not None else None)


@app.get("/sessions/{session_id}", response_model=ApiResponse[SessionRead])
def get_session(
    session_id: str,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
) -> ApiResponse[SessionRead]:
    return ApiResponse.ok(SessionRead.model_validate(lifecycle.get_session(db, principal, session_id)))


@app.post("/sessions/{session_id}/end", response_model=ApiResponse[SessionRead])
@limiter.limit("20/minute")
def end_session(
    request: Request,
    session_id: str,
    body: Optional[SessionEnd] = None,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
) -> ApiResponse[SessionRead]:
    notes = body.notes if body is not None else None
    session = lifecycle.end_session(db, principal, session_id, notes)
    return ApiResponse.ok(SessionRead.model_validate(session), message="Session ended")
