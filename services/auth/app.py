from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session

from bioscope import auth
from bioscope.config import get_settings
from bioscope.context import AppContext, build_context
from bioscope.database import Base, engine, get_db
from bioscope.dependencies import get_context, get_current_principal
from bioscope.errors import register_error_handlers
from bioscope.logging_middleware import add_audit_middleware
from bioscope.rate_limit import apply_rate_limiter, limiter
from bioscope.schemas import ApiResponse, LoginRequest, RefreshRequest, TokenPairRead, UserCreate, UserRead
from bioscope.tokens import Principal

settings = get_settings()


@asynccontextmanager
async def lifespan(_: FastAPI):
    if settings.run_db_migrations:
        Base.metadata.create_all(bind=engine)
    yield


def create_app() -> FastAPI:
    fastapi_app = FastAPI(title="Auth Service", version="0.1.0", lifespan=lifespan)
    fastapi_app.state.context = build_context(settings)
    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    apply_rate_limiter(fastapi_app)
    add_audit_middleware(fastapi_app, "auth")
    register_error_handlers(fastapi_app)
    return fastapi_app


app = create_app()


@app.get("/health", tags=["health"])
def health() -> dict[str, str]:
    return {"status": "ok", "service": "auth"}


@app.post("/auth/login", response_model=ApiResponse[TokenPairRead])
@limiter.limit("10/minute")
def login(
    request: Request,
    credentials: LoginRequest,
    context: AppContext = Depends(get_context),
    db: Session = Depends(get_db),
) -> ApiResponse[TokenPairRead]:
    user, pair = auth.login(db, context.tokens, credentials.email, credentials.password)
    return ApiResponse.ok(
        TokenPairRead(
            token=pair.access_token,
            refresh_token=pair.refresh_token,
            token_type=pair.token_type,
            expires_in=pair.expires_in,
            user=UserRead.model_validate(user),
        )
    )


@app.post("/auth/refresh", response_model=ApiResponse[TokenPairRead])
@limiter.limit("20/minute")
def refresh(
    request: Request,
    body: RefreshRequest,
    context: AppContext = Depends(get_context),
) -> ApiResponse[TokenPairRead]:
    pair = context.tokens.refresh(body.refresh_token)
    return ApiResponse.ok(
        TokenPairRead(
            token=pair.access_token,
            refresh_token=pair.refresh_token,
            token_type=pair.token_type,
            expires_in=pair.expires_in,
        )
    )


@app.post("/auth/logout", response_model=ApiResponse[str])
def logout() -> ApiResponse[str]:
    # tokens are stateless; the client discards them
    return ApiResponse.ok("Logged out successfully")


@app.post("/users", response_model=ApiResponse[UserRead], status_code=status.HTTP_201_CREATED)
@limiter.limit("10/minute")
def create_user(
    request: Request,
    user_in: UserCreate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
) -> ApiResponse[UserRead]:
    user = auth.register_user(db, principal, user_in)
    return ApiResponse.ok(UserRead.model_validate(user))


@app.get("/users/me", response_model=ApiResponse[UserRead])
def read_me(
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
) -> ApiResponse[UserRead]:
    return ApiResponse.ok(UserRead.model_validate(auth.get_own_user(db, principal)))
