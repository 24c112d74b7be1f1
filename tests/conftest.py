import os
import tempfile
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Generator, List, Optional

import pytest
from fastapi.testclient import TestClient

os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("RATE_LIMITING_ENABLED", "false")
os.environ.setdefault("AUDIT_LOG_DIR", str(Path(tempfile.gettempdir()) / "bioscope-test-logs"))

from bioscope.config import reset_settings_cache  # noqa: E402

reset_settings_cache()

from bioscope import auth, equipment  # noqa: E402
from bioscope.database import Base, SessionLocal, engine  # noqa: E402
from bioscope.models import RoleEnum, User  # noqa: E402
from bioscope.schemas import UserCreate  # noqa: E402
from bioscope.tokens import Principal  # noqa: E402
from services.auth.app import app as auth_app  # noqa: E402
from services.bookings.app import app as bookings_app  # noqa: E402
from services.sessions.app import app as sessions_app  # noqa: E402

PASSWORD = "Passw0rd!"


@pytest.fixture(autouse=True, scope="function")
def _create_test_database() -> Generator[None, None, None]:
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    with SessionLocal() as db:
        equipment.seed_default_equipment(db)
    equipment.equipment_cache.invalidate()
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def db_session() -> Generator:
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def auth_client() -> Generator[TestClient, None, None]:
    with TestClient(auth_app) as client:
        yield client


@pytest.fixture()
def bookings_client() -> Generator[TestClient, None, None]:
    with TestClient(bookings_app) as client:
        yield client


@pytest.fixture()
def sessions_client() -> Generator[TestClient, None, None]:
    with TestClient(sessions_app) as client:
        yield client


def _make_user(name: str, email: str, role: RoleEnum) -> User:
    with SessionLocal() as db:
        return auth.create_user(db, UserCreate(name=name, email=email, password=PASSWORD, role=role))


@pytest.fixture()
def admin_user() -> User:
    return _make_user("Ada Admin", "admin@example.com", RoleEnum.ADMIN)


@pytest.fixture()
def teacher_user() -> User:
    return _make_user("Tom Teacher", "teacher@example.com", RoleEnum.TEACHER)


@pytest.fixture()
def student_user() -> User:
    return _make_user("Sam Student", "student@example.com", RoleEnum.STUDENT)


@pytest.fixture()
def other_student() -> User:
    return _make_user("Olive Student", "olive@example.com", RoleEnum.STUDENT)


@pytest.fixture()
def auth_headers() -> Callable[[User], dict[str, str]]:
    tokens = auth_app.state.context.tokens

    def _headers(user: User) -> dict[str, str]:
        return {"Authorization": f"Bearer {tokens.issue(user.id, user.role)}"}

    return _headers


@pytest.fixture()
def principal_for() -> Callable[..., Principal]:
    def _principal(user: User, session_id: Optional[str] = None) -> Principal:
        now = datetime.now(timezone.utc)
        return Principal(user_id=user.id, role=user.role, issued_at=now, expires_at=now, session_id=session_id)

    return _principal


@pytest.fixture()
def run_concurrently() -> Callable[..., List[Any]]:
    """Run each call on its own thread and database session, released together.

    Returns what every call returned, or the exception it raised, in call order.
    """

    def _run(*calls: Callable[[Any], Any]) -> List[Any]:
        barrier = threading.Barrier(len(calls))
        outcomes: List[Any] = [None] * len(calls)

        def worker(index: int, call: Callable[[Any], Any]) -> None:
            with SessionLocal() as db:
                barrier.wait()
                try:
                    outcomes[index] = call(db)
                except Exception as exc:  # collected for the assertions
                    outcomes[index] = exc

        threads = [threading.Thread(target=worker, args=(i, call)) for i, call in enumerate(calls)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=60)
        return outcomes

    return _run
