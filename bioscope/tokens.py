"""Signed identity tokens: issuance, validation and refresh.

Tokens are HS256 JWTs carrying ``sub`` (user id), ``role``, an optional
``sid`` (bound session id), ``iat``, ``exp`` and ``typ`` (access or refresh).
Validation is pure CPU work and never touches storage.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

from jose import JWTError, jwt

from .errors import TokenExpiredError, TokenInvalidError
from .models import RoleEnum

ACCESS_TOKEN = "access"
REFRESH_TOKEN = "refresh"

Clock = Callable[[], datetime]


def system_clock() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Principal:
    """The authenticated identity behind one request."""

    user_id: str
    role: RoleEnum
    issued_at: datetime
    expires_at: datetime
    session_id: Optional[str] = None
    token_type: str = ACCESS_TOKEN

    @property
    def is_supervisor(self) -> bool:
        return self.role in (RoleEnum.TEACHER, RoleEnum.ADMIN)


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    expires_in: int
    token_type: str = "bearer"


class TokenService:
    def __init__(
        self,
        secret: str,
        algorithm: str = "HS256",
        access_ttl_seconds: int = 3600,
        refresh_ttl_seconds: int = 604800,
        clock: Clock = system_clock,
    ) -> None:
        self._secret = secret
        self._algorithm = algorithm
        self.access_ttl_seconds = access_ttl_seconds
        self.refresh_ttl_seconds = refresh_ttl_seconds
        self._clock = clock

    def issue(
        self,
        user_id: str,
        role: RoleEnum,
        session_id: Optional[str] = None,
        ttl_seconds: Optional[int] = None,
        token_type: str = ACCESS_TOKEN,
    ) -> str:
        now = self._clock()
        ttl = self.access_ttl_seconds if ttl_seconds is None else ttl_seconds
        claims: Dict[str, Any] = {
            "sub": str(user_id),
            "role": RoleEnum(role).value,
            "typ": token_type,
            "iat": int(now.timestamp()),
            "exp": int((now + timedelta(seconds=ttl)).timestamp()),
        }
        if session_id is not None:
            claims["sid"] = str(session_id)
        return jwt.encode(claims, self._secret, algorithm=self._algorithm)

    def issue_pair(self, user_id: str, role: RoleEnum, session_id: Optional[str] = None) -> TokenPair:
        return TokenPair(
            access_token=self.issue(user_id, role, session_id, self.access_ttl_seconds, ACCESS_TOKEN),
            refresh_token=self.issue(user_id, role, session_id, self.refresh_ttl_seconds, REFRESH_TOKEN),
            expires_in=self.access_ttl_seconds,
        )

    def validate(self, token: str, expected_type: Optional[str] = None) -> Principal:
        try:
            # expiry is checked below against our own clock
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm],
                options={"verify_exp": False, "verify_aud": False},
            )
        except JWTError as exc:
            raise TokenInvalidError() from exc

        subject = payload.get("sub")
        role = payload.get("role")
        exp = payload.get("exp")
        if not subject or role is None or exp is None:
            raise TokenInvalidError("Token is missing required claims")
        if not isinstance(exp, (int, float)):
            raise TokenInvalidError("Token expiry is malformed")
        try:
            role = RoleEnum(role)
        except ValueError as exc:
            raise TokenInvalidError("Token carries an unknown role") from exc

        token_type = payload.get("typ", ACCESS_TOKEN)
        if expected_type is not None and token_type != expected_type:
            raise TokenInvalidError(f"Expected a {expected_type} token")

        now = self._clock()
        if not exp > now.timestamp():
            raise TokenExpiredError()

        issued_at = payload.get("iat")
        return Principal(
            user_id=str(subject),
            role=role,
            session_id=payload.get("sid"),
            issued_at=datetime.fromtimestamp(issued_at, tz=timezone.utc) if issued_at else now,
            expires_at=datetime.fromtimestamp(exp, tz=timezone.utc),
            token_type=token_type,
        )

    def refresh(self, refresh_token: str) -> TokenPair:
        """Exchange a refresh token for a new access token; the refresh token is not rotated."""

        principal = self.validate(refresh_token, expected_type=REFRESH_TOKEN)
        access_token = self.issue(
            principal.user_id,
            principal.role,
            principal.session_id,
            self.access_ttl_seconds,
            ACCESS_TOKEN,
        )
        return TokenPair(access_token=access_token, refresh_token=refresh_token, expires_in=self.access_ttl_seconds)
