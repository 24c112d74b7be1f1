"""The dependency bundle each service builds once at startup."""
from dataclasses import dataclass

from .config import Settings, get_settings
from .tokens import TokenService


@dataclass(frozen=True)
class AppContext:
    settings: Settings
    tokens: TokenService


def build_context(settings: Settings | None = None) -> AppContext:
    settings = settings or get_settings()
    tokens = TokenService(
        secret=settings.jwt_secret,
        algorithm=settings.jwt_algorithm,
        access_ttl_seconds=settings.access_token_expire_seconds,
        refresh_ttl_seconds=settings.refresh_token_expire_seconds,
    )
    return AppContext(settings=settings, tokens=tokens)
