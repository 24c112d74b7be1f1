"""Reusable FastAPI dependencies for the app context and the caller's identity."""
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .context import AppContext
from .errors import AuthenticationError
from .tokens import ACCESS_TOKEN, Principal

bearer_scheme = HTTPBearer(auto_error=False)


def get_context(request: Request) -> AppContext:
    return request.app.state.context


def get_current_principal(
    request: Request,
    creds: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    context: AppContext = Depends(get_context),
) -> Principal:
    if creds is None or creds.scheme.lower() != "bearer" or not creds.credentials:
        raise AuthenticationError("Missing Bearer token")
    principal = context.tokens.validate(creds.credentials, expected_type=ACCESS_TOKEN)
    request.state.user_id = principal.user_id
    return principal
