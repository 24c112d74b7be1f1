"""Application error taxonomy and the FastAPI handlers that render it.

Engines raise these exceptions; the handlers installed by
:func:`register_error_handlers` turn them into the response envelope.
Authentication, authorization, invalid input and missing resources keep a
transport status code. Conflicts and business-rule failures come back as
``200`` with ``success=false``.
Anything unexpected is logged in full and reported with an opaque message.
"""
from __future__ import annotations

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)

INTERNAL_ERROR_MESSAGE = "An internal server error occurred"


class AppError(Exception):
    category = "internal"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    @property
    def is_client_error(self) -> bool:
        return self.status_code < 500


class AuthenticationError(AppError):
    category = "auth"
    status_code = status.HTTP_401_UNAUTHORIZED


class TokenInvalidError(AuthenticationError):
    def __init__(self, message: str = "Invalid token") -> None:
        super().__init__(message)


class TokenExpiredError(AuthenticationError):
    def __init__(self, message: str = "Token has expired") -> None:
        super().__init__(message)


class AuthorizationError(AppError):
    category = "authz"
    status_code = status.HTTP_403_FORBIDDEN


class InvalidInputError(AppError):
    category = "validation"
    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundError(AppError):
    category = "not_found"
    status_code = status.HTTP_404_NOT_FOUND


class ConflictError(AppError):
    category = "conflict"
    status_code = status.HTTP_200_OK


class BusinessRuleError(AppError):
    category = "business_rule"
    status_code = status.HTTP_200_OK


def error_body(message: str) -> dict:
    return {"success": False, "data": None, "message": None, "error": message}


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    if exc.is_client_error:
        logger.warning(
            "%s %s | category=%s | %s", request.method, request.url.path, exc.category, exc.message
        )
        return JSONResponse(status_code=exc.status_code, content=error_body(exc.message))

    logger.error("%s %s | category=%s | %s", request.method, request.url.path, exc.category, exc.message)
    return JSONResponse(status_code=exc.status_code, content=error_body(INTERNAL_ERROR_MESSAGE))


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    problems = "; ".join(
        f"{'.'.join(str(part) for part in err.get('loc', ()))}: {err.get('msg')}" for err in exc.errors()
    )
    logger.warning("%s %s | category=validation | %s", request.method, request.url.path, problems)
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=error_body(f"Invalid request: {problems}"),
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("%s %s | unhandled error", request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_body(INTERNAL_ERROR_MESSAGE),
    )


def register_error_handlers(app: FastAPI) -> None:
    """Attach the envelope-producing exception handlers to an app."""

    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
