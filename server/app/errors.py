"""
Application error taxonomy and FastAPI exception handlers.

Every expected failure is raised as an ``AppError`` subclass carrying its HTTP
status. Handlers turn them into the standard error envelope:

    {"success": false, "message": str, "statusCode": int}
"""

import logging
from typing import Optional

from app.config import settings
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class AppError(Exception):
    """Base class for errors reported to API callers."""

    status_code = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ValidationError(AppError):
    """Malformed input."""

    status_code = 400


class AuthenticationError(AppError):
    """Missing, invalid or expired credentials."""

    status_code = 401


class AuthorizationError(AppError):
    """Role or ownership mismatch."""

    status_code = 403


class NotFoundError(AppError):
    """Referenced record does not exist."""

    status_code = 404


class StateError(AppError):
    """Operation not allowed in the record's current status."""

    status_code = 400


class SchedulingConflictError(AppError):
    """No capacity left for the requested date."""

    status_code = 409


def error_body(message: str, status_code: int) -> dict:
    return {"success": False, "message": message, "statusCode": status_code}


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} -> {exc.status_code}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=error_body(exc.message, exc.status_code))


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    message = errors[0].get("msg", "Validation failed") if errors else "Validation failed"
    return JSONResponse(status_code=400, content=error_body(message, 400))


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=True)

    body = error_body("Internal Server Error", 500)
    if settings.is_production:
        body["message"] = "Something went wrong!"
    elif settings.APP_ENV == "development":
        body["error"] = type(exc).__name__
    return JSONResponse(status_code=500, content=body)


def register_exception_handlers(app: FastAPI) -> None:
    """Attach the error envelope handlers to the application."""
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
