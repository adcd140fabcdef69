"""API error taxonomy and the FastAPI exception handlers that render it.

Every error response has the shape ``{"error", "message", "details"?}``.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import IntegrityError, NoResultFound, SQLAlchemyError

from .config import settings

log = logging.getLogger(__name__)


class ApiError(Exception):
    """Base class for errors that map directly onto an HTTP response."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    error: str = "Internal Server Error"

    def __init__(
        self,
        message: str,
        details: Any = None,
        headers: dict[str, str] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details
        self.headers = headers


class ValidationError(ApiError):
    status_code = status.HTTP_400_BAD_REQUEST
    error = "Validation Error"


class NotFoundError(ApiError):
    status_code = status.HTTP_404_NOT_FOUND
    error = "Not Found"


class DuplicateError(ApiError):
    status_code = status.HTTP_409_CONFLICT
    error = "Duplicate Entry"


class ForbiddenError(ApiError):
    status_code = status.HTTP_403_FORBIDDEN
    error = "Forbidden"


class PayloadTooLargeError(ApiError):
    status_code = 413
    error = "Payload Too Large"


class RateLimitError(ApiError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    error = "Rate Limit Exceeded"


class InternalError(ApiError):
    pass


def error_body(error: str, message: str, details: Any = None) -> dict[str, Any]:
    body: dict[str, Any] = {"error": error, "message": message}
    if details is not None:
        body["details"] = details
    return body


def _field_path(loc: tuple[Any, ...]) -> str:
    """Turn a pydantic error location into ``field.sub[0]`` form."""
    path = ""
    for part in loc:
        if part in ("body", "query", "path"):
            continue
        if isinstance(part, int):
            path += f"[{part}]"
        else:
            path += f".{part}" if path else str(part)
    return path


def validation_details(errors: list[dict[str, Any]]) -> list[dict[str, Any]]:
    details = []
    for err in errors:
        message = str(err.get("msg", "Invalid value"))
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        details.append({
            "field": _field_path(tuple(err.get("loc", ()))),
            "message": message,
            "type": err.get("type", "value_error"),
        })
    return details


# Exception handlers
def api_error_handler(request: Request, exc: ApiError):
    if exc.status_code >= 500:
        log.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    else:
        log.info("%s %s rejected (%s): %s", request.method, request.url.path, exc.status_code, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.error, exc.message, exc.details),
        headers=exc.headers,
    )


def pydantic_validation_handler(request: Request, exc: PydanticValidationError):
    log.info("%s %s rejected: invalid request data", request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=error_body(
            ValidationError.error,
            "Invalid request data",
            validation_details(exc.errors(include_url=False)),
        ),
    )


def request_validation_handler(request: Request, exc: RequestValidationError):
    log.info("%s %s rejected: invalid request parameters", request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=error_body(
            ValidationError.error,
            "Invalid request data",
            validation_details(list(exc.errors())),
        ),
    )


def integrity_error_handler(request: Request, exc: IntegrityError):
    log.error("Integrity error on %s %s: %s", request.method, request.url.path, exc.orig)
    reason = str(exc.orig).lower()
    if "foreign key" in reason:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=error_body(
                "Foreign Key Constraint",
                "Operation failed due to foreign key constraint",
            ),
        )
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content=error_body(DuplicateError.error, "A record with this value already exists"),
    )


def no_result_handler(request: Request, exc: NoResultFound):
    log.info("%s %s: no matching row", request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_404_NOT_FOUND,
        content=error_body(NotFoundError.error, "Task not found"),
    )


def database_error_handler(request: Request, exc: SQLAlchemyError):
    log.error("Database error on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_body("Database Error", "A database error occurred"),
    )


def unexpected_exception_handler(request: Request, exc: Exception):
    log.exception("Unhandled error on %s %s", request.method, request.url.path)
    message = "An unexpected error occurred" if settings.is_production else str(exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_body(InternalError.error, message or "An unexpected error occurred"),
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(PydanticValidationError, pydantic_validation_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(IntegrityError, integrity_error_handler)
    app.add_exception_handler(NoResultFound, no_result_handler)
    app.add_exception_handler(SQLAlchemyError, database_error_handler)
    app.add_exception_handler(Exception, unexpected_exception_handler)
