"""
Global exception handlers for the FastAPI application.

Every error response follows the same JSON envelope::

    {
        "error": true,
        "message": "<human-readable description>"
    }

Domain exceptions are defined here so the service layer can raise them
without importing FastAPI.  The four kinds map onto how a client should
react:

- ``ValidationException``  — bad input, show next to the offending field.
- ``NotFoundException``    — referenced entity vanished.
- ``ConflictException``    — illegal state transition (double distribution,
  deleting the last project, ...).
- ``TransientException``   — backend unreachable; the caller may retry.
  Nothing in the service retries a mutation on its own.
"""

import logging
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError
from starlette.exceptions import HTTPException as StarletteHTTPException

from captable.core.resilience import CircuitBreakerError

logger = logging.getLogger(__name__)


# ────────────────────────────────────────────────────────────────────────────
# Domain exceptions  (raised by service layer, caught by handlers below)
# ────────────────────────────────────────────────────────────────────────────


class AppException(Exception):
    """Base exception for all application-level errors."""

    def __init__(self, status_code: int, message: str, details: Any = None):
        self.status_code = status_code
        self.message = message
        self.details = details
        super().__init__(message)


class NotFoundException(AppException):
    """Resource not found (404)."""

    def __init__(self, resource: str, identifier: Any):
        self.resource = resource
        self.identifier = identifier
        super().__init__(
            status_code=404,
            message=f"{resource} with id '{identifier}' not found",
        )


class ValidationException(AppException):
    """Malformed input for a named field (422)."""

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(
            status_code=422,
            message=message,
            details=[{"field": field, "message": message}],
        )


class ConflictException(AppException):
    """Disallowed state transition or duplicate resource (409)."""

    def __init__(self, message: str):
        super().__init__(status_code=409, message=message)


class TransientException(AppException):
    """Backend temporarily unavailable (503).  Safe for the caller to retry."""

    def __init__(self, message: str, retry_after: Optional[float] = None):
        self.retry_after = retry_after
        super().__init__(status_code=503, message=message)


# ────────────────────────────────────────────────────────────────────────────
# FastAPI exception handler registration
# ────────────────────────────────────────────────────────────────────────────


def _error_response(exc: AppException) -> JSONResponse:
    content: dict = {"error": True, "message": exc.message}
    if exc.details is not None:
        content["details"] = exc.details
    headers = None
    if isinstance(exc, TransientException) and exc.retry_after is not None:
        headers = {"Retry-After": str(max(int(exc.retry_after), 1))}
    return JSONResponse(status_code=exc.status_code, content=content, headers=headers)


def add_exception_handlers(app: FastAPI) -> None:
    """Register global exception handlers on the FastAPI application instance."""

    @app.exception_handler(AppException)
    async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
        """Handle domain-specific exceptions raised by the service layer."""
        if exc.status_code >= 500:
            logger.warning("%s %s failed: %s", request.method, request.url.path, exc.message)
        return _error_response(exc)

    @app.exception_handler(CircuitBreakerError)
    async def circuit_open_handler(request: Request, exc: CircuitBreakerError) -> JSONResponse:
        """The database breaker is open — report a retryable 503."""
        logger.warning("Circuit open on %s %s", request.method, request.url.path)
        return _error_response(
            TransientException(
                "Database temporarily unavailable. Please retry.",
                retry_after=exc.retry_after,
            )
        )

    @app.exception_handler(OperationalError)
    async def operational_error_handler(request: Request, exc: OperationalError) -> JSONResponse:
        """Connection loss / deadlock — report a retryable 503."""
        logger.error(
            "OperationalError on %s %s: %s", request.method, request.url.path, exc.orig
        )
        return _error_response(
            TransientException("Database temporarily unavailable. Please retry.")
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        """Handle standard HTTP exceptions (e.g. 404 from path-not-found)."""
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": True, "message": exc.detail},
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """
        Handle Pydantic / FastAPI request-validation errors.

        Returns a 422 with the list of failing fields so a form can show each
        message inline.
        """
        errors = []
        for err in exc.errors():
            loc = " -> ".join(str(part) for part in err["loc"])
            errors.append({"field": loc, "message": err["msg"]})
        return JSONResponse(
            status_code=422,
            content={"error": True, "message": "Validation failed", "details": errors},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Catch-all for unexpected exceptions."""
        logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content={
                "error": True,
                "message": "Internal Server Error. Please contact support.",
            },
        )
