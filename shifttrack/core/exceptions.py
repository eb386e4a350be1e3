"""
Domain errors and the global exception handlers that turn them into JSON.

Handlers also prevent stack-trace leakage to clients.
"""

from __future__ import annotations

import logging
import math

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

logger = logging.getLogger(__name__)


# ── Domain errors ───────────────────────────────────────────────────
class ShiftError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(ShiftError):
    """Missing or inconsistent request data. Not retried."""


class ShiftStateError(ValidationError):
    """The request conflicts with the shift's current state."""

    status_code = 409


class NotFoundError(ShiftError):
    """No shift (or employee) matches the request."""

    status_code = 404


class LockTimeoutError(ShiftError):
    """The shift write lock could not be acquired in time. Retryable."""

    status_code = 503

    def __init__(self, timeout: float) -> None:
        super().__init__(
            f"Shift store is busy, could not acquire the write lock within "
            f"{timeout:g} seconds. Please retry."
        )
        self.timeout = timeout


class MalformedTimeError(ValueError):
    """A time string is not HH:MM. Internal; the status engine absorbs it."""

    def __init__(self, value: object) -> None:
        super().__init__(f"Malformed time value: {value!r}")
        self.value = value


# ── Handlers ────────────────────────────────────────────────────────
async def _shift_error_handler(_request: Request, exc: ShiftError) -> JSONResponse:
    headers = None
    if isinstance(exc, LockTimeoutError):
        logger.warning("Lock timeout surfaced to client: %s", exc.message)
        headers = {"Retry-After": str(max(1, math.ceil(exc.timeout)))}
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "success": False},
        headers=headers,
    )


async def _http_exception_handler(_request: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "success": False},
        headers=getattr(exc, "headers", None),
    )


async def _integrity_error_handler(_request: Request, exc: IntegrityError) -> JSONResponse:
    logger.error("Database integrity error: %s", exc, exc_info=True)
    return JSONResponse(
        status_code=409,
        content={"detail": "Database constraint violation", "success": False},
    )


async def _sqlalchemy_error_handler(_request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.error("Database error: %s", exc, exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal database error", "success": False},
    )


async def _generic_exception_handler(_request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled exception: %s", exc)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error", "success": False},
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Attach all exception handlers to the FastAPI app."""
    app.add_exception_handler(ShiftError, _shift_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)  # type: ignore[arg-type]
    app.add_exception_handler(HTTPException, _http_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(IntegrityError, _integrity_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(SQLAlchemyError, _sqlalchemy_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, _generic_exception_handler)
