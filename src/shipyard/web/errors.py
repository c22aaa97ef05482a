"""Mapping of Shipyard domain errors to HTTP responses.

Each ShipyardError subclass maps to one status code and is rendered as
``{"error": <kind>, "detail": <message>, ...}``. Anything unexpected is
logged with its stack and rendered as a 500 without internal details.
"""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from shipyard.errors import (
    ApprovalRejectedError,
    ConflictError,
    FieldValidationError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    ReferentialViolationError,
    ShipyardError,
)
from shipyard.logging import get_logger

logger = get_logger(__name__)

STATUS_CODES: dict[type[ShipyardError], int] = {
    NotFoundError: 404,
    ConflictError: 409,
    FieldValidationError: 422,
    ForbiddenError: 403,
    ApprovalRejectedError: 422,
    ReferentialViolationError: 409,
    InvalidTransitionError: 409,
}


def status_code_for(exc: ShipyardError) -> int:
    """Return the HTTP status for a domain error, 400 for unmapped subclasses."""
    for error_type in type(exc).__mro__:
        if error_type in STATUS_CODES:
            return STATUS_CODES[error_type]
    return 400


async def shipyard_error_handler(request: Request, exc: ShipyardError) -> JSONResponse:
    status_code = status_code_for(exc)
    logger.warning(
        "request_rejected",
        path=request.url.path,
        error=exc.kind,
        status_code=status_code,
        detail=str(exc),
    )
    body = {"error": exc.kind, "detail": str(exc)}
    body.update(exc.extra())
    return JSONResponse(status_code=status_code, content=body)


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        "unhandled_exception",
        path=request.url.path,
        error=str(exc),
        exc_info=exc,
    )
    return JSONResponse(status_code=500, content={"error": "internal_error"})


def register_exception_handlers(app: FastAPI) -> None:
    """Install the domain and fallback exception handlers on an app."""
    app.add_exception_handler(ShipyardError, shipyard_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, unhandled_error_handler)
