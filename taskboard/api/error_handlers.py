"""Error handlers mapping lifecycle failures to HTTP responses."""

import logging
from typing import Dict, Type

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError

from taskboard.domain.exceptions import (
    ConflictError,
    InvalidReferenceError,
    LifecycleError,
    NotFoundError,
    ValidationFailedError,
)
from taskboard.persistence.query import QueryError


logger = logging.getLogger(__name__)


STATUS_BY_ERROR: Dict[Type[LifecycleError], int] = {
    NotFoundError: status.HTTP_404_NOT_FOUND,
    InvalidReferenceError: status.HTTP_400_BAD_REQUEST,
    ConflictError: status.HTTP_409_CONFLICT,
    ValidationFailedError: status.HTTP_400_BAD_REQUEST,
}


def status_for(exc: LifecycleError) -> int:
    for error_type in type(exc).__mro__:
        if error_type in STATUS_BY_ERROR:
            return STATUS_BY_ERROR[error_type]
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def lifecycle_error_handler(request: Request, exc: LifecycleError) -> JSONResponse:
    """Handle typed lifecycle failures."""
    status_code = status_for(exc)
    if status_code >= 500:
        logger.error("Unmapped lifecycle error: %s", exc.message)
    return JSONResponse(
        status_code=status_code,
        content={"detail": exc.to_dict()},
    )


async def query_error_handler(request: Request, exc: QueryError) -> JSONResponse:
    """Handle malformed where/sort/select parameters."""
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "detail": {
                "error_code": "INVALID_QUERY",
                "message": str(exc),
            },
        },
    )


async def validation_error_handler(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    """Handle FastAPI request body/parameter validation errors."""
    errors = []
    for error in exc.errors():
        errors.append({
            "field": ".".join(str(loc) for loc in error["loc"]),
            "message": error["msg"],
            "type": error["type"],
        })

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "detail": {
                "error_code": "VALIDATION_ERROR",
                "message": "Request validation failed",
                "details": {"errors": errors},
            },
        },
    )


async def generic_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected errors."""
    logger.exception("Unhandled error: %s", exc)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "detail": {
                "error_code": "INTERNAL_ERROR",
                "message": "An unexpected error occurred",
            },
        },
    )


def register_error_handlers(app: FastAPI) -> None:
    """Register all error handlers with the app."""
    app.add_exception_handler(LifecycleError, lifecycle_error_handler)
    app.add_exception_handler(QueryError, query_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, generic_error_handler)
