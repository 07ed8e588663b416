"""Global exception handlers — map domain errors to HTTP responses."""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.responses import ORJSONResponse
import structlog

from hydra_router.domain.exceptions import (
    DomainError,
    SessionNotFoundError,
    UnknownModelError,
    ValidationError,
)

logger = structlog.get_logger(__name__)

# Most specific first; anything else under DomainError is a 400.
_STATUS_BY_ERROR: tuple[tuple[type[DomainError], int], ...] = (
    (ValidationError, 422),
    (SessionNotFoundError, 404),
    (UnknownModelError, 404),
)


def status_for(exc: DomainError) -> int:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return 400


def register_exception_handlers(app: FastAPI) -> None:
    """Register all domain→HTTP exception mappings."""

    @app.exception_handler(DomainError)
    async def handle_domain(request: Request, exc: DomainError) -> ORJSONResponse:
        status_code = status_for(exc)
        logger.info(
            "domain_error",
            code=exc.code,
            status=status_code,
            path=request.url.path,
        )
        return ORJSONResponse(
            status_code=status_code,
            content={"code": exc.code, "message": exc.message},
        )

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception) -> ORJSONResponse:
        logger.exception("unhandled_exception", error=str(exc), path=request.url.path)
        return ORJSONResponse(
            status_code=500,
            content={
                "code": "INTERNAL_ERROR",
                "message": "An unexpected error occurred",
            },
        )
