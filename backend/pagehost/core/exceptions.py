"""Global exception handlers for the FastAPI application."""

import logging
import traceback

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError, OperationalError

from pagehost.core.errors import (
    HostingDomainConflictError,
    PageHostError,
    ProviderUnavailableError,
)

logger = logging.getLogger(__name__)


def register_exception_handlers(app: FastAPI) -> None:
    """Register all custom exception handlers on the FastAPI application."""

    @app.exception_handler(PageHostError)
    async def pagehost_error_handler(
        request: Request, exc: PageHostError
    ) -> JSONResponse:
        """Map the domain error taxonomy onto HTTP status codes."""
        content: dict = {"detail": exc.message}
        if isinstance(exc, ProviderUnavailableError):
            content["provider"] = exc.provider
            content["operation"] = exc.operation
        elif isinstance(exc, HostingDomainConflictError):
            content["project_id"] = exc.project_id

        log_fn = logger.error if exc.status_code >= 500 else logger.warning
        log_fn(
            "%s on %s %s: %s",
            type(exc).__name__,
            request.method,
            request.url.path,
            exc.message,
        )
        return JSONResponse(status_code=exc.status_code, content=content)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Return a clean 422 with structured validation errors."""
        errors = []
        for err in exc.errors():
            field = " -> ".join(str(loc) for loc in err.get("loc", []))
            errors.append({
                "field": field,
                "message": err.get("msg", "Validation error"),
                "type": err.get("type", "unknown"),
            })
        logger.warning(
            "Validation error on %s %s: %s",
            request.method,
            request.url.path,
            errors,
        )
        return JSONResponse(
            status_code=422,
            content={
                "detail": "Validation error",
                "errors": errors,
            },
        )

    @app.exception_handler(IntegrityError)
    async def integrity_error_handler(
        request: Request, exc: IntegrityError
    ) -> JSONResponse:
        """Handle database integrity constraint violations (unique, FK, etc.)."""
        error_msg = str(exc.orig) if exc.orig else str(exc)

        if "unique" in error_msg.lower() or "duplicate" in error_msg.lower():
            detail = "A record with this value already exists"
        elif "foreign key" in error_msg.lower():
            detail = "Referenced record does not exist or cannot be removed"
        else:
            detail = "Database constraint violation"

        logger.warning(
            "IntegrityError on %s %s: %s",
            request.method,
            request.url.path,
            error_msg,
        )
        return JSONResponse(status_code=409, content={"detail": detail})

    @app.exception_handler(OperationalError)
    async def operational_error_handler(
        request: Request, exc: OperationalError
    ) -> JSONResponse:
        """Handle database connection/operational errors."""
        logger.error(
            "Database operational error on %s %s: %s",
            request.method,
            request.url.path,
            str(exc),
        )
        return JSONResponse(
            status_code=503,
            content={"detail": "Service temporarily unavailable"},
        )

    @app.exception_handler(Exception)
    async def generic_error_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        """Catch-all for unhandled exceptions: log full traceback, return 500."""
        logger.error(
            "Unhandled exception on %s %s: %s\n%s",
            request.method,
            request.url.path,
            str(exc),
            traceback.format_exc(),
        )
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )
