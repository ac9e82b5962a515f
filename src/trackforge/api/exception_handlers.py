"""Exception handlers for the FastAPI application.

Every domain exception becomes ``{"detail": <message>, "code": <stable code>}`` with
the status code from ``DOMAIN_STATUS_CODES``. Lookup walks the exception's MRO, so a
subclass without its own entry inherits its parent's status.

Hey future me - we also handle SQLAlchemy OperationalError here. A "database is
locked" during a burst of lock/limiter writes becomes a 503 with Retry-After
instead of a 500 with a stack trace.
"""

import logging
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError
from starlette.exceptions import HTTPException as StarletteHTTPException

from trackforge.domain.exceptions import (
    AuthenticationError,
    ConfigurationError,
    DomainException,
    DownloadFailed,
    EntityNotFoundException,
    ExternalServiceError,
    PollingTimeout,
    ProviderProtocolError,
    ProviderRejected,
    ProviderTimeout,
    ProviderUnavailable,
    RateLimitExceededError,
    StorageWriteFailed,
    ValidationError,
)

logger = logging.getLogger(__name__)

DOMAIN_STATUS_CODES: dict[type[DomainException], int] = {
    ValidationError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    AuthenticationError: status.HTTP_401_UNAUTHORIZED,
    RateLimitExceededError: status.HTTP_429_TOO_MANY_REQUESTS,
    EntityNotFoundException: status.HTTP_404_NOT_FOUND,
    ConfigurationError: status.HTTP_503_SERVICE_UNAVAILABLE,
    ExternalServiceError: status.HTTP_502_BAD_GATEWAY,
    ProviderRejected: status.HTTP_502_BAD_GATEWAY,
    ProviderProtocolError: status.HTTP_502_BAD_GATEWAY,
    ProviderUnavailable: status.HTTP_503_SERVICE_UNAVAILABLE,
    ProviderTimeout: status.HTTP_504_GATEWAY_TIMEOUT,
    PollingTimeout: status.HTTP_504_GATEWAY_TIMEOUT,
    DownloadFailed: status.HTTP_502_BAD_GATEWAY,
    StorageWriteFailed: status.HTTP_500_INTERNAL_SERVER_ERROR,
}

DB_BUSY_RETRY_AFTER_SECONDS = 3


def status_code_for(exc: DomainException) -> int:
    """HTTP status for a domain exception (closest registered ancestor wins)."""
    for cls in type(exc).__mro__:
        if cls in DOMAIN_STATUS_CODES:
            return DOMAIN_STATUS_CODES[cls]
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def _sanitize_validation_errors(errors: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Decode bytes in pydantic error dicts (raw bodies aren't JSON serializable)."""

    def _sanitize(value: Any) -> Any:
        if isinstance(value, bytes):
            return value.decode("utf-8", errors="replace")
        if isinstance(value, dict):
            return {k: _sanitize(v) for k, v in value.items()}
        if isinstance(value, list | tuple):
            return [_sanitize(item) for item in value]
        return value

    return [_sanitize(error) for error in errors]


def register_exception_handlers(app: FastAPI) -> None:
    """Register handlers for domain, validation, HTTP and database errors.

    Args:
        app: FastAPI application instance
    """

    @app.exception_handler(RateLimitExceededError)
    async def rate_limit_exceeded_handler(
        request: Request, exc: RateLimitExceededError
    ) -> JSONResponse:
        """429 with the wait time in the body and the Retry-After header."""
        logger.info(
            "Rate limit exceeded at %s: %s",
            request.url.path,
            exc.message,
            extra={"path": request.url.path, "service": exc.service},
        )
        return JSONResponse(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            content={
                "detail": exc.message,
                "code": exc.code,
                "retryAfterSeconds": exc.retry_after_seconds,
            },
            headers={"Retry-After": str(exc.retry_after_seconds)},
        )

    @app.exception_handler(DomainException)
    async def domain_exception_handler(
        request: Request, exc: DomainException
    ) -> JSONResponse:
        """Map any domain exception onto its status code."""
        status_code = status_code_for(exc)
        log = logger.error if status_code >= 500 else logger.warning
        log(
            "%s at %s: %s",
            type(exc).__name__,
            request.url.path,
            exc.message,
            extra={"path": request.url.path, "code": exc.code},
        )
        return JSONResponse(
            status_code=status_code,
            content={"detail": exc.message, "code": exc.code},
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Handle request body/query validation errors with 422."""
        errors = _sanitize_validation_errors(list(exc.errors()))
        logger.warning(
            "Request validation error at %s: %s",
            request.url.path,
            errors,
            extra={"path": request.url.path},
        )
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={"detail": errors, "code": ValidationError.code},
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        """Handle HTTP exceptions with proper logging."""
        log = logger.error if exc.status_code >= 500 else logger.info
        log("HTTP error %d at %s: %s", exc.status_code, request.url.path, exc.detail)
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail, "code": f"http_{exc.status_code}"},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(OperationalError)
    async def database_operational_error_handler(
        request: Request, exc: OperationalError
    ) -> JSONResponse:
        """503 + Retry-After for a busy database, 500 for everything else."""
        error_msg = str(exc).lower()
        if "locked" in error_msg or "busy" in error_msg:
            logger.warning(
                "Database busy at %s, asking client to retry",
                request.url.path,
                extra={"path": request.url.path, "error": str(exc)[:200]},
            )
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content={"detail": "Database busy, please retry", "code": "database_busy"},
                headers={"Retry-After": str(DB_BUSY_RETRY_AFTER_SECONDS)},
            )

        logger.error(
            "Database error at %s: %s",
            request.url.path,
            str(exc)[:500],
            extra={"path": request.url.path},
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "detail": "Database error occurred. Please try again.",
                "code": "database_error",
            },
        )
