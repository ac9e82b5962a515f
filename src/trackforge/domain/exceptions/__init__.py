"""Domain exceptions.

Every exception carries a stable ``code`` string so the API layer can
return it next to the human-readable message. The HTTP status each one
maps to is noted in its docstring and enforced in
``trackforge.api.exception_handlers``.
"""

from typing import Any


class DomainException(Exception):
    """Base exception for all domain exceptions."""

    code = "domain_error"
    # Whether repeating the same operation later may succeed
    retryable = False

    # Hey future me, message is an attribute so handlers can read it without parsing str(exc).
    # Never raise this directly, always a subclass so callers can catch precisely.
    def __init__(self, message: str, *args: Any) -> None:
        super().__init__(message, *args)
        self.message = message


class EntityNotFoundException(DomainException):
    """Raised when an entity is not found.

    HTTP Status: 404
    """

    code = "not_found"

    def __init__(self, entity_type: str, entity_id: Any) -> None:
        super().__init__(f"{entity_type} with id {entity_id} not found")
        self.entity_type = entity_type
        self.entity_id = entity_id


class DataIntegrityError(EntityNotFoundException):
    """A referenced job or track does not exist where the pipeline expects it.

    HTTP Status: 404
    """

    code = "data_integrity"


class ValidationError(DomainException):
    """Input validation failed.

    HTTP Status: 422

    Example:
        raise ValidationError("prompt or lyrics is required")
    """

    code = "validation_error"


class ConfigurationError(DomainException):
    """Application misconfiguration (missing API key, unknown service).

    HTTP Status: 503
    """

    code = "configuration_error"


class AuthenticationError(DomainException):
    """Caller could not be identified.

    HTTP Status: 401
    """

    code = "unauthenticated"


class RateLimitExceededError(DomainException):
    """The caller exhausted its admission window for a service.

    HTTP Status: 429
    """

    code = "rate_limited"

    def __init__(self, service: str, retry_after_seconds: int) -> None:
        super().__init__(
            f"Rate limit exceeded for {service} - retry after {retry_after_seconds}s"
        )
        self.service = service
        self.retry_after_seconds = retry_after_seconds


class ExternalServiceError(DomainException):
    """A generation provider call failed.

    HTTP Status: 502
    """

    code = "external_service_error"

    def __init__(self, message: str, service: str | None = None) -> None:
        super().__init__(message)
        self.service = service


class ProviderTimeout(ExternalServiceError):
    """Provider call exceeded its hard timeout.

    HTTP Status: 504
    """

    code = "provider_timeout"
    retryable = True


class ProviderUnavailable(ExternalServiceError):
    """Provider answered 5xx or could not be reached.

    HTTP Status: 503
    """

    code = "provider_unavailable"
    retryable = True


class ProviderRejected(ExternalServiceError):
    """Provider refused the request (4xx, unknown task, business error code).

    HTTP Status: 502
    """

    code = "provider_rejected"

    def __init__(
        self, message: str, service: str | None = None, status_code: int | None = None
    ) -> None:
        super().__init__(message, service)
        self.status_code = status_code


class ProviderProtocolError(ExternalServiceError):
    """Provider answered successfully but the body was unusable.

    HTTP Status: 502
    """

    code = "provider_protocol_error"


class PollingTimeout(DomainException):
    """A task did not reach a terminal status within the poll bounds.

    HTTP Status: 504
    """

    code = "polling_timeout"

    def __init__(self, task_id: str, last_status: str | None, attempts: int) -> None:
        super().__init__(
            f"Task {task_id} still {last_status or 'unknown'} after {attempts} attempts"
        )
        self.task_id = task_id
        self.last_status = last_status
        self.attempts = attempts


class DownloadFailed(DomainException):
    """Fetching the result media failed. The job is left retryable.

    HTTP Status: 502
    """

    code = "download_failed"
    retryable = True

    def __init__(self, url: str, reason: str) -> None:
        super().__init__(f"Download of {url} failed: {reason}")
        self.url = url
        self.reason = reason


class StorageWriteFailed(DomainException):
    """Writing to blob storage failed or the path already existed.

    HTTP Status: 500
    """

    code = "storage_write_failed"
    retryable = True

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"Storage write to {path} failed: {reason}")
        self.path = path
        self.reason = reason


EntityNotFoundError = EntityNotFoundException


__all__ = [
    # Base
    "DomainException",
    # Entity exceptions
    "EntityNotFoundException",
    "EntityNotFoundError",  # Alias
    "DataIntegrityError",
    # Request exceptions
    "ValidationError",
    "AuthenticationError",
    "RateLimitExceededError",
    "ConfigurationError",
    # Provider exceptions
    "ExternalServiceError",
    "ProviderTimeout",
    "ProviderUnavailable",
    "ProviderRejected",
    "ProviderProtocolError",
    "PollingTimeout",
    # Ingestion exceptions
    "DownloadFailed",
    "StorageWriteFailed",
]
