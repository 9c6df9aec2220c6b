"""Specific error types for the consolidation and recall engine."""

from .base import (
    ApplicationError,
    ConflictErrorDetails,
    DatabaseErrorDetails,
    ErrorCode,
    ErrorDetails,
    ErrorLevel,
    ResourceErrorDetails,
    ServiceErrorDetails,
    ValidationErrorDetails,
)


class ServiceError(ApplicationError):
    """Error from external service calls."""

    def __init__(self, message: str, details: ServiceErrorDetails | None = None, code: ErrorCode = ErrorCode.SERVICE_UNAVAILABLE):
        super().__init__(
            message=message,
            code=code,
            level=ErrorLevel.ERROR,
            details=details or ServiceErrorDetails(
                source="service",
                operation="external_call",
                service_name="unknown"
            )
        )


class StorageError(ServiceError):
    """The backing store failed or was unreachable."""

    def __init__(self, message: str, details: DatabaseErrorDetails | None = None):
        super().__init__(
            message=message,
            details=details or DatabaseErrorDetails(
                source="storage",
                operation="query",
                service_name="storage",
            ),
            code=ErrorCode.DB_OPERATION,
        )


class EmbeddingError(ServiceError):
    """The embedding provider failed to produce a vector."""

    def __init__(self, message: str, details: ServiceErrorDetails | None = None):
        super().__init__(message=message, details=details, code=ErrorCode.EMBEDDING_FAILED)


class InvalidInputError(ApplicationError):
    """Input rejected before any work is done. Never retried."""

    def __init__(self, message: str, details: ValidationErrorDetails | dict | None = None):
        super().__init__(
            message=message,
            code=ErrorCode.INVALID_INPUT,
            level=ErrorLevel.WARNING,
            details=details
        )


class InvalidStateError(ApplicationError):
    """The resource exists but is not in a state that allows the operation."""

    def __init__(self, message: str, details: ResourceErrorDetails | dict | None = None):
        super().__init__(
            message=message,
            code=ErrorCode.INVALID_STATE,
            level=ErrorLevel.WARNING,
            details=details
        )


class NotFoundError(ApplicationError):
    """Requested resource does not exist."""

    def __init__(self, message: str, details: ResourceErrorDetails | dict | None = None):
        super().__init__(
            message=message,
            code=ErrorCode.NOT_FOUND,
            level=ErrorLevel.WARNING,
            details=details
        )


class RecallConflictError(ApplicationError):
    """An active recall item already tracks the same source."""

    def __init__(self, message: str, existing_item_id: str, details: ConflictErrorDetails | None = None):
        self.existing_item_id = existing_item_id
        super().__init__(
            message=message,
            code=ErrorCode.RESOURCE_CONFLICT,
            level=ErrorLevel.INFO,
            details=details or ConflictErrorDetails(
                source="recall_scheduler",
                operation="create_recall_item",
                resource_type="recall_item",
                action="create",
                existing_id=existing_item_id,
            )
        )


class AuthenticationError(ApplicationError):
    """Authentication-related errors."""

    def __init__(self, message: str, details: ErrorDetails | dict | None = None):
        super().__init__(
            message=message,
            code=ErrorCode.AUTHENTICATION_FAILED,
            level=ErrorLevel.ERROR,
            details=details
        )


class AuthorizationError(ApplicationError):
    """Caller is known but does not own the resource."""

    def __init__(self, message: str, details: ResourceErrorDetails | dict | None = None):
        super().__init__(
            message=message,
            code=ErrorCode.AUTHORIZATION_FAILED,
            level=ErrorLevel.WARNING,
            details=details
        )


class ProcessingError(ApplicationError):
    """General processing errors."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(
            message=message,
            code=ErrorCode.PROCESSING_FAILED,
            level=ErrorLevel.ERROR,
            details=details
        )


class RateLimitError(ApplicationError):
    """Rate limiting errors."""

    def __init__(self, message: str, details: ServiceErrorDetails | None = None):
        super().__init__(
            message=message,
            code=ErrorCode.RATE_LIMITED,
            level=ErrorLevel.WARNING,
            details=details
        )


class TimeoutError(ApplicationError):
    """Timeout errors."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(
            message=message,
            code=ErrorCode.TIMEOUT,
            level=ErrorLevel.ERROR,
            details=details
        )


# Errors a dispatcher or the review path may retry.
TRANSIENT_ERRORS: tuple[type[Exception], ...] = (ServiceError, RateLimitError, TimeoutError)
