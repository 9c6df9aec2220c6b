"""Error handlers for different types of errors"""

from typing import Any

from fastapi import status
from starlette.exceptions import HTTPException

from .base import ApplicationError, ErrorCode, ErrorLevel
from .error_context import ErrorContext, ErrorContextManager
from .logging import get_logger

logger = get_logger(__name__)

# HTTP status for each application error code; anything else is a 500
STATUS_BY_CODE: dict[ErrorCode, int] = {
    ErrorCode.INVALID_REQUEST: status.HTTP_400_BAD_REQUEST,
    ErrorCode.INVALID_INPUT: status.HTTP_400_BAD_REQUEST,
    ErrorCode.INVALID_STATE: status.HTTP_400_BAD_REQUEST,
    ErrorCode.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.DB_RECORD_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.RESOURCE_CONFLICT: status.HTTP_409_CONFLICT,
    ErrorCode.AUTHENTICATION_FAILED: status.HTTP_401_UNAUTHORIZED,
    ErrorCode.AUTHORIZATION_FAILED: status.HTTP_403_FORBIDDEN,
    ErrorCode.RATE_LIMITED: status.HTTP_429_TOO_MANY_REQUESTS,
    ErrorCode.TIMEOUT: status.HTTP_503_SERVICE_UNAVAILABLE,
    ErrorCode.SERVICE_UNAVAILABLE: status.HTTP_503_SERVICE_UNAVAILABLE,
    ErrorCode.CIRCUIT_OPEN: status.HTTP_503_SERVICE_UNAVAILABLE,
    ErrorCode.DB_CONNECTION: status.HTTP_503_SERVICE_UNAVAILABLE,
    ErrorCode.DB_OPERATION: status.HTTP_503_SERVICE_UNAVAILABLE,
    ErrorCode.EMBEDDING_FAILED: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def status_for(error: ApplicationError) -> int:
    """HTTP status code for an application error."""
    return STATUS_BY_CODE.get(error.code, status.HTTP_500_INTERNAL_SERVER_ERROR)


class ErrorHandler:
    """Base class for error handlers"""

    def __init__(
        self,
        context_manager: ErrorContextManager | None = None,
    ):
        self.context_manager = context_manager or ErrorContextManager()

    def _format_response(
        self,
        error_context: ErrorContext,
        level: ErrorLevel,
        additional_context: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Format error response"""
        response: dict[str, Any] = {
            "error": str(error_context.error),
            "error_code": (additional_context or {}).get("error_code", ErrorCode.PROCESSING_FAILED.value),
            "level": level.value,
            "trace_id": error_context.trace_id,
            "timestamp": error_context.timestamp.isoformat(),
        }

        # Include rich structured data if it's an ApplicationError
        if isinstance(error_context.error, ApplicationError):
            response["error_code"] = error_context.error.code.value
            response["details"] = error_context.error.details.model_dump(mode="json")

        if additional_context and additional_context.get("suggested_solution"):
            response["suggested_solution"] = additional_context["suggested_solution"]

        return response

    async def handle_async(
        self, error: Exception, level: ErrorLevel, context: dict[str, Any]
    ) -> dict[str, Any]:
        """Handle error asynchronously"""
        error_context = await self.context_manager.capture_context(error, **context)
        logger.log(level.to_logging_level(), f"Handled error: {error!s}", error_context=error_context.to_dict())
        return self._format_response(error_context, level, context)

    def handle_sync(
        self, error: Exception, level: ErrorLevel, context: dict[str, Any]
    ) -> dict[str, Any]:
        """Handle error synchronously"""
        error_context = ErrorContext(error, **context)
        logger.log(level.to_logging_level(), f"Handled error: {error!s}", error_context=error_context.to_dict())
        return self._format_response(error_context, level, context)


class GlobalErrorHandler(ErrorHandler):
    """Global error handler for the FastAPI application"""

    async def handle_application_error(self, error: ApplicationError) -> tuple[int, dict[str, Any]]:
        """Status code and body for an application error raised by a route."""
        status_code = status_for(error)
        error_context = await self.context_manager.capture_context(error, status_code=status_code)
        body = self._format_response(error_context=error_context, level=error.level)
        # Conflicts name the existing resource so the caller can redirect instead of retrying
        existing_id = getattr(error, "existing_item_id", None)
        if existing_id is not None:
            body["existingItemId"] = existing_id
        if status_code >= status.HTTP_500_INTERNAL_SERVER_ERROR:
            logger.error(f"Request failed: {error.message}", error_context=error_context.to_dict())
        else:
            logger.info(f"Request rejected: {error.message}", error_code=error.code.value, status_code=status_code)
        return status_code, body

    async def handle_http_exception(self, error: HTTPException) -> dict[str, Any]:
        """Handle HTTP exceptions"""
        level = (
            ErrorLevel.ERROR
            if error.status_code >= status.HTTP_500_INTERNAL_SERVER_ERROR
            else ErrorLevel.WARNING
        )
        error_context = await self.context_manager.capture_context(
            error, status_code=error.status_code
        )
        return self._format_response(error_context=error_context, level=level)

    async def handle_validation_error(self, error: Exception, errors: list[dict[str, Any]]) -> dict[str, Any]:
        """Request payloads that fail model validation are reported as 400s."""
        error_context = await self.context_manager.capture_context(error)
        body = self._format_response(
            error_context=error_context,
            level=ErrorLevel.WARNING,
            additional_context={"error_code": ErrorCode.INVALID_REQUEST.value},
        )
        body["error"] = "Invalid request"
        body["details"] = {"errors": errors}
        return body
