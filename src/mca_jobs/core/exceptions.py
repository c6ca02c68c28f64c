"""Custom exceptions and exception handlers."""

from typing import Any

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse

from mca_jobs.core.logging import get_logger

logger = get_logger(__name__)


class AppException(Exception):
    """Base application exception."""

    def __init__(self, message: str, status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR):
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)

    def extra(self) -> dict[str, Any]:
        """Additional fields rendered into the error response body."""
        return {}


class NotFoundException(AppException):
    """Resource not found exception."""

    def __init__(self, message: str = "Resource not found"):
        super().__init__(message, status_code=status.HTTP_404_NOT_FOUND)


class ValidationException(AppException):
    """Validation error exception."""

    def __init__(self, message: str = "Validation error"):
        super().__init__(message, status_code=status.HTTP_422_UNPROCESSABLE_ENTITY)


class ConflictException(AppException):
    """A precondition on current state was not met.

    Carries the identifier and status of the record that caused the conflict
    so callers can inspect or act on it.
    """

    def __init__(
        self,
        message: str = "Conflict",
        job_id: str | None = None,
        job_status: str | None = None,
    ):
        super().__init__(message, status_code=status.HTTP_409_CONFLICT)
        self.job_id = job_id
        self.job_status = job_status

    def extra(self) -> dict[str, Any]:
        return {"job_id": self.job_id, "status": self.job_status}


class UnauthorizedException(AppException):
    """Credential rejected."""

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message, status_code=status.HTTP_401_UNAUTHORIZED)


class ForbiddenException(AppException):
    """Credential valid but not allowed to touch the resource."""

    def __init__(self, message: str = "Forbidden"):
        super().__init__(message, status_code=status.HTTP_403_FORBIDDEN)


class ConnectivityException(AppException):
    """External system unreachable with the supplied credential."""

    def __init__(self, message: str = "Invalid API key or connection failed"):
        super().__init__(message, status_code=status.HTTP_400_BAD_REQUEST)


class ServiceUnavailableException(AppException):
    """Temporarily unable to accept work."""

    def __init__(self, message: str = "Service unavailable"):
        super().__init__(message, status_code=status.HTTP_503_SERVICE_UNAVAILABLE)


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handle custom application exceptions.

    Args:
        request: The incoming request.
        exc: The exception that was raised.

    Returns:
        JSONResponse: Error response.
    """
    if exc.status_code >= status.HTTP_500_INTERNAL_SERVER_ERROR:
        logger.error(f"Application error: {exc.message}", exc_info=True)
    else:
        logger.warning(f"Request rejected ({exc.status_code}): {exc.message}")
    content: dict[str, Any] = {
        "success": False,
        "detail": exc.message,
        "type": exc.__class__.__name__,
    }
    content.update(exc.extra())
    return JSONResponse(status_code=exc.status_code, content=content)


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle HTTP exceptions.

    Args:
        request: The incoming request.
        exc: The HTTP exception that was raised.

    Returns:
        JSONResponse: Error response.
    """
    logger.warning(f"HTTP error {exc.status_code}: {exc.detail}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "detail": exc.detail},
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unhandled exceptions.

    Args:
        request: The incoming request.
        exc: The unhandled exception.

    Returns:
        JSONResponse: Error response.
    """
    logger.error(f"Unhandled error: {str(exc)}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"success": False, "detail": "Internal server error"},
    )
