"""
Error handler middleware and the analytics exception hierarchy.

Every error the engine raises derives from AppException so the HTTP layer can
render it as `{"error", "correlation_id", "details"}` with the right status:

- ValidationException / InvalidPeriodException: client-correctable input (422)
- NotFoundException: schedule/report/provider missing or not owned by caller (404)
- DataUnavailableException: collaborator store failed transiently, retryable (503)
- ComputationDegradedException: some fan-out sections failed (500)
"""
from typing import Optional, Dict, Any, List
from fastapi import Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from src.lib.logging import get_logger, log_with_context

logger = get_logger(__name__)


class AppException(Exception):
    """Base application exception."""

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class NotFoundException(AppException):
    """Resource not found (or not owned by the caller)."""

    def __init__(self, resource: str, resource_id: Optional[str] = None):
        message = f"{resource} not found"
        if resource_id is not None:
            message = f"{resource} with id '{resource_id}' not found"
        super().__init__(
            message=message,
            status_code=status.HTTP_404_NOT_FOUND,
            details={"resource": resource, "resource_id": resource_id},
        )


class UnauthorizedException(AppException):
    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message=message, status_code=status.HTTP_401_UNAUTHORIZED)


class ForbiddenException(AppException):
    def __init__(self, message: str = "Forbidden"):
        super().__init__(message=message, status_code=status.HTTP_403_FORBIDDEN)


class ValidationException(AppException):
    """Client-correctable input error."""

    def __init__(self, message: str, errors: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details={"errors": errors or {}},
        )


class InvalidPeriodException(ValidationException):
    """Unknown symbolic period name."""

    def __init__(self, period: Any, valid_periods: List[str]):
        super().__init__(
            message=f"Invalid period '{period}'",
            errors={"period": period, "valid_periods": valid_periods},
        )
        self.period = period


class DataUnavailableException(AppException):
    """Record store query failed; the caller may retry."""

    def __init__(self, message: str = "Analytics data is temporarily unavailable", details: Optional[Dict[str, Any]] = None):
        payload = dict(details or {})
        payload["retryable"] = True
        super().__init__(
            message=message,
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            details=payload,
        )


class ComputationDegradedException(AppException):
    """One or more independent sections failed while computing a bundle."""

    def __init__(self, failed: List[str], message: Optional[str] = None):
        super().__init__(
            message=message or f"Sections failed: {', '.join(failed)}",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            details={"failed_sections": failed},
        )
        self.failed = failed
# Exception handlers
RETRY_AFTER_SECONDS = 30


def _error_response(
    request: Request,
    status_code: int,
    message: Any,
    details: Optional[Dict[str, Any]] = None,
) -> JSONResponse:
    content: Dict[str, Any] = {
        "error": message,
        "correlation_id": getattr(request.state, "correlation_id", "unknown"),
    }
    if details:
        content["details"] = details

    headers = None
    if status_code == status.HTTP_503_SERVICE_UNAVAILABLE:
        headers = {"Retry-After": str(RETRY_AFTER_SECONDS)}
    return JSONResponse(status_code=status_code, content=content, headers=headers)


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Render an AppException; 5xx are logged as errors, the rest as warnings."""
    log_with_context(
        logger,
        "warning" if exc.status_code < 500 else "error",
        f"{exc.__class__.__name__}: {exc.message}",
        status_code=exc.status_code,
        path=request.url.path,
        method=request.method,
        details=exc.details,
    )
    return _error_response(request, exc.status_code, exc.message, exc.details)


async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    """Request body and query validation failures in the same envelope."""
    errors = [
        {"loc": list(error["loc"]), "msg": error["msg"], "type": error["type"]}
        for error in exc.errors()
    ]
    log_with_context(logger, "warning", "Request validation failed", path=request.url.path, errors=errors)
    return _error_response(
        request,
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        "Validation error",
        {"errors": errors},
    )


async def http_exception_handler(
    request: Request,
    exc: StarletteHTTPException,
) -> JSONResponse:
    log_with_context(
        logger,
        "warning",
        f"HTTP {exc.status_code}: {exc.detail}",
        status_code=exc.status_code,
        path=request.url.path,
    )
    return _error_response(request, exc.status_code, exc.detail)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Log the stack trace and hide internals from the caller."""
    logger.error(
        f"Unhandled {exc.__class__.__name__} on {request.method} {request.url.path}: {exc}",
        exc_info=exc,
    )
    return _error_response(request, status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error")
