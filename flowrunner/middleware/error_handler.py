"""
Global Error Handler Middleware

Centralized exception handling for the FastAPI application, ensuring
consistent error responses and proper logging for all exceptions.

Features:
- Structured error codes for client-side handling
- Retry information for transient errors
- Consistent JSON error format
"""

from datetime import datetime
from fastapi import Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
import structlog

from flowrunner.exceptions import AppException, ErrorCode
from flowrunner.config import settings


logger = structlog.get_logger(__name__)


def _build_error_response(
    error_code: str,
    message: str,
    path: str,
    details: dict = None,
    retryable: bool = False,
    retry_after: int = None
) -> dict:
    """Build standardized error response"""
    response = {
        "status": "error",
        "error_code": error_code,
        "message": message,
        "details": details or {},
        "path": path,
        "timestamp": datetime.utcnow().isoformat(),
        "retryable": retryable
    }

    if retry_after:
        response["retry_after"] = retry_after

    return response


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """
    Handle custom application exceptions

    Converts AppException instances to standardized JSON responses
    with appropriate status codes, error codes, and retry information.
    """
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        "Application exception",
        path=request.url.path,
        method=request.method,
        status_code=exc.status_code,
        error_code=exc.error_code.value,
        message=exc.message,
        details=exc.details,
        retryable=exc.retryable,
    )

    response_content = _build_error_response(
        error_code=exc.error_code.value,
        message=exc.message,
        path=request.url.path,
        details=exc.details,
        retryable=exc.retryable,
        retry_after=exc.retry_after
    )

    headers = {}
    if exc.retry_after:
        headers["Retry-After"] = str(exc.retry_after)
    if exc.status_code == status.HTTP_401_UNAUTHORIZED:
        headers["WWW-Authenticate"] = "Bearer"

    return JSONResponse(
        status_code=exc.status_code,
        content=response_content,
        headers=headers if headers else None
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """
    Handle standard HTTP exceptions

    Converts Starlette HTTPException (unknown routes, wrong methods) to
    standardized JSON responses.
    """
    error_code_map = {
        400: ErrorCode.VALIDATION_FAILED.value,
        401: ErrorCode.AUTH_UNAUTHORIZED.value,
        404: ErrorCode.RESOURCE_NOT_FOUND.value,
        409: ErrorCode.RESOURCE_CONFLICT.value,
        500: ErrorCode.INTERNAL_ERROR.value,
        503: ErrorCode.SERVICE_UNAVAILABLE.value,
        504: ErrorCode.TIMEOUT_EXCEEDED.value,
    }
    error_code = error_code_map.get(exc.status_code, ErrorCode.UNKNOWN_ERROR.value)

    logger.warning(
        "HTTP exception",
        path=request.url.path,
        method=request.method,
        status_code=exc.status_code,
        error_code=error_code,
        detail=exc.detail
    )

    response_content = _build_error_response(
        error_code=error_code,
        message=str(exc.detail),
        path=request.url.path
    )

    return JSONResponse(
        status_code=exc.status_code,
        content=response_content
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """
    Handle request validation errors

    A request body that does not describe a workflow graph is rejected
    with 400 before any execution record exists, like a structurally
    invalid graph.
    """
    validation_errors = []
    for error in exc.errors():
        field_path = ".".join(str(loc) for loc in error["loc"])
        validation_errors.append({
            "field": field_path,
            "message": error["msg"],
            "type": error["type"],
        })

    logger.warning(
        "Validation error",
        path=request.url.path,
        method=request.method,
        error_count=len(validation_errors),
        errors=validation_errors
    )

    response_content = _build_error_response(
        error_code=ErrorCode.VALIDATION_FAILED.value,
        message="Request validation failed",
        path=request.url.path,
        details={"validation_errors": validation_errors}
    )

    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=response_content
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Handle all unhandled exceptions

    In production, hides internal error details.
    """
    logger.error(
        "Unhandled exception",
        path=request.url.path,
        method=request.method,
        error_type=type(exc).__name__,
        error=str(exc),
        exc_info=True
    )

    if settings.DEBUG:
        error_detail = {
            "type": type(exc).__name__,
            "message": str(exc)
        }
    else:
        error_detail = {}

    response_content = _build_error_response(
        error_code=ErrorCode.INTERNAL_ERROR.value,
        message="Internal server error" if not settings.DEBUG else str(exc),
        path=request.url.path,
        details=error_detail
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=response_content
    )


def register_exception_handlers(app):
    """
    Register all exception handlers with the FastAPI app

    Example:
        from flowrunner.middleware.error_handler import register_exception_handlers
        register_exception_handlers(app)
    """
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)

    # Catch-all for unhandled exceptions
    app.add_exception_handler(Exception, general_exception_handler)

    logger.info("Exception handlers registered")
