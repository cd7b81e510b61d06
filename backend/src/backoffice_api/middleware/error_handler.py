"""Global error handling to prevent information disclosure."""

import logging
from typing import Any

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from backoffice_api.config import get_settings
from backoffice_api.exceptions import (
    AuthenticationError,
    AuthorizationError,
    BackofficeAPIError,
    BackupError,
    ConflictError,
    IntegrityError,
    NotFoundError,
    RateLimitError,
    ValidationError,
    VersionMismatchError,
)
from backoffice_api.utils.secure_logging import sanitize_exception_message

logger = logging.getLogger(__name__)


def _get_cors_headers(request: Request) -> dict[str, str]:
    """Get CORS headers for error responses.

    Exception handlers run outside the CORS middleware, so allowed origins
    are echoed here.

    Args:
        request: The incoming request

    Returns:
        Dict of CORS headers to add to the response
    """
    origin = request.headers.get("origin")
    if not origin:
        return {}

    if origin in get_settings().cors_origins_list:
        return {
            "Access-Control-Allow-Origin": origin,
            "Access-Control-Allow-Credentials": "true",
        }

    return {}


# Safe error messages that can be shown to users
SAFE_ERROR_MESSAGES = {
    400: "Invalid request",
    401: "Authentication required",
    403: "Access denied",
    404: "Resource not found",
    405: "Method not allowed",
    409: "Conflict with existing resource",
    422: "Invalid input data",
    429: "Too many requests",
    500: "Internal server error",
    503: "Service temporarily unavailable",
}

# Error messages that are safe to pass through
ALLOWED_ERROR_PATTERNS = [
    "Invalid credentials",
    "Authentication required",
    "Access denied",
    "Insufficient permissions",
    "Admin access required",
    "Owner access required",
    "Resource not found",
    "User not found",
    "Backup not found",
    "Account is disabled",
    "Current password is incorrect",
    "Password must",
    "Password is too",
    "Password contains",
    "Invalid refresh token",
    "Invalid or expired token",
    "Invalid verification code",
    "Two-factor",
    "Email already registered",
    "Setup already completed",
    "Too many login attempts",
    "Unsupported backup version",
    "Integrity check failed",
    "Invalid backup",
    "Failed to create backup",
    "Failed to restore backup",
]

# Domain exception -> HTTP status, most specific first
DOMAIN_STATUS_CODES: list[tuple[type[BackofficeAPIError], int]] = [
    (RateLimitError, status.HTTP_429_TOO_MANY_REQUESTS),
    (AuthenticationError, status.HTTP_401_UNAUTHORIZED),
    (AuthorizationError, status.HTTP_403_FORBIDDEN),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ConflictError, status.HTTP_409_CONFLICT),
    (VersionMismatchError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (IntegrityError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (BackupError, status.HTTP_500_INTERNAL_SERVER_ERROR),
]


def is_safe_error_message(message: str) -> bool:
    """Check if an error message is safe to expose to users.

    Args:
        message: Error message to check

    Returns:
        True if message is safe to expose
    """
    message_lower = message.lower()
    return any(pattern.lower() in message_lower for pattern in ALLOWED_ERROR_PATTERNS)


def sanitize_error_detail(detail: Any, status_code: int) -> str:
    """Sanitize error detail to prevent information disclosure.

    Args:
        detail: Original error detail
        status_code: HTTP status code

    Returns:
        Safe error message
    """
    if isinstance(detail, str):
        if is_safe_error_message(detail):
            return detail
    elif isinstance(detail, list):
        # Validation errors - only field name and message
        safe_errors = []
        for error in detail:
            if isinstance(error, dict):
                loc = error.get("loc", [])
                msg = error.get("msg", "Invalid value")
                field = loc[-1] if loc else "field"
                if isinstance(field, str) and not field.startswith("_"):
                    safe_errors.append(f"{field}: {msg}")
        if safe_errors:
            return "; ".join(safe_errors[:3])

    return SAFE_ERROR_MESSAGES.get(status_code, "Request failed")


def status_code_for(exc: BackofficeAPIError) -> int:
    """Map a domain exception to its HTTP status code."""
    for exc_type, status_code in DOMAIN_STATUS_CODES:
        if isinstance(exc, exc_type):
            return status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def backoffice_exception_handler(request: Request, exc: BackofficeAPIError) -> JSONResponse:
    """Translate domain exceptions raised by services into HTTP responses.

    Args:
        request: FastAPI request
        exc: Domain exception

    Returns:
        JSONResponse with a sanitized message
    """
    status_code = status_code_for(exc)
    headers = _get_cors_headers(request)

    if status_code >= 500:
        logger.error(
            f"{type(exc).__name__} for {request.url.path}: {sanitize_exception_message(exc)}"
        )
    else:
        logger.info(f"{type(exc).__name__} for {request.url.path}: {exc.message}")

    if isinstance(exc, RateLimitError):
        headers["Retry-After"] = str(exc.minutes_left * 60)

    if status_code == status.HTTP_401_UNAUTHORIZED:
        headers["WWW-Authenticate"] = "Bearer"

    return JSONResponse(
        status_code=status_code,
        content={"detail": sanitize_error_detail(exc.message, status_code)},
        headers=headers,
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Handle HTTP exceptions with sanitized messages.

    Args:
        request: FastAPI request
        exc: HTTP exception

    Returns:
        JSONResponse with sanitized error
    """
    settings = get_settings()
    headers = {**(getattr(exc, "headers", None) or {}), **_get_cors_headers(request)}

    # In debug mode, return original detail
    if settings.debug:
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail},
            headers=headers,
        )

    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": sanitize_error_detail(exc.detail, exc.status_code)},
        headers=headers,
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Handle request validation errors with sanitized messages.

    Args:
        request: FastAPI request
        exc: Validation exception

    Returns:
        JSONResponse with sanitized error
    """
    settings = get_settings()
    cors_headers = _get_cors_headers(request)

    logger.warning(f"Validation error for {request.url.path}: {len(exc.errors())} error(s)")

    if settings.debug:
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={"detail": exc.errors()},
            headers=cors_headers,
        )

    safe_detail = sanitize_error_detail(exc.errors(), status.HTTP_422_UNPROCESSABLE_ENTITY)

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": safe_detail},
        headers=cors_headers,
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions without leaking information.

    Args:
        request: FastAPI request
        exc: Unexpected exception

    Returns:
        JSONResponse with generic error
    """
    settings = get_settings()
    cors_headers = _get_cors_headers(request)

    logger.error(f"Unhandled exception for {request.url.path}: {exc}", exc_info=True)

    if settings.debug:
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "detail": str(exc),
                "type": type(exc).__name__,
            },
            headers=cors_headers,
        )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": SAFE_ERROR_MESSAGES[500]},
        headers=cors_headers,
    )
