"""Secure logging utilities to prevent information disclosure."""

import logging
import re

from backoffice_api.config import get_settings


def is_debug_mode() -> bool:
    """Check if application is running in debug mode."""
    return get_settings().debug


def sanitize_exception_message(error: Exception) -> str:
    """Sanitize exception message for logging in production.

    Removes potentially sensitive information like file system paths,
    connection URLs, email addresses and long key or token strings.

    Args:
        error: The exception to sanitize

    Returns:
        Sanitized error message suitable for production logs
    """
    error_msg = str(error)

    # Remove anything that looks like a connection string or URL
    url_pattern = r"(redis|rediss|http|https|file)://[^\s]+"
    error_msg = re.sub(url_pattern, "[URL]", error_msg)

    # Remove file paths (Unix and Windows)
    error_msg = re.sub(r"['\"]?(/[a-zA-Z0-9_./\-]+|[A-Z]:\\[^\s'\"]+)['\"]?", "[PATH]", error_msg)

    # Remove email addresses
    error_msg = re.sub(r"[a-zA-Z0-9_.+-]+@[a-zA-Z0-9-]+\.[a-zA-Z0-9-.]+", "[EMAIL]", error_msg)

    # Remove potential keys/tokens (long alphanumeric strings)
    error_msg = re.sub(r"[a-zA-Z0-9_\-]{32,}", "[TOKEN]", error_msg)

    # Truncate very long messages
    if len(error_msg) > 200:
        error_msg = error_msg[:197] + "..."

    return error_msg


def log_error(
    logger: logging.Logger,
    message: str,
    error: Exception | None = None,
) -> None:
    """Log an error with appropriate detail level based on environment.

    In debug mode, logs full exception details.
    In production, logs sanitized message without sensitive details.

    Args:
        logger: The logger instance to use
        message: The log message (should be generic, no sensitive data)
        error: Optional exception to include
    """
    if error is None:
        logger.error(message)
    elif is_debug_mode():
        logger.error(f"{message}: {error}", exc_info=error)
    else:
        logger.error(f"{message}: {sanitize_exception_message(error)}")


def log_warning(
    logger: logging.Logger,
    message: str,
    error: Exception | None = None,
) -> None:
    """Log a warning with appropriate detail level based on environment.

    Args:
        logger: The logger instance to use
        message: The log message (should be generic, no sensitive data)
        error: Optional exception to include
    """
    if error is None:
        logger.warning(message)
    elif is_debug_mode():
        logger.warning(f"{message}: {error}")
    else:
        logger.warning(f"{message}: {sanitize_exception_message(error)}")
