"""Domain-specific exceptions for the back office API.

These exceptions provide a clean separation between service-layer errors
and HTTP responses, avoiding string matching in routers.
"""

from typing import Any


class BackofficeAPIError(Exception):
    """Base exception for all back office API errors."""

    def __init__(self, message: str = "An error occurred", details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


# =============================================================================
# Cryptographic Errors
# =============================================================================


class IntegrityError(BackofficeAPIError):
    """Raised when authenticated decryption fails (tampered data or wrong key)."""

    def __init__(self, message: str = "Integrity check failed") -> None:
        super().__init__(message)


class VersionMismatchError(BackofficeAPIError):
    """Raised when a backup uses a format version this build cannot read."""

    def __init__(self, found: str | None, supported: str) -> None:
        message = "Unsupported backup version"
        super().__init__(message, {"found": found, "supported": supported})
        self.found = found
        self.supported = supported


# =============================================================================
# Resource Not Found Errors (404)
# =============================================================================


class NotFoundError(BackofficeAPIError):
    """Base class for resource not found errors."""

    pass


class UserNotFoundError(NotFoundError):
    """Raised when a user cannot be found."""

    def __init__(self, user_id: int | None = None) -> None:
        message = "User not found"
        details = {"user_id": user_id} if user_id is not None else {}
        super().__init__(message, details)


class BackupNotFoundError(NotFoundError):
    """Raised when a backup file does not exist."""

    def __init__(self, filename: str | None = None) -> None:
        message = "Backup not found"
        details = {"filename": filename} if filename else {}
        super().__init__(message, details)


# =============================================================================
# Conflict Errors (409)
# =============================================================================


class ConflictError(BackofficeAPIError):
    """Base class for resource conflict errors."""

    pass


class UserAlreadyExistsError(ConflictError):
    """Raised when trying to create a user that already exists."""

    def __init__(self, email: str | None = None) -> None:
        message = "Email already registered"
        details = {"email": email} if email else {}
        super().__init__(message, details)


class SetupCompletedError(ConflictError):
    """Raised when initial setup is attempted after an account exists."""

    def __init__(self) -> None:
        super().__init__("Setup already completed")


# =============================================================================
# Validation Errors (400)
# =============================================================================


class ValidationError(BackofficeAPIError):
    """Base class for validation errors."""

    pass


class WeakPasswordError(ValidationError):
    """Raised when a password does not meet the strength policy."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason, {"reason": reason})


class TwoFactorStateError(ValidationError):
    """Raised when a two-factor operation is not valid in the current state."""

    pass


# =============================================================================
# Authentication / Authorization Errors (401 / 403 / 429)
# =============================================================================


class AuthenticationError(BackofficeAPIError):
    """Raised for bad credentials or invalid, expired or revoked tokens.

    The message is always generic; the precise cause is only logged.
    """

    def __init__(self, message: str = "Invalid credentials") -> None:
        super().__init__(message)


class AuthorizationError(BackofficeAPIError):
    """Raised when an authenticated caller lacks the required permission."""

    def __init__(self, message: str = "Insufficient permissions") -> None:
        super().__init__(message)


class RateLimitError(BackofficeAPIError):
    """Raised when the login throttle rejects an attempt."""

    def __init__(self, minutes_left: int) -> None:
        super().__init__("Too many login attempts", {"minutes_left": minutes_left})
        self.minutes_left = minutes_left


# =============================================================================
# Backup Errors (500)
# =============================================================================


class BackupError(BackofficeAPIError):
    """Raised when creating or applying a backup fails."""

    pass
