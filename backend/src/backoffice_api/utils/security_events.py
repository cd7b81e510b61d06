"""Security event logging for sensitive operations.

This module provides a dedicated security logger for tracking security-relevant
events such as logins, permission denials, backups and restores. These events
are logged separately from application logs for security monitoring and
compliance purposes. Events are append-only; retention is an operational
concern of whatever handler is attached to the ``security`` logger.
"""

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class SecurityEventType(str, Enum):
    """Types of security events that are logged."""

    LOGIN = "login"
    LOGOUT = "logout"
    FAILED_LOGIN = "failed_login"
    PASSWORD_CHANGE = "password_change"
    DATA_ACCESS = "data_access"
    DATA_MODIFICATION = "data_modification"
    BACKUP = "backup"
    RESTORE = "restore"


@dataclass(frozen=True)
class SecurityEvent:
    """Immutable security log entry."""

    event_type: SecurityEventType
    user_id: int | None = None
    ip_address: str | None = None
    details: dict[str, Any] = field(default_factory=dict)
    success: bool = True
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["event_type"] = self.event_type.value
        data["timestamp"] = self.timestamp.isoformat()
        return data


# Create a dedicated security logger with its own handler
security_logger = logging.getLogger("security")
logger = logging.getLogger(__name__)


def log_security_event(
    event_type: SecurityEventType,
    user_id: int | None = None,
    ip_address: str | None = None,
    details: dict[str, Any] | None = None,
    success: bool = True,
) -> SecurityEvent:
    """Log a security event.

    Logging is best-effort: a failing handler is reported on the application
    logger and never propagates to the caller.

    Args:
        event_type: The type of security event
        user_id: The ID of the user performing the action
        ip_address: The client IP address
        details: Additional event-specific details
        success: Whether the operation succeeded

    Returns:
        The recorded SecurityEvent
    """
    event = SecurityEvent(
        event_type=event_type,
        user_id=user_id,
        ip_address=ip_address,
        details=dict(details or {}),
        success=success,
    )

    try:
        event_data = event.to_dict()
        # Log at appropriate level based on success
        if success:
            security_logger.info(
                f"Security event: {event_type.value}",
                extra={"security_event": event_data},
            )
        else:
            security_logger.warning(
                f"Security event (failed): {event_type.value}",
                extra={"security_event": event_data},
            )
    except Exception as e:
        logger.warning(f"Failed to record security event {event_type.value}: {e}")

    return event
