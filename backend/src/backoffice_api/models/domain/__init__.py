"""Domain models package."""

from backoffice_api.models.domain.role import (
    Permission,
    PermissionScope,
    Resource,
    UserRole,
)
from backoffice_api.models.domain.user import CurrentUser, PublicUser, UserCredentials

__all__ = [
    "CurrentUser",
    "Permission",
    "PermissionScope",
    "PublicUser",
    "Resource",
    "UserCredentials",
    "UserRole",
]
