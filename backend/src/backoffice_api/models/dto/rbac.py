"""RBAC introspection DTOs."""

from pydantic import BaseModel

from backoffice_api.models.domain.role import UserRole


class PermissionsResponse(BaseModel):
    """Effective permissions of the current user."""

    role: UserRole
    permissions: list[str]


class RolePermissionsResponse(BaseModel):
    """Direct and effective permissions of a role."""

    role: UserRole
    inherits: list[UserRole]
    direct_permissions: list[str]
    permissions: list[str]
