"""Role-based access control service.

Effective permissions are resolved once, when the module is imported, by
walking ``ROLE_HIERARCHY``. Permission checks are then set lookups.
"""

from collections.abc import Mapping

from backoffice_api.models.domain.role import (
    ROLE_HIERARCHY,
    ROLE_PERMISSIONS,
    SENSITIVE_RESOURCES,
    SENSITIVE_SCOPES,
    Permission,
    PermissionScope,
    Resource,
    UserRole,
)


ALL_PERMISSIONS: frozenset[Permission] = frozenset(
    Permission(resource=resource, scope=scope)
    for resource in Resource
    for scope in PermissionScope
)


def build_permission_closure(
    hierarchy: Mapping[UserRole, tuple[UserRole, ...]],
    direct: Mapping[UserRole, frozenset[Permission]],
) -> dict[UserRole, frozenset[Permission]]:
    """Flatten a role hierarchy into effective permissions per role.

    Args:
        hierarchy: Direct parents of each role
        direct: Directly granted permissions of each role

    Returns:
        Mapping of role to direct plus inherited permissions. ``system``
        maps to every permission.

    Raises:
        ValueError: If the hierarchy contains a cycle or an unknown role
    """
    resolved: dict[UserRole, frozenset[Permission]] = {}

    def resolve(role: UserRole, path: tuple[UserRole, ...]) -> frozenset[Permission]:
        if role in path:
            cycle = " -> ".join(r.value for r in (*path, role))
            raise ValueError(f"Cycle in role hierarchy: {cycle}")
        if role in resolved:
            return resolved[role]
        if role not in hierarchy:
            raise ValueError(f"Role {role.value} missing from role hierarchy")

        permissions = set(direct.get(role, frozenset()))
        for parent in hierarchy[role]:
            permissions |= resolve(parent, (*path, role))

        resolved[role] = frozenset(permissions)
        return resolved[role]

    for role in hierarchy:
        resolve(role, ())

    resolved[UserRole.SYSTEM] = ALL_PERMISSIONS
    return resolved


_EFFECTIVE_PERMISSIONS = build_permission_closure(ROLE_HIERARCHY, ROLE_PERMISSIONS)


def get_effective_permissions(role: UserRole) -> frozenset[Permission]:
    """Get direct and inherited permissions of a role.

    Args:
        role: Role to resolve

    Returns:
        Set of permissions
    """
    return _EFFECTIVE_PERMISSIONS.get(UserRole(role), frozenset())


def has_permission(role: UserRole, resource: Resource, scope: PermissionScope) -> bool:
    """Check whether a role may perform ``scope`` on ``resource``."""
    if role == UserRole.SYSTEM:
        return True
    return Permission(resource=resource, scope=scope) in get_effective_permissions(role)


def is_sensitive(resource: Resource, scope: PermissionScope) -> bool:
    """Whether a granted check on this pair should still be logged."""
    return resource in SENSITIVE_RESOURCES or scope in SENSITIVE_SCOPES


class RbacService:
    """Read-only view of the permission tables for API consumers."""

    def list_roles(self) -> list[UserRole]:
        """List roles, lowest privilege first."""
        return list(UserRole)

    def get_role_permissions(self, role: UserRole) -> list[str]:
        """Get sorted effective permission codes of a role."""
        return sorted(p.code for p in get_effective_permissions(role))

    def get_direct_permissions(self, role: UserRole) -> list[str]:
        """Get sorted directly granted permission codes of a role."""
        return sorted(p.code for p in ROLE_PERMISSIONS.get(role, frozenset()))

    def get_inherited_roles(self, role: UserRole) -> list[UserRole]:
        """Get every role reachable from ``role`` through the hierarchy."""
        seen: list[UserRole] = []
        stack = list(ROLE_HIERARCHY.get(role, ()))
        while stack:
            parent = stack.pop()
            if parent not in seen:
                seen.append(parent)
                stack.extend(ROLE_HIERARCHY.get(parent, ()))
        return seen
