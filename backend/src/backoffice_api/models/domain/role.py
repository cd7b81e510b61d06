"""Role and permission domain model.

Permissions are declarative data: each role lists its directly granted
(resource, scope) pairs and the roles it inherits from. Effective
permissions are resolved in ``backoffice_api.services.rbac_service``.
"""

from enum import StrEnum

from pydantic import BaseModel, ConfigDict


class UserRole(StrEnum):
    """User roles, lowest privilege first."""

    GUEST = "guest"
    VIEWER = "viewer"
    USER = "user"
    ACCOUNTANT = "accountant"
    MANAGER = "manager"
    ADMIN = "admin"
    OWNER = "owner"
    SYSTEM = "system"


class Resource(StrEnum):
    """Protected resources."""

    DASHBOARD = "dashboard"
    INVOICES = "invoices"
    EXPENSES = "expenses"
    CLIENTS = "clients"
    EMPLOYEES = "employees"
    INVENTORY = "inventory"
    REPORTS = "reports"
    SETTINGS = "settings"
    USERS = "users"
    BANKING = "banking"
    TAXES = "taxes"
    PAYROLL = "payroll"
    SUBSCRIPTIONS = "subscriptions"
    BILLING = "billing"
    AUDIT_LOGS = "audit_logs"
    BACKUP = "backup"


class PermissionScope(StrEnum):
    """Actions that can be granted on a resource."""

    VIEW = "view"
    CREATE = "create"
    EDIT = "edit"
    DELETE = "delete"
    APPROVE = "approve"
    EXPORT = "export"
    IMPORT = "import"
    ADMIN = "admin"


class Permission(BaseModel):
    """A (resource, scope) pair."""

    model_config = ConfigDict(frozen=True)

    resource: Resource
    scope: PermissionScope

    @property
    def code(self) -> str:
        """Permission code, e.g. ``invoices:create``."""
        return f"{self.resource.value}:{self.scope.value}"

    def __str__(self) -> str:
        return self.code


def _grants(*pairs: tuple[Resource, PermissionScope]) -> frozenset[Permission]:
    return frozenset(Permission(resource=resource, scope=scope) for resource, scope in pairs)


# Direct parents of each role
ROLE_HIERARCHY: dict[UserRole, tuple[UserRole, ...]] = {
    UserRole.GUEST: (),
    UserRole.VIEWER: (UserRole.GUEST,),
    UserRole.USER: (UserRole.VIEWER,),
    UserRole.ACCOUNTANT: (UserRole.USER,),
    UserRole.MANAGER: (UserRole.ACCOUNTANT,),
    UserRole.ADMIN: (UserRole.MANAGER,),
    UserRole.OWNER: (UserRole.ADMIN,),
    UserRole.SYSTEM: (UserRole.OWNER,),
}

R = Resource
S = PermissionScope

# Directly granted permissions per role
ROLE_PERMISSIONS: dict[UserRole, frozenset[Permission]] = {
    UserRole.GUEST: _grants(
        (R.DASHBOARD, S.VIEW),
    ),
    UserRole.VIEWER: _grants(
        (R.INVOICES, S.VIEW),
        (R.EXPENSES, S.VIEW),
        (R.CLIENTS, S.VIEW),
        (R.REPORTS, S.VIEW),
    ),
    UserRole.USER: _grants(
        (R.INVOICES, S.CREATE),
        (R.EXPENSES, S.CREATE),
        (R.CLIENTS, S.CREATE),
        (R.INVENTORY, S.VIEW),
    ),
    UserRole.ACCOUNTANT: _grants(
        (R.INVOICES, S.EDIT),
        (R.INVOICES, S.APPROVE),
        (R.EXPENSES, S.EDIT),
        (R.EXPENSES, S.APPROVE),
        (R.BANKING, S.VIEW),
        (R.BANKING, S.EDIT),
        (R.TAXES, S.VIEW),
        (R.REPORTS, S.EXPORT),
    ),
    UserRole.MANAGER: _grants(
        (R.INVOICES, S.DELETE),
        (R.EXPENSES, S.DELETE),
        (R.CLIENTS, S.EDIT),
        (R.CLIENTS, S.DELETE),
        (R.EMPLOYEES, S.VIEW),
        (R.EMPLOYEES, S.CREATE),
        (R.EMPLOYEES, S.EDIT),
        (R.INVENTORY, S.EDIT),
        (R.PAYROLL, S.VIEW),
        (R.SETTINGS, S.VIEW),
    ),
    UserRole.ADMIN: _grants(
        (R.USERS, S.VIEW),
        (R.USERS, S.CREATE),
        (R.USERS, S.EDIT),
        (R.EMPLOYEES, S.DELETE),
        (R.SETTINGS, S.EDIT),
        (R.AUDIT_LOGS, S.VIEW),
        (R.BACKUP, S.VIEW),
        (R.SUBSCRIPTIONS, S.VIEW),
        (R.BILLING, S.VIEW),
    ),
    UserRole.OWNER: _grants(
        (R.USERS, S.DELETE),
        (R.SETTINGS, S.ADMIN),
        (R.BACKUP, S.ADMIN),
        (R.SUBSCRIPTIONS, S.ADMIN),
        (R.BILLING, S.ADMIN),
    ),
    # System is authorized for everything without table lookup
    UserRole.SYSTEM: frozenset(),
}

del R, S

# Permission checks on these are logged even when granted
SENSITIVE_RESOURCES = frozenset(
    {Resource.USERS, Resource.SETTINGS, Resource.AUDIT_LOGS, Resource.BACKUP}
)
SENSITIVE_SCOPES = frozenset({PermissionScope.DELETE, PermissionScope.ADMIN})

ADMIN_ROLES = frozenset({UserRole.ADMIN, UserRole.OWNER, UserRole.SYSTEM})
OWNER_ROLES = frozenset({UserRole.OWNER, UserRole.SYSTEM})
