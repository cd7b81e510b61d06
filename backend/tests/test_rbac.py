"""Tests for role hierarchy resolution and permission checks."""

import pytest

from backoffice_api.models.domain.role import (
    ROLE_HIERARCHY,
    ROLE_PERMISSIONS,
    Permission,
    PermissionScope,
    Resource,
    UserRole,
)
from backoffice_api.services.rbac_service import (
    ALL_PERMISSIONS,
    RbacService,
    build_permission_closure,
    get_effective_permissions,
    has_permission,
    is_sensitive,
)


class TestHasPermission:
    """Effective permission checks."""

    @pytest.mark.parametrize(
        ("role", "resource", "scope", "expected"),
        [
            (UserRole.GUEST, Resource.DASHBOARD, PermissionScope.VIEW, True),
            (UserRole.GUEST, Resource.INVOICES, PermissionScope.VIEW, False),
            (UserRole.VIEWER, Resource.INVOICES, PermissionScope.VIEW, True),
            (UserRole.VIEWER, Resource.INVOICES, PermissionScope.DELETE, False),
            (UserRole.MANAGER, Resource.INVOICES, PermissionScope.CREATE, True),
            (UserRole.MANAGER, Resource.EMPLOYEES, PermissionScope.EDIT, True),
            (UserRole.MANAGER, Resource.USERS, PermissionScope.DELETE, False),
            (UserRole.ADMIN, Resource.BACKUP, PermissionScope.VIEW, True),
            (UserRole.ADMIN, Resource.BACKUP, PermissionScope.ADMIN, False),
            (UserRole.OWNER, Resource.BACKUP, PermissionScope.ADMIN, True),
            (UserRole.OWNER, Resource.USERS, PermissionScope.DELETE, True),
        ],
    )
    def test_table(
        self, role: UserRole, resource: Resource, scope: PermissionScope, expected: bool
    ) -> None:
        assert has_permission(role, resource, scope) is expected

    @pytest.mark.parametrize("resource", list(Resource))
    @pytest.mark.parametrize("scope", list(PermissionScope))
    def test_system_has_everything(self, resource: Resource, scope: PermissionScope) -> None:
        assert has_permission(UserRole.SYSTEM, resource, scope)

    def test_inheritance_is_monotonic(self) -> None:
        """Every role holds at least the permissions of each parent."""
        for role, parents in ROLE_HIERARCHY.items():
            for parent in parents:
                assert get_effective_permissions(parent) <= get_effective_permissions(role)

    def test_direct_grants_included(self) -> None:
        for role, direct in ROLE_PERMISSIONS.items():
            assert direct <= get_effective_permissions(role)


class TestPermissionClosure:
    """Building the closure from a hierarchy table."""

    def test_cycle_detected(self) -> None:
        """A cyclic hierarchy is rejected at build time."""
        hierarchy = {
            UserRole.GUEST: (UserRole.VIEWER,),
            UserRole.VIEWER: (UserRole.USER,),
            UserRole.USER: (UserRole.GUEST,),
        }
        with pytest.raises(ValueError, match="Cycle"):
            build_permission_closure(hierarchy, {})

    def test_unknown_parent_rejected(self) -> None:
        hierarchy = {UserRole.VIEWER: (UserRole.GUEST,)}
        with pytest.raises(ValueError, match="missing"):
            build_permission_closure(hierarchy, {})

    def test_diamond_inheritance(self) -> None:
        """Permissions reached by two paths are merged once."""
        view = Permission(resource=Resource.REPORTS, scope=PermissionScope.VIEW)
        export = Permission(resource=Resource.REPORTS, scope=PermissionScope.EXPORT)
        hierarchy = {
            UserRole.GUEST: (),
            UserRole.VIEWER: (UserRole.GUEST,),
            UserRole.USER: (UserRole.GUEST,),
            UserRole.MANAGER: (UserRole.VIEWER, UserRole.USER),
        }
        closure = build_permission_closure(
            hierarchy,
            {UserRole.GUEST: frozenset({view}), UserRole.USER: frozenset({export})},
        )

        assert closure[UserRole.MANAGER] == frozenset({view, export})
        assert closure[UserRole.VIEWER] == frozenset({view})
        assert closure[UserRole.SYSTEM] == ALL_PERMISSIONS


class TestSensitivity:
    """Which granted checks are audited."""

    def test_sensitive_resource(self) -> None:
        assert is_sensitive(Resource.BACKUP, PermissionScope.VIEW)

    def test_sensitive_scope(self) -> None:
        assert is_sensitive(Resource.INVOICES, PermissionScope.DELETE)

    def test_routine_check(self) -> None:
        assert not is_sensitive(Resource.INVOICES, PermissionScope.VIEW)


class TestRbacService:
    """Read-only views used by the API."""

    def test_inherited_roles(self) -> None:
        inherited = RbacService().get_inherited_roles(UserRole.ACCOUNTANT)
        assert set(inherited) == {UserRole.USER, UserRole.VIEWER, UserRole.GUEST}

    def test_permission_codes_sorted(self) -> None:
        codes = RbacService().get_role_permissions(UserRole.VIEWER)
        assert codes == sorted(codes)
        assert "invoices:view" in codes
        assert "dashboard:view" in codes

    def test_direct_permissions(self) -> None:
        assert RbacService().get_direct_permissions(UserRole.GUEST) == ["dashboard:view"]
