"""RBAC router for permission introspection."""

from typing import Annotated

from fastapi import APIRouter, Depends, Request

from backoffice_api.dependencies import get_rbac_service
from backoffice_api.models.domain.role import UserRole
from backoffice_api.models.domain.user import CurrentUser
from backoffice_api.models.dto.rbac import PermissionsResponse, RolePermissionsResponse
from backoffice_api.security.auth import get_current_user, require_admin
from backoffice_api.security.rate_limit import API_DEFAULT_LIMIT, limiter
from backoffice_api.services.rbac_service import RbacService

router = APIRouter()


@router.get("/permissions", response_model=PermissionsResponse)
@limiter.limit(API_DEFAULT_LIMIT)
async def get_my_permissions(
    request: Request,
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    rbac_service: Annotated[RbacService, Depends(get_rbac_service)],
) -> PermissionsResponse:
    """Get the current user's effective permissions."""
    return PermissionsResponse(
        role=current_user.role,
        permissions=rbac_service.get_role_permissions(current_user.role),
    )


@router.get("/roles/{role}/permissions", response_model=RolePermissionsResponse)
@limiter.limit(API_DEFAULT_LIMIT)
async def get_role_permissions(
    request: Request,
    role: UserRole,
    current_user: Annotated[CurrentUser, Depends(require_admin)],
    rbac_service: Annotated[RbacService, Depends(get_rbac_service)],
) -> RolePermissionsResponse:
    """Get the direct and inherited permissions of a role (admin only)."""
    return RolePermissionsResponse(
        role=role,
        inherits=rbac_service.get_inherited_roles(role),
        direct_permissions=rbac_service.get_direct_permissions(role),
        permissions=rbac_service.get_role_permissions(role),
    )
