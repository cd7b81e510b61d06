"""Authentication and authorization dependencies for FastAPI routes."""

import logging
from collections.abc import Awaitable, Callable
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from backoffice_api.models.domain.role import (
    ADMIN_ROLES,
    OWNER_ROLES,
    PermissionScope,
    Resource,
    UserRole,
)
from backoffice_api.models.domain.user import CurrentUser
from backoffice_api.security.rate_limit import get_real_client_ip
from backoffice_api.services.rbac_service import has_permission, is_sensitive
from backoffice_api.services.session_store import TokenKind
from backoffice_api.services.token_service import get_token_service
from backoffice_api.utils.security_events import SecurityEventType, log_security_event

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)] = None,
) -> CurrentUser:
    """Get the current authenticated user from the bearer access token.

    The verified identity is also stored on ``request.state.user``.

    Args:
        request: FastAPI request
        credentials: HTTP Bearer credentials

    Returns:
        CurrentUser

    Raises:
        HTTPException: 401 if the header is missing or the token is invalid
    """
    if credentials is None or not credentials.credentials:
        raise _unauthorized("Authentication required")

    user = await get_token_service().verify_token(credentials.credentials, TokenKind.ACCESS)
    if user is None:
        raise _unauthorized("Invalid or expired token")

    request.state.user = user
    return user


def get_bearer_token(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)] = None,
) -> str:
    """Get the raw bearer token (used by logout)."""
    if credentials is None or not credentials.credentials:
        raise _unauthorized("Authentication required")
    return credentials.credentials


def _deny(request: Request, user: CurrentUser, required: str, detail: str) -> HTTPException:
    log_security_event(
        SecurityEventType.DATA_ACCESS,
        user_id=user.user_id,
        ip_address=get_real_client_ip(request),
        details={"action": "access_denied", "required": required, "path": request.url.path},
        success=False,
    )
    return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


def require_permission(
    resource: Resource,
    scope: PermissionScope,
) -> Callable[..., Awaitable[CurrentUser]]:
    """Create a dependency that requires a permission.

    Grants on sensitive resources or scopes are logged as data access.

    Args:
        resource: Resource being accessed
        scope: Required scope on the resource

    Returns:
        Dependency function returning the CurrentUser
    """
    code = f"{resource.value}:{scope.value}"

    async def dependency(
        request: Request,
        current_user: Annotated[CurrentUser, Depends(get_current_user)],
    ) -> CurrentUser:
        if not has_permission(current_user.role, resource, scope):
            raise _deny(request, current_user, code, "Insufficient permissions")

        if is_sensitive(resource, scope):
            log_security_event(
                SecurityEventType.DATA_ACCESS,
                user_id=current_user.user_id,
                ip_address=get_real_client_ip(request),
                details={"permission": code, "path": request.url.path},
            )
        return current_user

    return dependency


def require_role(*roles: UserRole) -> Callable[..., Awaitable[CurrentUser]]:
    """Create a dependency that requires one of the given roles.

    Admin, owner and system pass every role check.

    Args:
        roles: Roles that are allowed

    Returns:
        Dependency function returning the CurrentUser
    """
    allowed = frozenset(roles) | ADMIN_ROLES

    async def dependency(
        request: Request,
        current_user: Annotated[CurrentUser, Depends(get_current_user)],
    ) -> CurrentUser:
        if current_user.role not in allowed:
            raise _deny(
                request,
                current_user,
                ",".join(sorted(r.value for r in allowed)),
                "Insufficient permissions",
            )
        return current_user

    return dependency


async def require_admin(
    request: Request,
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
) -> CurrentUser:
    """Require an admin, owner or system role.

    Raises:
        HTTPException: 403 if the user is not an admin
    """
    if current_user.role not in ADMIN_ROLES:
        raise _deny(request, current_user, "admin", "Admin access required")
    return current_user


async def require_owner(
    request: Request,
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
) -> CurrentUser:
    """Require an owner or system role.

    Raises:
        HTTPException: 403 if the user is not an owner
    """
    if current_user.role not in OWNER_ROLES:
        raise _deny(request, current_user, "owner", "Owner access required")
    return current_user
