"""Backup router for encrypted snapshots and restore."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status

from backoffice_api.dependencies import get_backup_service
from backoffice_api.models.domain.role import PermissionScope, Resource
from backoffice_api.models.domain.user import CurrentUser
from backoffice_api.models.dto.backup import (
    BackupCreateResponse,
    BackupInfoResponse,
    BackupListResponse,
    BackupType,
    RestoreResponse,
)
from backoffice_api.security.auth import require_owner, require_permission
from backoffice_api.security.rate_limit import (
    BACKUP_CREATE_LIMIT,
    BACKUP_INFO_LIMIT,
    BACKUP_RESTORE_LIMIT,
    SENSITIVE_OPERATION_LIMIT,
    get_real_client_ip,
    limiter,
)
from backoffice_api.services.backup_service import BackupService

logger = logging.getLogger(__name__)

router = APIRouter()

ViewBackups = Depends(require_permission(Resource.BACKUP, PermissionScope.VIEW))
AdminBackups = Depends(require_permission(Resource.BACKUP, PermissionScope.ADMIN))


@router.get("", response_model=BackupListResponse)
@limiter.limit(BACKUP_INFO_LIMIT)
async def list_backups(
    request: Request,
    current_user: Annotated[CurrentUser, ViewBackups],
    service: Annotated[BackupService, Depends(get_backup_service)],
) -> BackupListResponse:
    """List stored backups, newest first."""
    items = await service.list_backups()
    return BackupListResponse(items=items, total=len(items))


@router.post("", response_model=BackupCreateResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(BACKUP_CREATE_LIMIT)
async def create_backup(
    request: Request,
    current_user: Annotated[CurrentUser, AdminBackups],
    service: Annotated[BackupService, Depends(get_backup_service)],
) -> BackupCreateResponse:
    """Create a full encrypted backup now."""
    filename = await service.create_full_backup(
        user_id=current_user.user_id,
        ip_address=get_real_client_ip(request),
    )
    return BackupCreateResponse(filename=filename, type=BackupType.FULL)


@router.get("/{filename}", response_model=BackupInfoResponse)
@limiter.limit(BACKUP_INFO_LIMIT)
async def get_backup_info(
    request: Request,
    filename: str,
    current_user: Annotated[CurrentUser, ViewBackups],
    service: Annotated[BackupService, Depends(get_backup_service)],
) -> BackupInfoResponse:
    """Get header information about a backup without decrypting it."""
    return await service.get_backup_info(filename)


@router.post("/{filename}/restore", response_model=RestoreResponse)
@limiter.limit(BACKUP_RESTORE_LIMIT)
async def restore_backup(
    request: Request,
    filename: str,
    current_user: Annotated[CurrentUser, Depends(require_owner)],
    service: Annotated[BackupService, Depends(get_backup_service)],
) -> RestoreResponse:
    """Restore all data from a backup (owner only).

    Current data is saved as a restore point first.
    """
    logger.info(f"Restore of {filename} requested by user {current_user.user_id}")
    return await service.restore(
        filename,
        user_id=current_user.user_id,
        ip_address=get_real_client_ip(request),
    )


@router.delete("/{filename}", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit(SENSITIVE_OPERATION_LIMIT)
async def delete_backup(
    request: Request,
    filename: str,
    current_user: Annotated[CurrentUser, AdminBackups],
    service: Annotated[BackupService, Depends(get_backup_service)],
) -> Response:
    """Delete a stored backup."""
    if not await service.delete_backup(filename):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Backup not found",
        )
    return Response(status_code=status.HTTP_204_NO_CONTENT)
