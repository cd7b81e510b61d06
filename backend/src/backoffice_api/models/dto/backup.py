"""Backup DTOs for snapshot listing, creation and restore."""

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel


class BackupType(StrEnum):
    """Kind of backup file."""

    FULL = "full"
    RESTORE_POINT = "restore_point"


class BackupInfo(BaseModel):
    """Listing entry for a stored backup, read from its unencrypted header."""

    filename: str
    type: BackupType
    created_at: datetime
    size_bytes: int


class BackupListResponse(BaseModel):
    """Stored backups, newest first."""

    items: list[BackupInfo]
    total: int


class BackupInfoResponse(BaseModel):
    """Header information about one backup file (no decryption)."""

    filename: str
    valid_format: bool
    version: str | None = None
    type: BackupType | None = None
    created_at: datetime | None = None
    size_bytes: int | None = None
    error: str | None = None


class BackupCreateResponse(BaseModel):
    """Result of creating a backup."""

    filename: str
    type: BackupType


class RestoreResponse(BaseModel):
    """Result of a restore."""

    success: bool
    filename: str
    restore_point: str | None = None
    restored: dict[str, int] = {}
