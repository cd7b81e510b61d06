"""Data Transfer Objects package."""

from backoffice_api.models.dto.auth import LoginResponse, TokenResponse, UserInfo
from backoffice_api.models.dto.backup import BackupInfo, BackupListResponse, RestoreResponse

__all__ = [
    "BackupInfo",
    "BackupListResponse",
    "LoginResponse",
    "RestoreResponse",
    "TokenResponse",
    "UserInfo",
]
