"""Services package."""

from backoffice_api.services.auth_service import AuthService
from backoffice_api.services.backup_service import BackupService
from backoffice_api.services.login_throttle import LoginThrottle
from backoffice_api.services.rbac_service import RbacService
from backoffice_api.services.token_service import TokenService
from backoffice_api.services.two_factor_service import TwoFactorService

__all__ = [
    "AuthService",
    "BackupService",
    "LoginThrottle",
    "RbacService",
    "TokenService",
    "TwoFactorService",
]
