"""Centralized dependency injection factories for FastAPI.

Routers depend on these factories rather than constructing services, so
tests can swap implementations with ``app.dependency_overrides``.
"""

from backoffice_api.repositories.user_repository import get_user_repository
from backoffice_api.services import backup_service
from backoffice_api.services.auth_service import AuthService
from backoffice_api.services.backup_service import BackupService
from backoffice_api.services.rbac_service import RbacService
from backoffice_api.services.two_factor_service import (
    TwoFactorService,
    get_two_factor_service as _get_two_factor_service,
)


# =============================================================================
# Core Service Factories
# =============================================================================


def get_auth_service() -> AuthService:
    """Get AuthService instance."""
    return AuthService(get_user_repository())


def get_backup_service() -> BackupService:
    """Get the shared BackupService instance."""
    return backup_service.get_backup_service()


def get_rbac_service() -> RbacService:
    """Get RbacService instance."""
    return RbacService()


def get_two_factor_service() -> TwoFactorService:
    """Get the shared TwoFactorService instance."""
    return _get_two_factor_service()
