"""API routers package."""

from backoffice_api.routers import auth, backup, rbac

__all__ = [
    "auth",
    "backup",
    "rbac",
]
