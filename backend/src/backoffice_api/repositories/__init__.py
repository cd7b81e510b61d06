"""Repositories package."""

from backoffice_api.repositories.storage import EntityCollection, InMemoryStorage
from backoffice_api.repositories.user_repository import UserRepository

__all__ = [
    "EntityCollection",
    "InMemoryStorage",
    "UserRepository",
]
