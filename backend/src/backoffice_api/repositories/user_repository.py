"""User credential repository."""

import itertools
import threading
from datetime import datetime, timezone

from backoffice_api.exceptions import (
    SetupCompletedError,
    UserAlreadyExistsError,
    UserNotFoundError,
)
from backoffice_api.models.domain.role import UserRole
from backoffice_api.models.domain.user import UserCredentials


class UserRepository:
    """In-memory repository for user credentials.

    Emails are matched case-insensitively.
    """

    def __init__(self) -> None:
        self._users: dict[int, UserCredentials] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    async def get_by_id(self, user_id: int) -> UserCredentials | None:
        """Get a user by ID.

        Args:
            user_id: User ID

        Returns:
            UserCredentials or None if not found
        """
        with self._lock:
            return self._users.get(user_id)

    async def get_by_email(self, email: str) -> UserCredentials | None:
        """Get a user by email address.

        Args:
            email: User email address

        Returns:
            UserCredentials or None if not found
        """
        needle = email.strip().lower()
        with self._lock:
            for user in self._users.values():
                if user.email.lower() == needle:
                    return user
        return None

    async def count(self) -> int:
        """Number of stored users."""
        with self._lock:
            return len(self._users)

    async def create(
        self,
        email: str,
        password_hash: str,
        name: str | None = None,
        role: UserRole = UserRole.USER,
        only_if_empty: bool = False,
    ) -> UserCredentials:
        """Create a new user.

        Args:
            email: Email address, unique ignoring case
            password_hash: Stored password hash
            name: Display name
            role: Role of the new user
            only_if_empty: Refuse unless this is the first user

        Raises:
            UserAlreadyExistsError: If the email is taken
            SetupCompletedError: If ``only_if_empty`` is set and a user exists
        """
        needle = email.strip().lower()
        with self._lock:
            if only_if_empty and self._users:
                raise SetupCompletedError()
            if any(u.email.lower() == needle for u in self._users.values()):
                raise UserAlreadyExistsError(email)
            user = UserCredentials(
                id=next(self._ids),
                email=email.strip(),
                name=name,
                role=role,
                password_hash=password_hash,
                created_at=datetime.now(timezone.utc),
            )
            self._users[user.id] = user
            return user

    async def update(self, user_id: int, **fields: object) -> UserCredentials:
        """Update fields of a user.

        Raises:
            UserNotFoundError: If the user does not exist
        """
        with self._lock:
            user = self._users.get(user_id)
            if user is None:
                raise UserNotFoundError(user_id)
            updated = user.model_copy(update=fields)
            self._users[user_id] = updated
            return updated

    async def update_password(self, user_id: int, password_hash: str) -> UserCredentials:
        """Replace a user's password hash."""
        return await self.update(user_id, password_hash=password_hash)

    async def record_login(self, user_id: int) -> UserCredentials:
        """Set the last login timestamp to now."""
        return await self.update(user_id, last_login_at=datetime.now(timezone.utc))


# Global instance
_user_repository: UserRepository | None = None


def get_user_repository() -> UserRepository:
    """Get or create the user repository singleton."""
    global _user_repository
    if _user_repository is None:
        _user_repository = UserRepository()
    return _user_repository


def reset_user_repository() -> None:
    """Reset the user repository singleton (for testing)."""
    global _user_repository
    _user_repository = None
