"""User domain models."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, EmailStr

from backoffice_api.models.domain.role import UserRole


class UserCredentials(BaseModel):
    """Stored user record, including the password hash."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    email: EmailStr
    name: str | None = None
    role: UserRole = UserRole.USER
    password_hash: str
    is_active: bool = True
    created_at: datetime
    last_login_at: datetime | None = None

    def to_public(self) -> "PublicUser":
        """Project to the fields that may leave the service layer."""
        return PublicUser.model_validate(self.model_dump(exclude={"password_hash"}))


class PublicUser(BaseModel):
    """User fields safe to return to clients."""

    id: int
    email: EmailStr
    name: str | None = None
    role: UserRole
    is_active: bool = True
    created_at: datetime
    last_login_at: datetime | None = None


class CurrentUser(BaseModel):
    """Identity verified from an access token."""

    model_config = ConfigDict(frozen=True)

    user_id: int
    role: UserRole
    email: str | None = None
