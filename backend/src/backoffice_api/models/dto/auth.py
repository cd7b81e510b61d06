"""Authentication DTOs."""

from datetime import datetime

from pydantic import BaseModel, EmailStr, Field

from backoffice_api.models.domain.role import UserRole
from backoffice_api.models.domain.user import PublicUser


class TokenResponse(BaseModel):
    """Access token response."""

    access_token: str
    refresh_token: str | None = None
    token_type: str = "bearer"
    expires_in: int


class LoginRequest(BaseModel):
    """Email/password login request."""

    email: EmailStr
    password: str = Field(min_length=1, max_length=128)


class LoginResponse(BaseModel):
    """Result of a login attempt.

    When ``requires_two_factor`` is set no session tokens are issued; the
    client completes the login with ``challenge_token`` and a code.
    """

    user: PublicUser | None = None
    access_token: str | None = None
    refresh_token: str | None = None
    token_type: str = "bearer"
    expires_in: int | None = None
    requires_two_factor: bool = False
    challenge_token: str | None = None


class TwoFactorLoginRequest(BaseModel):
    """Second step of a two-factor login."""

    challenge_token: str = Field(max_length=2000)
    code: str = Field(min_length=6, max_length=16)


class RefreshTokenRequest(BaseModel):
    """Refresh token request."""

    refresh_token: str = Field(max_length=2000)


class LogoutRequest(BaseModel):
    """Logout request; the refresh token is revoked when given."""

    refresh_token: str | None = Field(default=None, max_length=2000)


class RegisterRequest(BaseModel):
    """Create a user account."""

    email: EmailStr
    password: str = Field(min_length=1, max_length=128)
    name: str | None = Field(default=None, max_length=255)
    role: UserRole = UserRole.USER


class SetupRequest(BaseModel):
    """Create the first account, which becomes the owner."""

    email: EmailStr
    password: str = Field(min_length=1, max_length=128)
    name: str | None = Field(default=None, max_length=255)


class SetupStatusResponse(BaseModel):
    """Whether an account exists yet."""

    is_complete: bool


class PasswordChangeRequest(BaseModel):
    """Password change request."""

    current_password: str = Field(min_length=1, max_length=128)
    new_password: str = Field(min_length=1, max_length=128)


class UserInfo(BaseModel):
    """Current user info with effective permissions."""

    id: int
    email: EmailStr
    name: str | None = None
    role: UserRole
    permissions: list[str]
    totp_enabled: bool = False
    last_login_at: datetime | None = None


class TotpSetupResponse(BaseModel):
    """Two-factor setup material, shown once."""

    secret: str
    provisioning_uri: str
    qr_code_svg: str
    backup_codes: list[str]


class TotpVerifyRequest(BaseModel):
    """TOTP code confirming setup."""

    code: str = Field(min_length=6, max_length=6, pattern=r"^\d{6}$")


class TotpStatusResponse(BaseModel):
    """Two-factor status of the current user."""

    state: str
    enabled: bool
    backup_codes_remaining: int


class TotpBackupCodesResponse(BaseModel):
    """Freshly generated backup codes."""

    backup_codes: list[str]


class TotpDisableRequest(BaseModel):
    """Code confirming two-factor removal; a backup code is accepted."""

    code: str | None = Field(default=None, min_length=6, max_length=16)
