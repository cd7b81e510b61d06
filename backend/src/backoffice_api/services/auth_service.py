"""Authentication service."""

import logging

from backoffice_api.exceptions import (
    AuthenticationError,
    AuthorizationError,
    RateLimitError,
    UserNotFoundError,
    WeakPasswordError,
)
from backoffice_api.models.domain.role import OWNER_ROLES, UserRole
from backoffice_api.models.domain.user import PublicUser, UserCredentials
from backoffice_api.models.dto.auth import LoginResponse, TokenResponse, UserInfo
from backoffice_api.repositories.user_repository import UserRepository
from backoffice_api.security.password import PasswordService, get_password_service
from backoffice_api.services.login_throttle import LoginThrottle, get_login_throttle
from backoffice_api.services.rbac_service import get_effective_permissions
from backoffice_api.services.session_store import TokenKind
from backoffice_api.services.token_service import TokenService, get_token_service
from backoffice_api.services.two_factor_service import TwoFactorService, get_two_factor_service
from backoffice_api.utils.security_events import SecurityEventType, log_security_event

logger = logging.getLogger(__name__)


class AuthService:
    """Service for authentication operations."""

    def __init__(
        self,
        user_repo: UserRepository,
        token_service: TokenService | None = None,
        throttle: LoginThrottle | None = None,
        two_factor: TwoFactorService | None = None,
        password_service: PasswordService | None = None,
    ) -> None:
        self.user_repo = user_repo
        self.token_service = token_service or get_token_service()
        self.throttle = throttle or get_login_throttle()
        self.two_factor = two_factor or get_two_factor_service()
        self.password_service = password_service or get_password_service()

    def _token_expires_in(self) -> int:
        return int(self.token_service.access_token_lifetime.total_seconds())

    def _check_throttle(self, identifier: str, ip_address: str | None) -> None:
        result = self.throttle.check(identifier)
        if not result.allowed:
            log_security_event(
                SecurityEventType.FAILED_LOGIN,
                ip_address=ip_address,
                details={"reason": "rate_limited", "minutes_left": result.minutes_left},
                success=False,
            )
            raise RateLimitError(result.minutes_left or 1)

    async def _issue_session(self, user: UserCredentials, ip_address: str | None) -> LoginResponse:
        self.throttle.reset(user.email)
        access_token = await self.token_service.issue_access_token(user)
        refresh_token = await self.token_service.issue_refresh_token(user)
        user = await self.user_repo.record_login(user.id)

        log_security_event(
            SecurityEventType.LOGIN,
            user_id=user.id,
            ip_address=ip_address,
            details={"role": user.role.value},
        )

        return LoginResponse(
            user=user.to_public(),
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=self._token_expires_in(),
        )

    async def login(
        self,
        email: str,
        password: str,
        ip_address: str | None = None,
    ) -> LoginResponse | None:
        """Authenticate with email and password.

        Args:
            email: User email
            password: Plain text password
            ip_address: Client IP address

        Returns:
            LoginResponse with tokens, a LoginResponse flagged
            ``requires_two_factor`` with a challenge token, or None for
            bad credentials

        Raises:
            RateLimitError: If the identifier is throttled
        """
        self._check_throttle(email, ip_address)

        user = await self.user_repo.get_by_email(email)
        if user is None or not user.is_active:
            log_security_event(
                SecurityEventType.FAILED_LOGIN,
                ip_address=ip_address,
                details={"reason": "unknown_user" if user is None else "inactive"},
                success=False,
            )
            return None

        if not self.password_service.verify_password(password, user.password_hash):
            log_security_event(
                SecurityEventType.FAILED_LOGIN,
                user_id=user.id,
                ip_address=ip_address,
                details={"reason": "invalid_password"},
                success=False,
            )
            return None

        if self.two_factor.is_enabled(user.id):
            logger.debug(f"Two-factor challenge issued for user {user.id}")
            return LoginResponse(
                requires_two_factor=True,
                challenge_token=self.token_service.issue_two_factor_challenge(user),
            )

        return await self._issue_session(user, ip_address)

    async def complete_two_factor_login(
        self,
        challenge_token: str,
        code: str,
        ip_address: str | None = None,
    ) -> LoginResponse:
        """Finish a login that required a second factor.

        Raises:
            AuthenticationError: If the challenge or code is invalid
            RateLimitError: If the account is throttled
        """
        user_id = self.token_service.verify_two_factor_challenge(challenge_token)
        if user_id is None:
            raise AuthenticationError("Invalid or expired token")

        user = await self.user_repo.get_by_id(user_id)
        if user is None or not user.is_active:
            raise AuthenticationError()

        self._check_throttle(user.email, ip_address)

        if not self.two_factor.verify_code(user.id, code, ip_address=ip_address):
            raise AuthenticationError("Invalid verification code")

        # A challenge yields at most one session
        if not self.token_service.consume_two_factor_challenge(challenge_token):
            raise AuthenticationError("Invalid or expired token")

        return await self._issue_session(user, ip_address)

    async def refresh_access_token(self, refresh_token: str) -> TokenResponse:
        """Exchange a refresh token for a new access token.

        The refresh token is not rotated.

        Raises:
            AuthenticationError: If the refresh token is invalid
        """
        identity = await self.token_service.verify_token(refresh_token, TokenKind.REFRESH)
        if identity is None:
            raise AuthenticationError("Invalid refresh token")

        user = await self.user_repo.get_by_id(identity.user_id)
        if user is None or not user.is_active:
            await self.token_service.revoke_token(refresh_token, TokenKind.REFRESH)
            raise AuthenticationError("Invalid refresh token")

        access_token = await self.token_service.refresh_access_token(refresh_token, user)
        if access_token is None:
            raise AuthenticationError("Invalid refresh token")

        return TokenResponse(access_token=access_token, expires_in=self._token_expires_in())

    async def logout(self, access_token: str, refresh_token: str | None = None) -> None:
        """Revoke the current access token and, if given, its refresh token."""
        await self.token_service.revoke_token(access_token, TokenKind.ACCESS)
        if refresh_token:
            await self.token_service.revoke_token(refresh_token, TokenKind.REFRESH)

    async def logout_all_sessions(self, user_id: int) -> int:
        """Revoke every session of a user.

        Returns:
            Number of tokens revoked
        """
        return await self.token_service.revoke_all_tokens_for_user(user_id)

    async def register_user(
        self,
        email: str,
        password: str,
        name: str | None = None,
        role: UserRole = UserRole.USER,
        created_by: int | None = None,
        created_by_role: UserRole | None = None,
    ) -> PublicUser:
        """Create a user with a hashed password.

        Only owners may create owners. ``created_by_role`` is None for
        internal callers, which are not restricted.

        Raises:
            AuthorizationError: If a non-owner tries to create an owner
            WeakPasswordError: If the password fails the strength policy
            UserAlreadyExistsError: If the email is taken
        """
        if (
            role in OWNER_ROLES
            and created_by_role is not None
            and created_by_role not in OWNER_ROLES
        ):
            log_security_event(
                SecurityEventType.DATA_ACCESS,
                user_id=created_by,
                details={"action": "access_denied", "required": "owner", "new_role": role.value},
                success=False,
            )
            raise AuthorizationError("Owner access required")

        strength = self.password_service.is_strong_password(password)
        if not strength.valid:
            raise WeakPasswordError(strength.reason or "Password is too weak")

        user = await self.user_repo.create(
            email=email,
            password_hash=self.password_service.hash_password(password),
            name=name,
            role=role,
        )

        log_security_event(
            SecurityEventType.DATA_MODIFICATION,
            user_id=created_by,
            details={"action": "user_registered", "new_user_id": user.id, "role": role.value},
        )
        return user.to_public()

    async def is_setup_complete(self) -> bool:
        """Whether any account exists yet."""
        return await self.user_repo.count() > 0

    async def create_initial_owner(
        self,
        email: str,
        password: str,
        name: str | None = None,
        ip_address: str | None = None,
    ) -> PublicUser:
        """Create the first account of a fresh deployment as owner.

        Raises:
            SetupCompletedError: If any account already exists
            WeakPasswordError: If the password fails the strength policy
        """
        strength = self.password_service.is_strong_password(password)
        if not strength.valid:
            raise WeakPasswordError(strength.reason or "Password is too weak")

        user = await self.user_repo.create(
            email=email,
            password_hash=self.password_service.hash_password(password),
            name=name,
            role=UserRole.OWNER,
            only_if_empty=True,
        )

        log_security_event(
            SecurityEventType.DATA_MODIFICATION,
            user_id=user.id,
            ip_address=ip_address,
            details={"action": "initial_owner_created"},
        )
        logger.info(f"Initial owner account created (user {user.id})")
        return user.to_public()

    async def change_password(
        self,
        user_id: int,
        current_password: str,
        new_password: str,
        ip_address: str | None = None,
    ) -> None:
        """Change a user's password and end all of their sessions.

        Raises:
            UserNotFoundError: If the user does not exist
            AuthenticationError: If the current password is wrong
            WeakPasswordError: If the new password fails the strength policy
        """
        user = await self.user_repo.get_by_id(user_id)
        if user is None:
            raise UserNotFoundError(user_id)

        if not self.password_service.verify_password(current_password, user.password_hash):
            log_security_event(
                SecurityEventType.PASSWORD_CHANGE,
                user_id=user_id,
                ip_address=ip_address,
                details={"reason": "invalid_current_password"},
                success=False,
            )
            raise AuthenticationError("Current password is incorrect")

        strength = self.password_service.is_strong_password(new_password)
        if not strength.valid:
            raise WeakPasswordError(strength.reason or "Password is too weak")

        await self.user_repo.update_password(
            user_id, self.password_service.hash_password(new_password)
        )
        revoked = await self.token_service.revoke_all_tokens_for_user(user_id)

        log_security_event(
            SecurityEventType.PASSWORD_CHANGE,
            user_id=user_id,
            ip_address=ip_address,
            details={"sessions_revoked": revoked},
        )

    async def get_user_info(self, user_id: int) -> UserInfo:
        """Get the current user's profile and effective permissions.

        Raises:
            UserNotFoundError: If the user does not exist
        """
        user = await self.user_repo.get_by_id(user_id)
        if user is None:
            raise UserNotFoundError(user_id)

        return UserInfo(
            id=user.id,
            email=user.email,
            name=user.name,
            role=user.role,
            permissions=sorted(p.code for p in get_effective_permissions(user.role)),
            totp_enabled=self.two_factor.is_enabled(user.id),
            last_login_at=user.last_login_at,
        )
