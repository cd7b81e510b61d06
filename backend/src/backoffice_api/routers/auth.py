"""Authentication router: password login, sessions and two-factor setup."""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request, status

from backoffice_api.dependencies import get_auth_service, get_two_factor_service
from backoffice_api.models.domain.role import UserRole
from backoffice_api.models.domain.user import CurrentUser, PublicUser
from backoffice_api.models.dto.auth import (
    LoginRequest,
    LoginResponse,
    LogoutRequest,
    PasswordChangeRequest,
    RefreshTokenRequest,
    RegisterRequest,
    SetupRequest,
    SetupStatusResponse,
    TokenResponse,
    TotpBackupCodesResponse,
    TotpDisableRequest,
    TotpSetupResponse,
    TotpStatusResponse,
    TotpVerifyRequest,
    TwoFactorLoginRequest,
    UserInfo,
)
from backoffice_api.security.auth import get_bearer_token, get_current_user, require_admin
from backoffice_api.security.rate_limit import (
    API_DEFAULT_LIMIT,
    AUTH_LOGIN_LIMIT,
    AUTH_LOGOUT_LIMIT,
    AUTH_PASSWORD_CHANGE_LIMIT,
    AUTH_REFRESH_LIMIT,
    SENSITIVE_OPERATION_LIMIT,
    get_real_client_ip,
    limiter,
)
from backoffice_api.services.auth_service import AuthService
from backoffice_api.services.two_factor_service import TwoFactorService, TwoFactorState

router = APIRouter()


# ============================================================================
# Login and sessions
# ============================================================================


@router.post("/login", response_model=LoginResponse)
@limiter.limit(AUTH_LOGIN_LIMIT)
async def login(
    request: Request,
    body: LoginRequest,
    auth_service: Annotated[AuthService, Depends(get_auth_service)],
) -> LoginResponse:
    """Log in with email and password.

    Accounts with two-factor enabled get a challenge token instead of
    session tokens; finish with ``POST /login/2fa``.
    """
    result = await auth_service.login(
        body.email,
        body.password,
        ip_address=get_real_client_ip(request),
    )
    if result is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return result


@router.post("/login/2fa", response_model=LoginResponse)
@limiter.limit(AUTH_LOGIN_LIMIT)
async def login_two_factor(
    request: Request,
    body: TwoFactorLoginRequest,
    auth_service: Annotated[AuthService, Depends(get_auth_service)],
) -> LoginResponse:
    """Complete a login with a TOTP or backup code."""
    return await auth_service.complete_two_factor_login(
        body.challenge_token,
        body.code,
        ip_address=get_real_client_ip(request),
    )


@router.post("/refresh", response_model=TokenResponse)
@limiter.limit(AUTH_REFRESH_LIMIT)
async def refresh_token(
    request: Request,
    body: RefreshTokenRequest,
    auth_service: Annotated[AuthService, Depends(get_auth_service)],
) -> TokenResponse:
    """Get a new access token from a refresh token."""
    return await auth_service.refresh_access_token(body.refresh_token)


@router.post("/logout")
@limiter.limit(AUTH_LOGOUT_LIMIT)
async def logout(
    request: Request,
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    access_token: Annotated[str, Depends(get_bearer_token)],
    auth_service: Annotated[AuthService, Depends(get_auth_service)],
    body: LogoutRequest | None = None,
) -> dict[str, str]:
    """Revoke the current access token and, if given, the refresh token."""
    await auth_service.logout(access_token, body.refresh_token if body else None)
    return {"message": "Logout successful"}


@router.post("/logout-all")
@limiter.limit(AUTH_LOGOUT_LIMIT)
async def logout_all_sessions(
    request: Request,
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    auth_service: Annotated[AuthService, Depends(get_auth_service)],
) -> dict[str, int]:
    """Revoke every session of the current user."""
    count = await auth_service.logout_all_sessions(current_user.user_id)
    return {"sessions_revoked": count}


@router.get("/me", response_model=UserInfo)
@limiter.limit(API_DEFAULT_LIMIT)
async def get_current_user_info(
    request: Request,
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    auth_service: Annotated[AuthService, Depends(get_auth_service)],
) -> UserInfo:
    """Get current user information including effective permissions."""
    return await auth_service.get_user_info(current_user.user_id)


# ============================================================================
# Accounts
# ============================================================================


@router.post("/register", response_model=PublicUser, status_code=status.HTTP_201_CREATED)
@limiter.limit(SENSITIVE_OPERATION_LIMIT)
async def register(
    request: Request,
    body: RegisterRequest,
    current_user: Annotated[CurrentUser, Depends(require_admin)],
    auth_service: Annotated[AuthService, Depends(get_auth_service)],
) -> PublicUser:
    """Create a user account (admin only)."""
    if body.role == UserRole.SYSTEM:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid request",
        )
    return await auth_service.register_user(
        email=body.email,
        password=body.password,
        name=body.name,
        role=body.role,
        created_by=current_user.user_id,
        created_by_role=current_user.role,
    )


@router.get("/setup/status", response_model=SetupStatusResponse)
@limiter.limit(API_DEFAULT_LIMIT)
async def get_setup_status(
    request: Request,
    auth_service: Annotated[AuthService, Depends(get_auth_service)],
) -> SetupStatusResponse:
    """Whether the first account has been created. Public."""
    return SetupStatusResponse(is_complete=await auth_service.is_setup_complete())


@router.post("/setup", response_model=PublicUser, status_code=status.HTTP_201_CREATED)
@limiter.limit(SENSITIVE_OPERATION_LIMIT)
async def initial_setup(
    request: Request,
    body: SetupRequest,
    auth_service: Annotated[AuthService, Depends(get_auth_service)],
) -> PublicUser:
    """Create the first account as owner.

    Public, but only while no account exists; afterwards returns 409 and
    accounts are created through ``POST /register``.
    """
    return await auth_service.create_initial_owner(
        email=body.email,
        password=body.password,
        name=body.name,
        ip_address=get_real_client_ip(request),
    )


@router.post("/password")
@limiter.limit(AUTH_PASSWORD_CHANGE_LIMIT)
async def change_password(
    request: Request,
    body: PasswordChangeRequest,
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    auth_service: Annotated[AuthService, Depends(get_auth_service)],
) -> dict[str, str]:
    """Change the current user's password. All sessions are ended."""
    await auth_service.change_password(
        current_user.user_id,
        body.current_password,
        body.new_password,
        ip_address=get_real_client_ip(request),
    )
    return {"message": "Password changed successfully"}


# ============================================================================
# Two-factor authentication
# ============================================================================


@router.post("/2fa/setup", response_model=TotpSetupResponse)
@limiter.limit(SENSITIVE_OPERATION_LIMIT)
async def setup_two_factor(
    request: Request,
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    auth_service: Annotated[AuthService, Depends(get_auth_service)],
    two_factor: Annotated[TwoFactorService, Depends(get_two_factor_service)],
) -> TotpSetupResponse:
    """Start two-factor setup. The secret and backup codes are shown once."""
    user_info = await auth_service.get_user_info(current_user.user_id)
    setup = two_factor.enable(
        current_user.user_id,
        user_info.email,
        ip_address=get_real_client_ip(request),
    )
    return TotpSetupResponse(
        secret=setup.secret,
        provisioning_uri=setup.provisioning_uri,
        qr_code_svg=setup.qr_code_svg,
        backup_codes=setup.backup_codes,
    )


@router.post("/2fa/verify", response_model=TotpStatusResponse)
@limiter.limit(AUTH_LOGIN_LIMIT)
async def verify_two_factor(
    request: Request,
    body: TotpVerifyRequest,
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    two_factor: Annotated[TwoFactorService, Depends(get_two_factor_service)],
) -> TotpStatusResponse:
    """Confirm setup with a code from the authenticator app."""
    if not two_factor.verify_and_enable(
        current_user.user_id, body.code, ip_address=get_real_client_ip(request)
    ):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid verification code",
        )
    return _two_factor_status(two_factor, current_user.user_id)


@router.delete("/2fa", response_model=TotpStatusResponse)
@limiter.limit(SENSITIVE_OPERATION_LIMIT)
async def disable_two_factor(
    request: Request,
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    two_factor: Annotated[TwoFactorService, Depends(get_two_factor_service)],
    body: TotpDisableRequest | None = None,
) -> TotpStatusResponse:
    """Disable two-factor. An enabled setup requires a valid code."""
    ip_address = get_real_client_ip(request)

    if two_factor.get_state(current_user.user_id) == TwoFactorState.ENABLED:
        code = body.code if body else None
        if not code or not two_factor.verify_code(
            current_user.user_id, code, ip_address=ip_address
        ):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Invalid verification code",
            )

    two_factor.disable(current_user.user_id, ip_address=ip_address)
    return _two_factor_status(two_factor, current_user.user_id)


@router.get("/2fa/status", response_model=TotpStatusResponse)
@limiter.limit(API_DEFAULT_LIMIT)
async def get_two_factor_status(
    request: Request,
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    two_factor: Annotated[TwoFactorService, Depends(get_two_factor_service)],
) -> TotpStatusResponse:
    """Get the current user's two-factor state."""
    return _two_factor_status(two_factor, current_user.user_id)


@router.post("/2fa/backup-codes", response_model=TotpBackupCodesResponse)
@limiter.limit(SENSITIVE_OPERATION_LIMIT)
async def regenerate_backup_codes(
    request: Request,
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    two_factor: Annotated[TwoFactorService, Depends(get_two_factor_service)],
) -> TotpBackupCodesResponse:
    """Replace all backup codes. Old codes stop working."""
    codes = two_factor.regenerate_backup_codes(
        current_user.user_id, ip_address=get_real_client_ip(request)
    )
    return TotpBackupCodesResponse(backup_codes=codes)


def _two_factor_status(two_factor: TwoFactorService, user_id: int) -> TotpStatusResponse:
    current = two_factor.status(user_id)
    return TotpStatusResponse(
        state=current.state.value,
        enabled=current.enabled,
        backup_codes_remaining=current.backup_codes_remaining,
    )
