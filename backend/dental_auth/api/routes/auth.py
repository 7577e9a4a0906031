"""Authentication routes.

Endpoints (all under ``/api/auth``):
    - POST /login: Email + password login (returns access + refresh tokens)
    - POST /refresh: Exchange a refresh token for a new access token
    - POST /logout: Revoke a single refresh token
    - POST /logout-all: Revoke all of the caller's refresh tokens
    - POST /password-reset/request, /password-reset/complete
    - POST /change-password
    - GET /verify-email/{token}, POST /verify-email/resend
    - GET /me, GET /sessions
    - POST /users, POST /tokens/cleanup: admin only
"""

from typing import Annotated

from dental_auth.api.deps import (
    AuthServiceDep,
    Context,
    CurrentUser,
    OptionalUser,
    get_credential_store,
    get_token_manager,
    require_roles,
)
from dental_auth.core.exceptions import InvalidTokenError
from dental_auth.core.rate_limit import (
    EMAIL_VERIFICATION_RULE,
    LOGIN_RULE,
    PASSWORD_RESET_RULE,
    rate_limit,
)
from dental_auth.core.roles import Role
from dental_auth.schemas.auth import (
    AccessClaims,
    AccessToken,
    LoginRequest,
    LoginResponse,
    LogoutRequest,
    MessageResponse,
    PasswordChange,
    PasswordResetComplete,
    PasswordResetRequest,
    ResendVerification,
    SessionInfo,
    TokenRefresh,
    UserCreate,
    UserProfile,
    UserPublic,
)
from dental_auth.services.credential_store import CredentialStore
from dental_auth.services.token_manager import TokenManager
from fastapi import APIRouter, Depends, status

router = APIRouter(prefix="/auth", tags=["auth"])

AdminUser = Annotated[AccessClaims, Depends(require_roles(Role.ADMIN))]


@router.post(
    "/login",
    response_model=LoginResponse,
    dependencies=[Depends(rate_limit(LOGIN_RULE))],
)
async def login(body: LoginRequest, auth: AuthServiceDep, ctx: Context):
    """Authenticate with email and password.

    Returns:
        LoginResponse: Access token, refresh token and the public user.
    """
    result = await auth.login(body.email, body.password, ctx)
    return LoginResponse(
        access_token=result.access_token,
        refresh_token=result.refresh_token,
        user=UserPublic(id=result.user.id, email=result.user.email, roles=sorted(result.user.roles)),
    )


@router.post(
    "/refresh",
    response_model=AccessToken,
    dependencies=[Depends(rate_limit(LOGIN_RULE))],
)
async def refresh_access_token(body: TokenRefresh, auth: AuthServiceDep, ctx: Context):
    """Exchange a refresh token for a new access token.

    The refresh token is not rotated; it stays valid until it expires or is
    revoked.
    """
    access_token = await auth.refresh(body.refresh_token, ctx)
    return AccessToken(access_token=access_token)


@router.post("/logout", response_model=MessageResponse)
async def logout(auth: AuthServiceDep, ctx: Context, caller: OptionalUser, body: LogoutRequest | None = None):
    """Revoke the given refresh token. Always succeeds."""
    await auth.logout(body.refresh_token if body else None, caller, ctx)
    return MessageResponse(message="Logged out successfully")


@router.post("/logout-all")
async def logout_all_devices(current_user: CurrentUser, auth: AuthServiceDep, ctx: Context):
    """Revoke every refresh token of the caller (logout everywhere)."""
    revoked = await auth.logout_all(current_user, ctx)
    return {"message": "Logged out from all devices", "revoked": revoked}


@router.post(
    "/password-reset/request",
    response_model=MessageResponse,
    dependencies=[Depends(rate_limit(PASSWORD_RESET_RULE))],
)
async def request_password_reset(body: PasswordResetRequest, auth: AuthServiceDep, ctx: Context):
    message = await auth.request_password_reset(body.email, ctx)
    return MessageResponse(message=message)


@router.post(
    "/password-reset/complete",
    response_model=MessageResponse,
    dependencies=[Depends(rate_limit(PASSWORD_RESET_RULE))],
)
async def complete_password_reset(body: PasswordResetComplete, auth: AuthServiceDep, ctx: Context):
    await auth.reset_password(body.token, body.new_password, ctx)
    return MessageResponse(message="Password has been reset successfully")


@router.post("/change-password", response_model=MessageResponse)
async def change_password(body: PasswordChange, current_user: CurrentUser, auth: AuthServiceDep, ctx: Context):
    await auth.change_password(current_user, body.current_password, body.new_password, ctx)
    return MessageResponse(message="Password changed successfully")


@router.get(
    "/verify-email/{token}",
    response_model=MessageResponse,
    dependencies=[Depends(rate_limit(EMAIL_VERIFICATION_RULE))],
)
async def verify_email(token: str, auth: AuthServiceDep, ctx: Context):
    await auth.verify_email(token, ctx)
    return MessageResponse(message="Email verified successfully")


@router.post(
    "/verify-email/resend",
    response_model=MessageResponse,
    dependencies=[Depends(rate_limit(EMAIL_VERIFICATION_RULE))],
)
async def resend_verification(body: ResendVerification, auth: AuthServiceDep, ctx: Context):
    message = await auth.resend_verification(body.email, ctx)
    return MessageResponse(message=message)


@router.get("/me", response_model=UserProfile)
async def read_users_me(
    current_user: CurrentUser,
    store: Annotated[CredentialStore, Depends(get_credential_store)],
):
    """Return the authenticated user's profile."""
    user = await store.get_by_id(current_user.sub)
    if user is None:
        raise InvalidTokenError()
    return UserProfile(
        id=user.id,
        email=user.email,
        roles=sorted(user.roles),
        full_name=user.full_name,
        email_verified=user.email_verified,
        last_login_at=user.last_login_at,
    )


@router.get("/sessions", response_model=list[SessionInfo])
async def get_active_sessions(
    current_user: CurrentUser,
    tokens: Annotated[TokenManager, Depends(get_token_manager)],
):
    """Return active (non-revoked, unexpired) refresh-token sessions."""
    return await tokens.list_active_sessions(current_user.sub)


@router.post(
    "/users",
    response_model=UserProfile,
    status_code=status.HTTP_201_CREATED,
)
async def create_user(body: UserCreate, admin: AdminUser, auth: AuthServiceDep, ctx: Context):
    """Create a staff account (admin only)."""
    user = await auth.register_user(
        body.email,
        body.password,
        roles=body.roles,
        full_name=body.full_name,
        email_verified=body.email_verified,
        actor=admin,
        ctx=ctx,
    )
    return UserProfile(
        id=user.id,
        email=user.email,
        roles=sorted(user.roles),
        full_name=user.full_name,
        email_verified=user.email_verified,
    )


@router.post("/tokens/cleanup")
async def cleanup_tokens(
    admin: AdminUser,
    tokens: Annotated[TokenManager, Depends(get_token_manager)],
):
    """Delete refresh tokens expired beyond the retention period (admin only)."""
    deleted = await tokens.cleanup_expired_tokens()
    return {"deleted": deleted}
