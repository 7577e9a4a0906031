"""Authentication workflows: login, refresh, logout, password reset and
email verification.

:class:`AuthService` composes the credential store, password policy,
lockout guard, token manager and audit sink. Steps inside each workflow run
strictly in order. Only :mod:`dental_auth.core.exceptions` errors leave this
module; anything else is logged and surfaced as a generic 500.
"""

import functools
import secrets
from dataclasses import dataclass
from typing import Iterable

from dental_auth.config.config import Settings
from dental_auth.core.exceptions import (
    AccountLockedError,
    AuthError,
    EmailNotVerifiedError,
    InvalidCredentialsError,
    InvalidTokenError,
    PasswordReusedError,
    ServiceUnavailableError,
    ValidationError,
)
from dental_auth.core.logging import logger
from dental_auth.core.roles import Role
from dental_auth.core.security import PasswordHasher, RequestContext
from dental_auth.models.audit import AuditEventType
from dental_auth.schemas.auth import AccessClaims, UserRecord
from dental_auth.services.audit_sink import AuditSink
from dental_auth.services.credential_store import CredentialStore
from dental_auth.services.email_service import EmailService
from dental_auth.services.lockout_guard import LockoutGuard
from dental_auth.services.password_policy import PasswordPolicy
from dental_auth.services.token_manager import TokenManager, claims_for
from email_validator import EmailNotValidError, validate_email

PASSWORD_RESET_REQUESTED_MESSAGE = "If the email exists, a password reset link has been sent."
VERIFICATION_RESENT_MESSAGE = "If the email exists and is not verified, a verification link has been sent."


@dataclass
class LoginResult:
    access_token: str
    refresh_token: str
    user: UserRecord


def service_boundary(func):
    """Translate unexpected failures into :class:`ServiceUnavailableError`."""

    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except AuthError:
            raise
        except Exception:
            logger.exception("Unexpected error in {}", func.__name__)
            raise ServiceUnavailableError()

    return wrapper


def _require(value, message: str) -> str:
    if not value or not isinstance(value, str) or not value.strip():
        raise ValidationError(message)
    return value


def _check_email_format(email: str) -> str:
    email = email.strip()
    try:
        validate_email(email, check_deliverability=False, test_environment=True)
    except EmailNotValidError:
        raise ValidationError("Invalid email address", errors=["Email must be a valid email address"])
    return email


class AuthService:
    """Central authority for authentication flows.

    Args:
        settings: Injected application settings.
        store: Credential store.
        hasher: bcrypt hasher shared with the password policy checks.
        policy: Password strength/reuse rules.
        lockout: Failed-login accounting.
        tokens: Token manager.
        audit: Audit sink.
        email: Notification sender; its failures never fail a workflow.
    """

    def __init__(
        self,
        settings: Settings,
        store: CredentialStore,
        hasher: PasswordHasher,
        policy: PasswordPolicy,
        lockout: LockoutGuard,
        tokens: TokenManager,
        audit: AuditSink,
        email: EmailService,
    ) -> None:
        self.require_email_verification = settings.REQUIRE_EMAIL_VERIFICATION
        self.history_count = settings.PASSWORD_HISTORY_COUNT
        self.store = store
        self.hasher = hasher
        self.policy = policy
        self.lockout = lockout
        self.tokens = tokens
        self.audit = audit
        self.email = email
        self._dummy_hash: str | None = None

    async def _timing_hash(self) -> str:
        if self._dummy_hash is None:
            self._dummy_hash = await self.hasher.hash(secrets.token_urlsafe(16))
        return self._dummy_hash

    # -- login / session ---------------------------------------------------

    @service_boundary
    async def login(self, email, password, ctx: RequestContext) -> LoginResult:
        """Authenticate ``email``/``password`` and issue tokens.

        Raises:
            ValidationError: Missing or malformed input.
            AccountLockedError: The account is (or just became) locked.
            InvalidCredentialsError: Unknown email or wrong password.
            EmailNotVerifiedError: Verification is required and missing.
        """
        # 1. input
        if not email or not password or not isinstance(email, str) or not isinstance(password, str):
            raise ValidationError("Email and password are required")
        email = _check_email_format(email)

        # 2. lock gate, before touching credentials
        lock = await self.lockout.check_lock(email)
        if lock.locked:
            self.audit.record_auth_event(
                AuditEventType.LOGIN_FAILED,
                email=email,
                ip_address=ctx.ip_address,
                user_agent=ctx.user_agent,
                success=False,
                reason="Account locked",
            )
            logger.warning("Login rejected for locked account ip={}", ctx.ip_address)
            raise AccountLockedError(lock.unlock_at)

        # 3. user lookup; deleted users are invisible here
        user = await self.store.get_by_email(email)
        if user is None:
            # NOTE: a throwaway bcrypt check keeps timing equal to the wrong-password path
            await self.hasher.verify(password, await self._timing_hash())
            await self.lockout.record_failure(email, ctx.ip_address, ctx.user_agent)
            self.audit.record_auth_event(
                AuditEventType.LOGIN_FAILED,
                email=email,
                ip_address=ctx.ip_address,
                user_agent=ctx.user_agent,
                success=False,
                reason="Invalid credentials",
            )
            logger.warning("Failed login attempt for unknown account ip={}", ctx.ip_address)
            raise InvalidCredentialsError()

        # 4. password
        if not await self.hasher.verify(password, user.password_hash):
            failure = await self.lockout.record_failure(email, ctx.ip_address, ctx.user_agent)
            if failure.locked:
                raise AccountLockedError(failure.unlock_at)
            self.audit.record_auth_event(
                AuditEventType.LOGIN_FAILED,
                user_id=user.id,
                email=email,
                ip_address=ctx.ip_address,
                user_agent=ctx.user_agent,
                success=False,
                reason="Invalid password",
            )
            logger.warning(
                "Failed login attempt user_id={} attempts={} ip={}", user.id, failure.attempts, ctx.ip_address
            )
            raise InvalidCredentialsError()

        # 5. verification gate, only reached with a correct password
        if self.require_email_verification and not user.email_verified:
            self.audit.record_auth_event(
                AuditEventType.LOGIN_FAILED,
                user_id=user.id,
                email=email,
                ip_address=ctx.ip_address,
                user_agent=ctx.user_agent,
                success=False,
                reason="Email not verified",
            )
            raise EmailNotVerifiedError()

        # 6. bookkeeping
        await self.lockout.reset_failures(email)
        await self.store.touch_last_login(user.id)

        # 7. tokens
        claims = claims_for(user)
        access_token = self.tokens.issue_access_token(claims)
        refresh_token = await self.tokens.issue_refresh_token(claims, ctx.user_agent, ctx.ip_address)

        # 8. audit
        self.audit.record_auth_event(
            AuditEventType.LOGIN_SUCCESS,
            user_id=user.id,
            email=email,
            ip_address=ctx.ip_address,
            user_agent=ctx.user_agent,
            success=True,
        )
        logger.info("User id={} logged in", user.id)

        return LoginResult(access_token=access_token, refresh_token=refresh_token, user=user)

    @service_boundary
    async def refresh(self, refresh_token, ctx: RequestContext) -> str:
        """Exchange a live refresh token for a new access token.

        The refresh token itself is not rotated.

        Raises:
            InvalidTokenError: Missing, unknown, revoked or expired token, or
                the owner was deleted.
        """
        user = await self.tokens.verify_refresh_token(refresh_token) if refresh_token else None
        if user is None:
            logger.warning("Refresh rejected ip={}", ctx.ip_address)
            raise InvalidTokenError()

        access_token = self.tokens.issue_access_token(claims_for(user))
        self.audit.record_auth_event(
            AuditEventType.TOKEN_REFRESH,
            user_id=user.id,
            email=user.email,
            ip_address=ctx.ip_address,
            user_agent=ctx.user_agent,
            success=True,
        )
        return access_token

    async def logout(self, refresh_token, caller: AccessClaims | None, ctx: RequestContext) -> None:
        """Revoke ``refresh_token`` if given. Never fails."""
        if refresh_token:
            try:
                await self.tokens.revoke(refresh_token)
            except Exception:
                logger.exception("Failed to revoke refresh token during logout")
        if caller is not None:
            self.audit.record_auth_event(
                AuditEventType.LOGOUT,
                user_id=caller.sub,
                email=caller.email,
                ip_address=ctx.ip_address,
                user_agent=ctx.user_agent,
                success=True,
            )
            logger.info("User id={} logged out", caller.sub)

    @service_boundary
    async def logout_all(self, caller: AccessClaims, ctx: RequestContext) -> int:
        """Revoke every refresh token of ``caller`` (logout on all devices)."""
        count = await self.tokens.revoke_all_for_user(caller.sub)
        self.audit.record(
            AuditEventType.LOGOUT,
            user_id=caller.sub,
            ip_address=ctx.ip_address,
            user_agent=ctx.user_agent,
            metadata={"email": caller.email, "scope": "all", "revoked": count},
        )
        return count

    # -- passwords -----------------------------------------------------------

    async def _validate_new_password(self, user: UserRecord, new_password: str) -> None:
        check = self.policy.validate_strength(new_password)
        if not check.valid:
            raise ValidationError("Password does not meet requirements", errors=check.errors)
        previous = await self.store.recent_password_hashes(user.id, self.history_count)
        if await self.policy.is_reused(new_password, previous, self.hasher.verify):
            raise PasswordReusedError(self.history_count)

    @service_boundary
    async def request_password_reset(self, email, ctx: RequestContext) -> str:
        """Start a password reset.

        The reply is identical whether or not the account exists; a token is
        issued and mailed only for live accounts.
        """
        if not isinstance(email, str) or not email.strip():
            logger.info("Password reset requested without an email ip={}", ctx.ip_address)
            return PASSWORD_RESET_REQUESTED_MESSAGE
        user = await self.store.get_by_email(email.strip())
        if user is None:
            logger.info("Password reset requested for unknown account ip={}", ctx.ip_address)
            return PASSWORD_RESET_REQUESTED_MESSAGE

        token = await self.tokens.issue_password_reset_token(user.id)
        self.audit.record_auth_event(
            AuditEventType.PASSWORD_RESET_REQUEST,
            user_id=user.id,
            email=user.email,
            ip_address=ctx.ip_address,
            user_agent=ctx.user_agent,
            success=True,
        )
        try:
            await self.email.send_password_reset_email(user.email, token)
        except Exception:
            logger.exception("Password reset email failed for user_id={}", user.id)
        return PASSWORD_RESET_REQUESTED_MESSAGE

    @service_boundary
    async def reset_password(self, token, new_password, ctx: RequestContext) -> None:
        """Complete a password reset.

        The reset token is consumed (cleared) on success and every refresh
        token of the user is revoked.

        Raises:
            ValidationError: Missing input or a weak password.
            InvalidTokenError: Unknown or expired reset token (400).
            PasswordReusedError: The password matches recent history.
        """
        _require(token, "Token and new password are required")
        _require(new_password, "Token and new password are required")

        user = await self.tokens.verify_password_reset_token(token)
        if user is None:
            raise InvalidTokenError("Invalid or expired reset token.", status_code=400)

        await self._validate_new_password(user, new_password)

        password_hash = await self.hasher.hash(new_password)
        await self.store.update_password(user.id, password_hash)
        await self.tokens.revoke_all_for_user(user.id)

        self.audit.record_auth_event(
            AuditEventType.PASSWORD_RESET_COMPLETE,
            user_id=user.id,
            email=user.email,
            ip_address=ctx.ip_address,
            user_agent=ctx.user_agent,
            success=True,
        )
        logger.info("Password reset completed for user_id={}", user.id)

    @service_boundary
    async def change_password(self, caller: AccessClaims, current_password, new_password, ctx: RequestContext) -> None:
        """Change the caller's password after re-checking the current one.

        Raises:
            ValidationError: Missing input or a weak password.
            InvalidCredentialsError: ``current_password`` is wrong.
            PasswordReusedError: The password matches recent history.
        """
        _require(current_password, "Current and new password are required")
        _require(new_password, "Current and new password are required")

        user = await self.store.get_by_id(caller.sub)
        if user is None or not await self.hasher.verify(current_password, user.password_hash):
            self.audit.record_auth_event(
                AuditEventType.PASSWORD_CHANGE,
                user_id=caller.sub,
                email=caller.email,
                ip_address=ctx.ip_address,
                user_agent=ctx.user_agent,
                success=False,
                reason="Invalid current password",
            )
            raise InvalidCredentialsError("Current password is incorrect.")

        await self._validate_new_password(user, new_password)

        password_hash = await self.hasher.hash(new_password)
        await self.store.update_password(user.id, password_hash)
        self.audit.record_auth_event(
            AuditEventType.PASSWORD_CHANGE,
            user_id=user.id,
            email=user.email,
            ip_address=ctx.ip_address,
            user_agent=ctx.user_agent,
            success=True,
        )

    # -- email verification --------------------------------------------------

    @service_boundary
    async def verify_email(self, token, ctx: RequestContext) -> UserRecord:
        """Confirm an email address with a verification token.

        Raises:
            InvalidTokenError: Unknown, expired or already-used token (400).
        """
        user = await self.tokens.verify_email_verification_token(token)
        if user is None:
            raise InvalidTokenError("Invalid or expired verification token.", status_code=400)

        await self.store.mark_email_verified(user.id)
        self.audit.record_auth_event(
            AuditEventType.EMAIL_VERIFICATION,
            user_id=user.id,
            email=user.email,
            ip_address=ctx.ip_address,
            user_agent=ctx.user_agent,
            success=True,
        )
        try:
            await self.email.send_welcome_email(user.email, user.full_name)
        except Exception:
            logger.exception("Welcome email failed for user_id={}", user.id)
        return user

    @service_boundary
    async def resend_verification(self, email, ctx: RequestContext) -> str:
        """Issue a fresh verification token; same reply for every email."""
        if not isinstance(email, str) or not email.strip():
            return VERIFICATION_RESENT_MESSAGE
        user = await self.store.get_by_email(email.strip())
        if user is None or user.email_verified:
            return VERIFICATION_RESENT_MESSAGE

        token = await self.tokens.issue_email_verification_token(user.id)
        try:
            await self.email.send_verification_email(user.email, token, user.full_name)
        except Exception:
            logger.exception("Verification email failed for user_id={}", user.id)
        return VERIFICATION_RESENT_MESSAGE

    # -- administration --------------------------------------------------------

    @service_boundary
    async def register_user(
        self,
        email,
        password,
        roles: Iterable[Role] = (),
        full_name: str | None = None,
        email_verified: bool = False,
        actor: AccessClaims | None = None,
        ctx: RequestContext = RequestContext(),
    ) -> UserRecord:
        """Create a staff account.

        Unverified accounts are sent a verification link.

        Raises:
            ValidationError: Malformed email, weak password or duplicate email.
        """
        email = _check_email_format(_require(email, "Email is required"))
        check = self.policy.validate_strength(password)
        if not check.valid:
            raise ValidationError("Password does not meet requirements", errors=check.errors)
        if await self.store.get_by_email(email, include_deleted=True) is not None:
            raise ValidationError("A user with this email already exists")

        password_hash = await self.hasher.hash(password)
        user = await self.store.create_user(
            email=email,
            password_hash=password_hash,
            roles=roles,
            full_name=full_name,
            email_verified=email_verified,
        )

        if not email_verified:
            token = await self.tokens.issue_email_verification_token(user.id)
            try:
                await self.email.send_verification_email(user.email, token, user.full_name)
            except Exception:
                logger.exception("Verification email failed for user_id={}", user.id)

        self.audit.record_data_event(
            AuditEventType.USER_CREATED,
            user_id=actor.sub if actor else None,
            resource_type="user",
            resource_id=user.id,
            ip_address=ctx.ip_address,
            user_agent=ctx.user_agent,
            changes={"email": user.email, "roles": sorted(role.value for role in user.roles)},
        )
        return user
