"""Access, refresh and single-use token management.

TOKEN LIFECYCLE:

1. ACCESS TOKENS (JWT, 15 min):
   - Signed ``{sub, email, roles}`` plus ``iat``/``exp``
   - Never stored server-side; validity is signature + expiry only

2. REFRESH TOKENS (JWT, 7 days):
   - Same claim shape plus a random ``jti`` and ``token_type=refresh``
   - Persisted in ``refresh_tokens``; the row is the source of truth:
     usable iff ``revoked_at IS NULL AND expires_at > now`` and the owner
     is not soft-deleted
   - Many per user (one per device); revoked on logout, never deleted
     except by cleanup long after expiry

3. EMAIL VERIFICATION / PASSWORD RESET (random hex, 24 h / 1 h):
   - Stored on the user row; issuing a new one overwrites the previous
     one, so only the latest token of each kind is valid
"""

import secrets
from datetime import datetime, timedelta
from typing import Any

import jwt
from dental_auth.config.config import Settings
from dental_auth.core.exceptions import InvalidTokenError
from dental_auth.core.logging import logger
from dental_auth.core.security import as_utc, utcnow
from dental_auth.models.auth import RefreshToken as RefreshTokenModel
from dental_auth.schemas.auth import AccessClaims, SessionInfo, UserRecord
from dental_auth.services.credential_store import CredentialStore
from jwt.exceptions import InvalidTokenError as JWTInvalidTokenError
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker


def claims_for(user: UserRecord) -> dict[str, Any]:
    """Build the ``{sub, email, roles}`` claim set for ``user``."""
    return {
        "sub": str(user.id),
        "email": user.email,
        "roles": sorted(role.value for role in user.roles),
    }


class TokenManager:
    """Mints and checks tokens.

    Args:
        settings: Signing secret, algorithm and lifetimes.
        session_factory: Sessionmaker used for the ``refresh_tokens`` table.
        store: Credential store holding the single-use token columns.
    """

    def __init__(
        self,
        settings: Settings,
        session_factory: async_sessionmaker[AsyncSession],
        store: CredentialStore,
    ) -> None:
        self._secret = settings.SECRET_KEY
        self._algorithm = settings.ALGORITHM
        self.access_ttl = timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
        self.refresh_ttl = timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS)
        self.refresh_retention = timedelta(days=settings.REFRESH_TOKEN_RETENTION_DAYS)
        self.email_verification_ttl = timedelta(hours=settings.EMAIL_VERIFICATION_EXPIRE_HOURS)
        self.password_reset_ttl = timedelta(minutes=settings.PASSWORD_RESET_EXPIRE_MINUTES)
        self._session_factory = session_factory
        self._store = store

    def _encode(self, claims: dict[str, Any], token_type: str, lifetime: timedelta) -> tuple[str, datetime]:
        now = utcnow()
        expires_at = now + lifetime
        to_encode = dict(claims)
        to_encode.update({"iat": now, "exp": expires_at, "token_type": token_type})
        if token_type == "refresh":
            # NOTE: jti keeps tokens issued in the same second distinct
            to_encode["jti"] = secrets.token_urlsafe(16)
        return jwt.encode(to_encode, self._secret, algorithm=self._algorithm), expires_at

    def issue_access_token(self, claims: dict[str, Any], expires_delta: timedelta | None = None) -> str:
        """Sign a short-lived access token.

        Args:
            claims: ``{sub, email, roles}`` as built by :func:`claims_for`.
            expires_delta: Optional override of the configured lifetime.

        Returns:
            str: Encoded JWT access token.
        """
        token, _ = self._encode(claims, "access", expires_delta or self.access_ttl)
        return token

    def decode_access_token(self, token: str) -> AccessClaims:
        """Validate an access token's signature, expiry and type.

        Raises:
            InvalidTokenError: If any check fails.
        """
        try:
            payload = jwt.decode(token, self._secret, algorithms=[self._algorithm])
        except JWTInvalidTokenError:
            logger.debug("Access token failed verification")
            raise InvalidTokenError()
        if payload.get("token_type") != "access":
            raise InvalidTokenError()
        try:
            return AccessClaims.model_validate(payload)
        except PydanticValidationError:
            raise InvalidTokenError()

    async def issue_refresh_token(
        self,
        claims: dict[str, Any],
        user_agent: str | None = None,
        ip_address: str | None = None,
    ) -> str:
        """Sign a refresh token and persist it for revocation tracking.

        Args:
            claims: ``{sub, email, roles}`` as built by :func:`claims_for`.
            user_agent: Client user agent, kept for the audit trail.
            ip_address: Client IP address, kept for the audit trail.

        Returns:
            str: Encoded JWT refresh token.
        """
        token, expires_at = self._encode(claims, "refresh", self.refresh_ttl)
        user_id = int(claims["sub"])
        async with self._session_factory() as db:
            db.add(
                RefreshTokenModel(
                    token=token,
                    user_id=user_id,
                    expires_at=expires_at,
                    user_agent=user_agent[:255] if user_agent else None,
                    ip_address=ip_address,
                    created_at=utcnow(),
                )
            )
            await db.commit()
        logger.info("Stored refresh token for user_id={}", user_id)
        return token

    async def verify_refresh_token(self, token: str) -> UserRecord | None:
        """Return the owning user if ``token`` is live, else None.

        The database row decides liveness; the JWT itself is not decoded
        again. Tokens signed with another environment's secret were never
        stored here and simply fail the lookup.
        """
        if not token:
            return None
        now = utcnow()
        async with self._session_factory() as db:
            row = (
                await db.execute(
                    select(RefreshTokenModel.user_id).where(
                        RefreshTokenModel.token == token,
                        RefreshTokenModel.revoked_at.is_(None),
                        RefreshTokenModel.expires_at > now,
                    )
                )
            ).first()
        if row is None:
            return None
        # NOTE: get_by_id hides soft-deleted users
        return await self._store.get_by_id(row[0])

    async def revoke(self, token: str) -> None:
        """Mark a refresh token revoked. Revoking twice is harmless."""
        async with self._session_factory() as db:
            result = await db.execute(
                update(RefreshTokenModel)
                .where(RefreshTokenModel.token == token, RefreshTokenModel.revoked_at.is_(None))
                .values(revoked_at=utcnow())
            )
            await db.commit()
        if result.rowcount:
            logger.info("Revoked refresh token")

    async def revoke_all_for_user(self, user_id: int) -> int:
        """Revoke every live refresh token of ``user_id`` (logout everywhere).

        Returns:
            int: Number of tokens revoked.
        """
        async with self._session_factory() as db:
            result = await db.execute(
                update(RefreshTokenModel)
                .where(RefreshTokenModel.user_id == user_id, RefreshTokenModel.revoked_at.is_(None))
                .values(revoked_at=utcnow())
            )
            await db.commit()
        count = result.rowcount or 0
        logger.info("Revoked all refresh tokens for user_id={} (count={})", user_id, count)
        return count

    async def list_active_sessions(self, user_id: int) -> list[SessionInfo]:
        """Return non-revoked, unexpired refresh tokens of ``user_id``."""
        async with self._session_factory() as db:
            result = await db.execute(
                select(RefreshTokenModel)
                .where(
                    RefreshTokenModel.user_id == user_id,
                    RefreshTokenModel.revoked_at.is_(None),
                    RefreshTokenModel.expires_at > utcnow(),
                )
                .order_by(RefreshTokenModel.created_at.desc())
            )
            sessions = result.scalars().all()
        return [
            SessionInfo(
                id=session.id,
                user_agent=session.user_agent,
                ip_address=session.ip_address,
                created_at=as_utc(session.created_at),
                expires_at=as_utc(session.expires_at),
            )
            for session in sessions
        ]

    async def cleanup_expired_tokens(self) -> int:
        """Delete refresh tokens that expired more than the retention period ago.

        Intended to be triggered by an external scheduler.

        Returns:
            int: Number of rows deleted.
        """
        cutoff = utcnow() - self.refresh_retention
        async with self._session_factory() as db:
            result = await db.execute(delete(RefreshTokenModel).where(RefreshTokenModel.expires_at < cutoff))
            await db.commit()
        count = result.rowcount or 0
        logger.info("Cleaned up {} expired refresh tokens", count)
        return count

    async def issue_email_verification_token(self, user_id: int) -> str:
        """Generate a verification token, replacing any outstanding one."""
        token = secrets.token_hex(32)
        await self._store.set_email_verification_token(user_id, token, utcnow() + self.email_verification_ttl)
        return token

    async def issue_password_reset_token(self, user_id: int) -> str:
        """Generate a reset token, replacing any outstanding one."""
        token = secrets.token_hex(32)
        await self._store.set_password_reset_token(user_id, token, utcnow() + self.password_reset_ttl)
        return token

    async def verify_email_verification_token(self, token: str) -> UserRecord | None:
        if not token:
            return None
        return await self._store.find_by_email_verification_token(token, utcnow())

    async def verify_password_reset_token(self, token: str) -> UserRecord | None:
        if not token:
            return None
        return await self._store.find_by_password_reset_token(token, utcnow())
