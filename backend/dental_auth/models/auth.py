"""Authentication models: users, refresh tokens and password history.

The ``users`` row carries all per-account security state (lockout counter,
verification and reset tokens, soft-delete marker) so it survives process
restarts without a separate cache.
"""

from dental_auth.db.session import Base
from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func


class User(Base):
    """Database model representing a clinic staff account.

    Attributes:
        id: Primary key.
        email: Unique login email, case-sensitive as stored.
        full_name: Display name.
        password_hash: bcrypt hash of the current password.
        roles: Comma-separated role names; see ``CredentialStore`` for the codec.
        email_verified: Whether the email address was confirmed.
        failed_login_attempts: Consecutive failed logins since the last success.
        account_locked_until: Lock expiry; the lock is active while in the future.
        email_verification_token: Outstanding verification token, if any.
        email_verification_expires: Expiry of the verification token.
        password_reset_token: Outstanding reset token, if any.
        password_reset_expires: Expiry of the reset token.
        password_changed_at: When the password was last set.
        last_login_at: Timestamp of the last successful login.
        created_at: Account creation timestamp.
        deleted_at: Soft-delete marker; deleted users never authenticate.
    """

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(320), nullable=False, unique=True, index=True)
    full_name = Column(String(200), nullable=True)
    password_hash = Column(String(255), nullable=False)
    roles = Column(String(255), nullable=False, default="")
    email_verified = Column(Boolean, nullable=False, default=False)

    failed_login_attempts = Column(Integer, nullable=False, default=0)
    account_locked_until = Column(DateTime(timezone=True), nullable=True)

    email_verification_token = Column(String(64), nullable=True, index=True)
    email_verification_expires = Column(DateTime(timezone=True), nullable=True)
    password_reset_token = Column(String(64), nullable=True, index=True)
    password_reset_expires = Column(DateTime(timezone=True), nullable=True)

    password_changed_at = Column(DateTime(timezone=True), nullable=True)
    last_login_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    deleted_at = Column(DateTime(timezone=True), nullable=True)


class RefreshToken(Base):
    """Refresh token issued at login.

    Rows are never deleted on logout, only marked revoked, so the audit trail
    keeps every session; cleanup purges rows long past expiry.

    Attributes:
        id: Primary key.
        token: The encoded refresh JWT.
        user_id: Foreign key to ``users.id``.
        expires_at: Expiration timestamp.
        revoked_at: When the token was revoked; NULL while usable.
        user_agent: Client user agent at issuance.
        ip_address: Client IP address at issuance.
        created_at: Record creation timestamp.
    """

    __tablename__ = "refresh_tokens"

    id = Column(Integer, primary_key=True, index=True)
    token = Column(Text, nullable=False, unique=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    revoked_at = Column(DateTime(timezone=True), nullable=True)

    # NOTE: Device/session tracking for audits
    user_agent = Column(String(255), nullable=True)
    ip_address = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    user = relationship("User", backref="refresh_tokens")


class PasswordHistory(Base):
    """Append-only record of password hashes used by an account."""

    __tablename__ = "password_history"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
