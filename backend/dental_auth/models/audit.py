"""Audit log model and the catalogue of audit event types."""

from enum import Enum

from dental_auth.db.session import Base
from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Integer, String


class AuditEventType(str, Enum):
    """Security-relevant events recorded in ``audit_logs``."""

    # Authentication
    LOGIN_SUCCESS = "login_success"
    LOGIN_FAILED = "login_failed"
    LOGOUT = "logout"
    TOKEN_REFRESH = "token_refresh"
    PASSWORD_CHANGE = "password_change"
    PASSWORD_RESET_REQUEST = "password_reset_request"
    PASSWORD_RESET_COMPLETE = "password_reset_complete"
    EMAIL_VERIFICATION = "email_verification"
    ACCOUNT_LOCKED = "account_locked"
    ACCOUNT_UNLOCKED = "account_unlocked"

    # User management
    USER_CREATED = "user_created"
    USER_UPDATED = "user_updated"
    USER_DELETED = "user_deleted"
    USER_ROLE_CHANGED = "user_role_changed"

    # Clinical data access
    PATIENT_CREATED = "patient_created"
    PATIENT_UPDATED = "patient_updated"
    PATIENT_DELETED = "patient_deleted"
    PATIENT_VIEWED = "patient_viewed"
    APPOINTMENT_CREATED = "appointment_created"
    APPOINTMENT_UPDATED = "appointment_updated"
    APPOINTMENT_CANCELLED = "appointment_cancelled"
    TREATMENT_CREATED = "treatment_created"
    TREATMENT_UPDATED = "treatment_updated"

    # Security
    UNAUTHORIZED_ACCESS = "unauthorized_access"
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"


class AuditLog(Base):
    """One immutable audit record.

    Attributes:
        id: Primary key.
        event_type: Value of :class:`AuditEventType`.
        user_id: Acting user; NULL for anonymous or failed-auth events.
        ip_address: Client IP address.
        user_agent: Client user agent.
        resource_type: Kind of resource affected (e.g. ``user``, ``patient``).
        resource_id: Identifier of the affected resource.
        event_metadata: Free-form JSON payload (stored in column ``metadata``).
        success: Whether the action succeeded.
        created_at: Event timestamp.
    """

    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    event_type = Column(String(64), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String(255), nullable=True)
    resource_type = Column(String(64), nullable=True)
    resource_id = Column(String(64), nullable=True)
    event_metadata = Column("metadata", JSON, nullable=False, default=dict)
    success = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, index=True)
