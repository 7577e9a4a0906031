"""Schemas for audit log queries and entries."""

from datetime import datetime
from typing import Any

from dental_auth.models.audit import AuditEventType
from dental_auth.schemas.auth import CamelModel
from pydantic import BaseModel, Field


class AuditQuery(BaseModel):
    """Filters accepted by :meth:`AuditSink.query`."""

    user_id: int | None = None
    event_type: AuditEventType | None = None
    resource_type: str | None = None
    resource_id: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    limit: int = Field(default=100, ge=1, le=500)
    offset: int = Field(default=0, ge=0)


class AuditEntry(CamelModel):
    id: int
    event_type: str
    user_id: int | None = None
    user_email: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    resource_type: str | None = None
    resource_id: str | None = None
    metadata: dict[str, Any] = {}
    success: bool
    created_at: datetime
