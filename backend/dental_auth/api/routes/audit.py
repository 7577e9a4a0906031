"""Audit log query route (admin only)."""

from datetime import datetime
from typing import Annotated

from dental_auth.api.deps import get_audit_sink, require_roles
from dental_auth.core.roles import Role
from dental_auth.models.audit import AuditEventType
from dental_auth.schemas.audit import AuditEntry, AuditQuery
from dental_auth.schemas.auth import AccessClaims
from dental_auth.services.audit_sink import AuditSink
from fastapi import APIRouter, Depends, Query

router = APIRouter(prefix="/audit-logs", tags=["audit"])


@router.get("", response_model=list[AuditEntry])
async def list_audit_logs(
    admin: Annotated[AccessClaims, Depends(require_roles(Role.ADMIN))],
    audit: Annotated[AuditSink, Depends(get_audit_sink)],
    user_id: Annotated[int | None, Query(alias="userId")] = None,
    event_type: Annotated[AuditEventType | None, Query(alias="eventType")] = None,
    resource_type: Annotated[str | None, Query(alias="resourceType")] = None,
    resource_id: Annotated[str | None, Query(alias="resourceId")] = None,
    start_date: Annotated[datetime | None, Query(alias="startDate")] = None,
    end_date: Annotated[datetime | None, Query(alias="endDate")] = None,
    limit: Annotated[int, Query(ge=1, le=500)] = 100,
    offset: Annotated[int, Query(ge=0)] = 0,
):
    """Return audit entries, newest first.

    Args:
        user_id: Only events attributed to this user.
        event_type: Only events of this type.
        resource_type: Only events about this kind of resource.
        resource_id: Only events about this resource.
        start_date: Inclusive lower bound on ``created_at``.
        end_date: Inclusive upper bound on ``created_at``.
        limit: Page size (1-500).
        offset: Rows to skip.
    """
    filters = AuditQuery(
        user_id=user_id,
        event_type=event_type,
        resource_type=resource_type,
        resource_id=resource_id,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
        offset=offset,
    )
    return await audit.query(filters)
