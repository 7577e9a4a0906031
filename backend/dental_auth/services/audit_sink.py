"""Append-only audit trail for security-relevant events.

Writes are fire-and-forget: :meth:`AuditSink.record` schedules the insert
as a background task with its own error boundary and returns immediately.
A broken audit table never blocks or fails a login; the failure is logged
and the event is lost.
"""

import asyncio
from typing import Any

from dental_auth.core.logging import logger
from dental_auth.core.security import as_utc, utcnow
from dental_auth.models.audit import AuditEventType, AuditLog
from dental_auth.models.auth import User as UserModel
from dental_auth.schemas.audit import AuditEntry, AuditQuery
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker


class AuditSink:
    """Records and queries ``audit_logs`` rows.

    Args:
        session_factory: Sessionmaker bound to the application engine.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory
        self._pending: set[asyncio.Task] = set()

    def record(
        self,
        event_type: AuditEventType,
        user_id: int | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
        resource_type: str | None = None,
        resource_id: str | int | None = None,
        metadata: dict[str, Any] | None = None,
        success: bool = True,
    ) -> None:
        """Schedule one audit row for writing. Never raises."""
        row = {
            "event_type": AuditEventType(event_type).value,
            "user_id": user_id,
            "ip_address": ip_address,
            "user_agent": user_agent,
            "resource_type": resource_type,
            "resource_id": str(resource_id) if resource_id is not None else None,
            "event_metadata": metadata or {},
            "success": success,
            "created_at": utcnow(),
        }
        try:
            task = asyncio.get_running_loop().create_task(self._write(row))
        except Exception:
            logger.exception("Failed to schedule audit event {}", row["event_type"])
            return
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    def record_auth_event(
        self,
        event_type: AuditEventType,
        user_id: int | None = None,
        email: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
        success: bool = True,
        reason: str | None = None,
    ) -> None:
        self.record(
            event_type,
            user_id=user_id,
            ip_address=ip_address,
            user_agent=user_agent,
            metadata={"email": email, "reason": reason},
            success=success,
        )

    def record_data_event(
        self,
        event_type: AuditEventType,
        user_id: int | None,
        resource_type: str,
        resource_id: str | int | None,
        ip_address: str | None = None,
        user_agent: str | None = None,
        changes: dict[str, Any] | None = None,
    ) -> None:
        self.record(
            event_type,
            user_id=user_id,
            ip_address=ip_address,
            user_agent=user_agent,
            resource_type=resource_type,
            resource_id=resource_id,
            metadata={"changes": changes or {}},
            success=True,
        )

    async def _write(self, row: dict[str, Any]) -> None:
        try:
            async with self._session_factory() as db:
                db.add(AuditLog(**row))
                await db.commit()
        except Exception:
            # NOTE: audit failures are absorbed here and never reach the caller
            logger.exception("Failed to log audit event {}", row["event_type"])
            return
        logger.info(
            "Audit: {} user_id={} ip={} success={}",
            row["event_type"],
            row["user_id"],
            row["ip_address"],
            row["success"],
        )

    async def flush(self) -> None:
        """Wait for every scheduled write to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def query(self, filters: AuditQuery) -> list[AuditEntry]:
        """Return audit entries matching ``filters``, newest first.

        Args:
            filters: User, event type, resource and time-range filters plus
                pagination.

        Returns:
            list[AuditEntry]: Matching rows joined with the acting user's email.
        """
        stmt = select(AuditLog, UserModel.email).outerjoin(UserModel, AuditLog.user_id == UserModel.id)
        if filters.user_id is not None:
            stmt = stmt.where(AuditLog.user_id == filters.user_id)
        if filters.event_type is not None:
            stmt = stmt.where(AuditLog.event_type == filters.event_type.value)
        if filters.resource_type:
            stmt = stmt.where(AuditLog.resource_type == filters.resource_type)
        if filters.resource_id:
            stmt = stmt.where(AuditLog.resource_id == filters.resource_id)
        if filters.start_date is not None:
            stmt = stmt.where(AuditLog.created_at >= as_utc(filters.start_date))
        if filters.end_date is not None:
            stmt = stmt.where(AuditLog.created_at <= as_utc(filters.end_date))
        stmt = (
            stmt.order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
            .limit(filters.limit)
            .offset(filters.offset)
        )

        async with self._session_factory() as db:
            rows = (await db.execute(stmt)).all()

        return [
            AuditEntry(
                id=log.id,
                event_type=log.event_type,
                user_id=log.user_id,
                user_email=email,
                ip_address=log.ip_address,
                user_agent=log.user_agent,
                resource_type=log.resource_type,
                resource_id=log.resource_id,
                metadata=log.event_metadata or {},
                success=log.success,
                created_at=as_utc(log.created_at),
            )
            for log, email in rows
        ]
