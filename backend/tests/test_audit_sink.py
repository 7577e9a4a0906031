"""Tests for the audit trail."""

from datetime import timedelta

from dental_auth.core.security import utcnow
from dental_auth.models.audit import AuditEventType
from dental_auth.schemas.audit import AuditQuery
from dental_auth.services.audit_sink import AuditSink


def _broken_session_factory():
    raise RuntimeError("audit database unavailable")


async def test_record_is_written_in_background(app, create_user):
    audit = app.state.audit
    user = await create_user()

    audit.record_auth_event(
        AuditEventType.LOGIN_SUCCESS,
        user_id=user.id,
        email=user.email,
        ip_address="10.1.1.1",
        user_agent="pytest",
    )
    await audit.flush()

    entries = await audit.query(AuditQuery(event_type=AuditEventType.LOGIN_SUCCESS))
    assert len(entries) == 1
    assert entries[0].user_id == user.id
    assert entries[0].user_email == "doc@example.com"
    assert entries[0].ip_address == "10.1.1.1"
    assert entries[0].metadata["email"] == "doc@example.com"


async def test_write_failures_never_reach_the_caller():
    audit = AuditSink(_broken_session_factory)

    audit.record(AuditEventType.LOGIN_FAILED, success=False)
    await audit.flush()


async def test_login_works_when_audit_is_broken(client, auth, create_user):
    await create_user()
    broken = AuditSink(_broken_session_factory)
    auth.audit = broken
    auth.lockout._audit = broken

    response = await client.post("/api/auth/login", json={"email": "doc@example.com", "password": "Sec#9True!"})

    assert response.status_code == 200
    await broken.flush()


async def test_query_filters(app, create_user):
    audit = app.state.audit
    user = await create_user()
    other = await create_user("other@example.com")
    await audit.flush()

    audit.record(AuditEventType.LOGIN_SUCCESS, user_id=user.id)
    audit.record(AuditEventType.LOGIN_FAILED, user_id=user.id, success=False)
    audit.record(AuditEventType.LOGIN_SUCCESS, user_id=other.id)
    audit.record_data_event(
        AuditEventType.PATIENT_VIEWED,
        user_id=user.id,
        resource_type="patient",
        resource_id=42,
    )
    await audit.flush()

    by_user = await audit.query(AuditQuery(user_id=user.id, event_type=AuditEventType.LOGIN_SUCCESS))
    assert [e.user_id for e in by_user] == [user.id]

    by_resource = await audit.query(AuditQuery(resource_type="patient", resource_id="42"))
    assert [e.event_type for e in by_resource] == ["patient_viewed"]

    future = await audit.query(AuditQuery(start_date=utcnow() + timedelta(hours=1)))
    assert future == []

    page = await audit.query(AuditQuery(user_id=user.id, limit=1))
    assert len(page) == 1
