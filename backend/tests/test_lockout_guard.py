"""Tests for failed-login accounting and lockout."""

import asyncio
from datetime import timedelta

from dental_auth.core.security import utcnow
from dental_auth.models.audit import AuditEventType
from dental_auth.models.auth import User
from dental_auth.schemas.audit import AuditQuery
from sqlalchemy import update


async def _expire_lock(app, email):
    async with app.state.session_factory() as db:
        await db.execute(
            update(User).where(User.email == email).values(account_locked_until=utcnow() - timedelta(seconds=1))
        )
        await db.commit()


async def test_fifth_failure_locks(auth, create_user):
    await create_user()
    guard = auth.lockout

    for attempt in range(1, 5):
        result = await guard.record_failure("doc@example.com")
        assert not result.locked
        assert result.attempts == attempt

    result = await guard.record_failure("doc@example.com")
    assert result.locked
    assert result.attempts == 5
    remaining = result.unlock_at - utcnow()
    assert timedelta(minutes=14) < remaining <= timedelta(minutes=15)

    status = await guard.check_lock("doc@example.com")
    assert status.locked


async def test_failures_while_locked_do_not_count(app, auth, create_user):
    await create_user()
    guard = auth.lockout
    for _ in range(5):
        await guard.record_failure("doc@example.com")

    result = await guard.record_failure("doc@example.com")
    assert result.locked
    assert result.attempts == 5
    assert (await app.state.store.get_lock_state("doc@example.com"))[0] == 5


async def test_expired_lock_is_cleared_on_check(app, auth, create_user):
    await create_user()
    guard = auth.lockout
    for _ in range(5):
        await guard.record_failure("doc@example.com")
    await _expire_lock(app, "doc@example.com")

    status = await guard.check_lock("doc@example.com")

    assert not status.locked
    assert await app.state.store.get_lock_state("doc@example.com") == (0, None)


async def test_unlock_event_names_the_user(app, auth, create_user):
    user = await create_user()
    for _ in range(5):
        await auth.lockout.record_failure("doc@example.com")
    await _expire_lock(app, "doc@example.com")

    await auth.lockout.check_lock("doc@example.com")
    await auth.lockout.check_lock("doc@example.com")
    await app.state.audit.flush()

    events = await app.state.audit.query(AuditQuery(event_type=AuditEventType.ACCOUNT_UNLOCKED))
    assert [event.user_id for event in events] == [user.id]


async def test_unknown_email_is_a_no_op(auth):
    result = await auth.lockout.record_failure("ghost@example.com")
    assert not result.locked
    assert result.attempts == 0
    assert not (await auth.lockout.check_lock("ghost@example.com")).locked


async def test_reset_clears_counter(app, auth, create_user):
    await create_user()
    await auth.lockout.record_failure("doc@example.com")
    await auth.lockout.record_failure("doc@example.com")

    await auth.lockout.reset_failures("doc@example.com")

    assert await app.state.store.get_lock_state("doc@example.com") == (0, None)


async def test_concurrent_failures_are_all_counted(app, auth, create_user):
    await create_user()

    results = await asyncio.gather(*(auth.lockout.record_failure("doc@example.com") for _ in range(5)))

    assert sum(1 for r in results if r.locked) >= 1
    attempts, locked_until = await app.state.store.get_lock_state("doc@example.com")
    assert attempts == 5
    assert locked_until is not None
