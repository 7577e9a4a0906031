"""Account lockout after repeated failed logins.

Lock state lives on the ``users`` row (``failed_login_attempts`` and
``account_locked_until``), so it survives restarts and needs no cache.
Expired locks are cleared lazily by the next :meth:`LockoutGuard.check_lock`;
there is no background sweep.

States per account::

    Unlocked(attempts 0..max-1) --max-th failure--> Locked(until)
    Locked(until) --check after until--> Unlocked(0)
"""

from dataclasses import dataclass
from datetime import datetime, timedelta

from dental_auth.core.logging import logger
from dental_auth.core.security import utcnow
from dental_auth.models.audit import AuditEventType
from dental_auth.services.audit_sink import AuditSink
from dental_auth.services.credential_store import CredentialStore


@dataclass
class LockStatus:
    locked: bool
    unlock_at: datetime | None = None


@dataclass
class FailureResult:
    locked: bool
    attempts: int
    unlock_at: datetime | None = None


class LockoutGuard:
    """Tracks failed attempts per email and enforces temporary lockout.

    Args:
        store: Credential store holding the lock columns.
        audit: Audit sink for lock/unlock events.
        max_attempts: Failures that trigger a lock.
        lockout_duration: How long a lock lasts.
    """

    def __init__(
        self,
        store: CredentialStore,
        audit: AuditSink,
        max_attempts: int = 5,
        lockout_duration: timedelta = timedelta(minutes=15),
    ) -> None:
        self._store = store
        self._audit = audit
        self.max_attempts = max_attempts
        self.lockout_duration = lockout_duration

    async def check_lock(self, email: str) -> LockStatus:
        """Report whether ``email`` is locked.

        An expired lock is cleared (attempts reset to 0) as a side effect.
        Unknown emails report not-locked.
        """
        state = await self._store.get_lock_state(email)
        if state is None:
            return LockStatus(locked=False)

        _, locked_until = state
        if locked_until is None:
            return LockStatus(locked=False)

        now = utcnow()
        if locked_until > now:
            return LockStatus(locked=True, unlock_at=locked_until)

        user_id = await self._store.clear_expired_lock(email, now)
        if user_id is not None:
            logger.info("Lockout expired, counter reset for user_id={}", user_id)
            self._audit.record_auth_event(
                AuditEventType.ACCOUNT_UNLOCKED,
                user_id=user_id,
                email=email,
                reason="Lockout period elapsed",
            )
        return LockStatus(locked=False)

    async def record_failure(
        self, email: str, ip_address: str | None = None, user_agent: str | None = None
    ) -> FailureResult:
        """Count one failed login for ``email``.

        The increment and the lock are one atomic UPDATE. Unknown or deleted
        emails are a no-op and report ``locked=False, attempts=0`` so the
        response does not reveal whether the account exists.
        """
        now = utcnow()
        lock_until = now + self.lockout_duration
        updated = await self._store.increment_failed_attempts(email, self.max_attempts, lock_until, now)

        if updated is None:
            # NOTE: either no such live user, or a concurrent request locked it first
            state = await self._store.get_lock_state(email)
            if state is not None and state[1] is not None and state[1] > now:
                return FailureResult(locked=True, attempts=state[0], unlock_at=state[1])
            return FailureResult(locked=False, attempts=0)

        user_id, attempts, locked_until = updated
        if locked_until is not None and locked_until > now and attempts >= self.max_attempts:
            self._audit.record_auth_event(
                AuditEventType.ACCOUNT_LOCKED,
                user_id=user_id,
                email=email,
                ip_address=ip_address,
                user_agent=user_agent,
                success=True,
                reason=f"Account locked after {attempts} failed attempts",
            )
            logger.warning(
                "Account locked user_id={} attempts={} until={} ip={}",
                user_id,
                attempts,
                locked_until.isoformat(),
                ip_address,
            )
            return FailureResult(locked=True, attempts=attempts, unlock_at=locked_until)

        return FailureResult(locked=False, attempts=attempts)

    async def reset_failures(self, email: str) -> None:
        """Zero the counter and clear any lock."""
        await self._store.reset_failed_attempts(email)
