"""Credential store: persistence for user accounts and password history.

All reads and writes of the ``users`` and ``password_history`` tables go
through :class:`CredentialStore`. It is also the only place that knows roles
are stored as comma-separated text; callers always see ``set[Role]``.
"""

from datetime import datetime
from typing import Iterable

from dental_auth.core.exceptions import ValidationError
from dental_auth.core.logging import logger
from dental_auth.core.roles import Role
from dental_auth.core.security import as_utc, utcnow
from dental_auth.models.auth import PasswordHistory as PasswordHistoryModel
from dental_auth.models.auth import User as UserModel
from dental_auth.schemas.auth import UserRecord
from sqlalchemy import case, literal, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker


def parse_roles(csv: str | None) -> set[Role]:
    """Parse the stored comma-separated role list.

    Empty or missing text yields an empty set. Unknown role names are
    dropped with a warning so a bad row cannot grant anything.
    """
    if not csv:
        return set()
    roles = set()
    for raw in str(csv).split(","):
        name = raw.strip()
        if not name:
            continue
        try:
            roles.add(Role(name))
        except ValueError:
            logger.warning("Ignoring unknown stored role {!r}", name)
    return roles


def serialize_roles(roles: Iterable[Role | str]) -> str:
    """Encode roles for storage (sorted, comma-joined, no blanks)."""
    names = {Role(role).value for role in roles if str(role).strip()}
    return ",".join(sorted(names))


def _to_record(user: UserModel) -> UserRecord:
    return UserRecord(
        id=user.id,
        email=user.email,
        full_name=user.full_name,
        password_hash=user.password_hash,
        roles=parse_roles(user.roles),
        email_verified=bool(user.email_verified),
        failed_login_attempts=user.failed_login_attempts or 0,
        account_locked_until=as_utc(user.account_locked_until),
        last_login_at=as_utc(user.last_login_at),
        created_at=as_utc(user.created_at),
        deleted_at=as_utc(user.deleted_at),
    )


class CredentialStore:
    """Async access to user rows.

    Args:
        session_factory: Sessionmaker bound to the application engine.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get_by_email(self, email: str, include_deleted: bool = False) -> UserRecord | None:
        """Load a user by exact email.

        Soft-deleted users are treated as non-existent unless
        ``include_deleted`` is set.
        """
        async with self._session_factory() as db:
            stmt = select(UserModel).where(UserModel.email == email)
            if not include_deleted:
                stmt = stmt.where(UserModel.deleted_at.is_(None))
            user = (await db.execute(stmt)).scalars().first()
            return _to_record(user) if user else None

    async def get_by_id(self, user_id: int, include_deleted: bool = False) -> UserRecord | None:
        async with self._session_factory() as db:
            stmt = select(UserModel).where(UserModel.id == user_id)
            if not include_deleted:
                stmt = stmt.where(UserModel.deleted_at.is_(None))
            user = (await db.execute(stmt)).scalars().first()
            return _to_record(user) if user else None

    async def create_user(
        self,
        email: str,
        password_hash: str,
        roles: Iterable[Role] = (),
        full_name: str | None = None,
        email_verified: bool = False,
    ) -> UserRecord:
        """Insert a user and seed their password history.

        Raises:
            ValidationError: The email is already taken, including by a
                concurrent insert that won the unique constraint.
        """
        now = utcnow()
        async with self._session_factory() as db:
            user = UserModel(
                email=email,
                full_name=full_name,
                password_hash=password_hash,
                roles=serialize_roles(roles),
                email_verified=email_verified,
                failed_login_attempts=0,
                password_changed_at=now,
                created_at=now,
            )
            db.add(user)
            try:
                await db.flush()
                db.add(PasswordHistoryModel(user_id=user.id, password_hash=password_hash, created_at=now))
                await db.commit()
            except IntegrityError:
                await db.rollback()
                logger.warning("User insert hit the unique email constraint")
                raise ValidationError("A user with this email already exists")
            logger.info("Created user id={} roles={}", user.id, user.roles)
            return _to_record(user)

    async def soft_delete(self, user_id: int) -> None:
        async with self._session_factory() as db:
            await db.execute(
                update(UserModel)
                .where(UserModel.id == user_id, UserModel.deleted_at.is_(None))
                .values(deleted_at=utcnow())
            )
            await db.commit()

    # -- lockout state -------------------------------------------------

    async def get_lock_state(self, email: str) -> tuple[int, datetime | None] | None:
        """Return ``(failed_attempts, locked_until)`` for a live user."""
        async with self._session_factory() as db:
            row = (
                await db.execute(
                    select(UserModel.failed_login_attempts, UserModel.account_locked_until).where(
                        UserModel.email == email, UserModel.deleted_at.is_(None)
                    )
                )
            ).first()
        if row is None:
            return None
        return row[0] or 0, as_utc(row[1])

    async def clear_expired_lock(self, email: str, now: datetime) -> int | None:
        """Zero the counter and drop the lock if it has expired.

        Returns:
            int | None: The user id when an expired lock was cleared by this
            call, otherwise None.
        """
        async with self._session_factory() as db:
            result = await db.execute(
                update(UserModel)
                .where(
                    UserModel.email == email,
                    UserModel.account_locked_until.is_not(None),
                    UserModel.account_locked_until <= now,
                )
                .values(failed_login_attempts=0, account_locked_until=None)
                .returning(UserModel.id)
                .execution_options(synchronize_session=False)
            )
            user_id = result.scalar_one_or_none()
            await db.commit()
            return user_id

    async def increment_failed_attempts(
        self, email: str, max_attempts: int, lock_until: datetime, now: datetime
    ) -> tuple[int, int, datetime | None] | None:
        """Atomically count a failed login and lock at the threshold.

        One UPDATE both increments the counter and, when the new value reaches
        ``max_attempts``, sets ``account_locked_until``. Rows that are
        currently locked or soft-deleted are not touched.

        Returns:
            tuple | None: ``(user_id, attempts, locked_until)`` after the
                update, or None when no row was updated.
        """
        new_attempts = UserModel.failed_login_attempts + 1
        stmt = (
            update(UserModel)
            .where(
                UserModel.email == email,
                UserModel.deleted_at.is_(None),
                or_(
                    UserModel.account_locked_until.is_(None),
                    UserModel.account_locked_until <= now,
                ),
            )
            .values(
                failed_login_attempts=new_attempts,
                account_locked_until=case(
                    (new_attempts >= max_attempts, literal(lock_until, UserModel.account_locked_until.type)),
                    else_=UserModel.account_locked_until,
                ),
            )
            .returning(UserModel.id, UserModel.failed_login_attempts, UserModel.account_locked_until)
            .execution_options(synchronize_session=False)
        )
        async with self._session_factory() as db:
            row = (await db.execute(stmt)).first()
            await db.commit()
        if row is None:
            return None
        return row[0], row[1], as_utc(row[2])

    async def reset_failed_attempts(self, email: str) -> None:
        async with self._session_factory() as db:
            await db.execute(
                update(UserModel)
                .where(UserModel.email == email)
                .values(failed_login_attempts=0, account_locked_until=None)
                .execution_options(synchronize_session=False)
            )
            await db.commit()

    # -- login bookkeeping ----------------------------------------------

    async def touch_last_login(self, user_id: int) -> None:
        async with self._session_factory() as db:
            await db.execute(
                update(UserModel).where(UserModel.id == user_id).values(last_login_at=utcnow())
            )
            await db.commit()

    # -- passwords -----------------------------------------------------

    async def recent_password_hashes(self, user_id: int, limit: int) -> list[str]:
        """Return the ``limit`` most recent password hashes, newest first."""
        if limit <= 0:
            return []
        async with self._session_factory() as db:
            result = await db.execute(
                select(PasswordHistoryModel.password_hash)
                .where(PasswordHistoryModel.user_id == user_id)
                .order_by(PasswordHistoryModel.created_at.desc(), PasswordHistoryModel.id.desc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def update_password(self, user_id: int, password_hash: str) -> None:
        """Set a new password hash, consume any reset token and append history."""
        now = utcnow()
        async with self._session_factory() as db:
            await db.execute(
                update(UserModel)
                .where(UserModel.id == user_id)
                .values(
                    password_hash=password_hash,
                    password_changed_at=now,
                    password_reset_token=None,
                    password_reset_expires=None,
                )
            )
            db.add(PasswordHistoryModel(user_id=user_id, password_hash=password_hash, created_at=now))
            await db.commit()

    # -- single-use tokens -----------------------------------------------

    async def set_email_verification_token(self, user_id: int, token: str, expires_at: datetime) -> None:
        async with self._session_factory() as db:
            await db.execute(
                update(UserModel)
                .where(UserModel.id == user_id)
                .values(email_verification_token=token, email_verification_expires=expires_at)
            )
            await db.commit()

    async def set_password_reset_token(self, user_id: int, token: str, expires_at: datetime) -> None:
        async with self._session_factory() as db:
            await db.execute(
                update(UserModel)
                .where(UserModel.id == user_id)
                .values(password_reset_token=token, password_reset_expires=expires_at)
            )
            await db.commit()

    async def find_by_email_verification_token(self, token: str, now: datetime) -> UserRecord | None:
        """Live, unverified user holding an unexpired verification ``token``."""
        async with self._session_factory() as db:
            user = (
                await db.execute(
                    select(UserModel).where(
                        UserModel.email_verification_token == token,
                        UserModel.email_verification_expires > now,
                        UserModel.email_verified.is_(False),
                        UserModel.deleted_at.is_(None),
                    )
                )
            ).scalars().first()
            return _to_record(user) if user else None

    async def find_by_password_reset_token(self, token: str, now: datetime) -> UserRecord | None:
        """Live user holding an unexpired reset ``token``."""
        async with self._session_factory() as db:
            user = (
                await db.execute(
                    select(UserModel).where(
                        UserModel.password_reset_token == token,
                        UserModel.password_reset_expires > now,
                        UserModel.deleted_at.is_(None),
                    )
                )
            ).scalars().first()
            return _to_record(user) if user else None

    async def mark_email_verified(self, user_id: int) -> None:
        async with self._session_factory() as db:
            await db.execute(
                update(UserModel)
                .where(UserModel.id == user_id)
                .values(
                    email_verified=True,
                    email_verification_token=None,
                    email_verification_expires=None,
                )
            )
            await db.commit()
