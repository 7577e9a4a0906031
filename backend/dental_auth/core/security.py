"""Password hashing and request-context helpers.

Hashing uses pwdlib's bcrypt hasher. bcrypt is deliberately slow, so the
async wrappers run it in a worker thread and the request handler suspends
instead of blocking the event loop.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone

from dental_auth.core.logging import logger
from fastapi import Request
from pwdlib import PasswordHash
from pwdlib.exceptions import UnknownHashError
from pwdlib.hashers.bcrypt import BcryptHasher


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Return ``value`` as an aware UTC datetime.

    SQLite hands back naive datetimes even for ``timezone=True`` columns;
    everything written by this service is UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class PasswordHasher:
    """bcrypt hashing with a configurable cost factor."""

    def __init__(self, rounds: int = 10) -> None:
        self._hash = PasswordHash((BcryptHasher(rounds=rounds),))

    async def hash(self, password: str) -> str:
        """Hash a plain password.

        Args:
            password: Plain-text password to hash.

        Returns:
            str: The resulting bcrypt hash.
        """
        return await asyncio.to_thread(self._hash.hash, password)

    async def verify(self, password: str, password_hash: str) -> bool:
        """Verify a plain password against a stored hash.

        Args:
            password: The clear-text password provided by the user.
            password_hash: The stored hash to verify against.

        Returns:
            bool: True if the password matches. A hash in an unknown format
                never matches.
        """
        try:
            return await asyncio.to_thread(self._hash.verify, password, password_hash)
        except UnknownHashError:
            logger.warning("Stored password hash has an unrecognized format")
            return False


@dataclass(frozen=True)
class RequestContext:
    """Client attribution attached to audit records and refresh tokens."""

    ip_address: str | None = None
    user_agent: str | None = None

    @classmethod
    def from_request(cls, request: Request) -> "RequestContext":
        return cls(ip_address=get_client_ip(request), user_agent=get_device_info(request))


def get_device_info(request: Request) -> str:
    """Extract device information (user-agent) from a request.

    Args:
        request: FastAPI request object.

    Returns:
        str: Truncated user-agent string (max 255 characters).
    """

    user_agent = request.headers.get("user-agent", "Unknown")
    return user_agent[:255]


def get_client_ip(request: Request) -> str:
    """Determine the client's IP address from the request.

    Prefers the ``X-Forwarded-For`` header, then ``X-Real-IP``, when present
    (typical when the app is behind a proxy/load-balancer), otherwise falls
    back to the direct client address exposed by the ASGI server.

    Args:
        request: FastAPI request object.

    Returns:
        str: Client IP address or "unknown" if it cannot be determined.
    """

    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return request.client.host if request.client else "unknown"
