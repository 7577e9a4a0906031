"""Per-IP sliding-window rate limiting for the authentication endpoints.

Two backends implement the same window:

* in-process: a deque of hit timestamps per key, good for a single worker
  and for tests;
* Redis: a sorted set per key (``ZREMRANGEBYSCORE`` / ``ZCARD`` / ``ZADD`` /
  ``EXPIRE`` in one pipeline), shared by every worker. Redis errors fail
  open so an outage of the limiter never blocks logins.

Both backends count every hit, rejected ones included, so a client that
keeps retrying stays limited until it backs off for a full window. The
in-process backend periodically drops keys that have gone idle.

Routes opt in with ``Depends(rate_limit(LOGIN_RULE))``.
"""

import secrets
import time
from collections import deque
from dataclasses import dataclass

from dental_auth.config.config import Settings
from dental_auth.core.exceptions import RateLimitExceededError
from dental_auth.core.logging import logger
from dental_auth.core.security import get_client_ip, get_device_info
from dental_auth.models.audit import AuditEventType
from fastapi import Request
from redis import asyncio as aioredis
from redis.exceptions import RedisError


@dataclass(frozen=True)
class RateLimitRule:
    name: str
    max_requests: int
    window_seconds: int


LOGIN_RULE = RateLimitRule("login", max_requests=10, window_seconds=15 * 60)
PASSWORD_RESET_RULE = RateLimitRule("password_reset", max_requests=3, window_seconds=60 * 60)
EMAIL_VERIFICATION_RULE = RateLimitRule("email_verification", max_requests=5, window_seconds=60 * 60)


class MemoryBackend:
    """Sliding windows kept in process memory.

    Args:
        sweep_every: Number of hits between sweeps that drop keys whose
            newest hit has left its window.
    """

    def __init__(self, sweep_every: int = 1000) -> None:
        self._hits: dict[str, deque[float]] = {}
        self._windows: dict[str, int] = {}
        self._sweep_every = sweep_every
        self._calls = 0

    async def hit(self, key: str, max_requests: int, window_seconds: int) -> bool:
        now = time.monotonic()
        self._calls += 1
        if self._calls % self._sweep_every == 0:
            self._sweep(now)

        hits = self._hits.setdefault(key, deque())
        self._windows[key] = window_seconds
        while hits and hits[0] <= now - window_seconds:
            hits.popleft()
        count = len(hits)
        hits.append(now)
        return count < max_requests

    def _sweep(self, now: float) -> None:
        stale = [key for key, hits in self._hits.items() if not hits or hits[-1] <= now - self._windows[key]]
        for key in stale:
            del self._hits[key]
            del self._windows[key]
        if stale:
            logger.debug("Rate limiter dropped {} idle keys", len(stale))

    async def reset(self) -> None:
        self._hits.clear()
        self._windows.clear()

    async def close(self) -> None:
        pass


class RedisBackend:
    """Sliding windows stored in Redis sorted sets."""

    def __init__(self, url: str) -> None:
        self._redis = aioredis.Redis.from_url(url, decode_responses=False)

    async def hit(self, key: str, max_requests: int, window_seconds: int) -> bool:
        now = time.time()
        window_start = now - window_seconds
        # NOTE: unique member so two hits in the same instant both count
        member = f"{now}:{secrets.token_hex(4)}"
        try:
            pipe = self._redis.pipeline()
            pipe.zremrangebyscore(key, 0, window_start)
            pipe.zcard(key)
            pipe.zadd(key, {member: now})
            pipe.expire(key, window_seconds)
            results = await pipe.execute()
        except RedisError:
            logger.exception("Rate limiter backend error, allowing request")
            return True
        # results[1] is the count before this hit
        return results[1] < max_requests

    async def reset(self) -> None:
        await self._redis.flushdb()

    async def close(self) -> None:
        await self._redis.aclose()


class RateLimiter:
    """Checks rate-limit rules against a configured backend.

    Args:
        settings: ``RATE_LIMIT_ENABLED`` toggles checks and
            ``RATE_LIMIT_REDIS_URL`` selects the Redis backend.
    """

    def __init__(self, settings: Settings) -> None:
        self.enabled = settings.RATE_LIMIT_ENABLED
        if settings.RATE_LIMIT_REDIS_URL:
            self.backend = RedisBackend(settings.RATE_LIMIT_REDIS_URL)
        else:
            self.backend = MemoryBackend()

    async def allow(self, rule: RateLimitRule, identifier: str) -> bool:
        """Count one request for ``identifier`` and report whether it may proceed."""
        if not self.enabled:
            return True
        key = f"rate_limit:{rule.name}:{identifier}"
        return await self.backend.hit(key, rule.max_requests, rule.window_seconds)

    async def close(self) -> None:
        await self.backend.close()


def rate_limit(rule: RateLimitRule):
    """Build a FastAPI dependency enforcing ``rule`` per client IP.

    Raises:
        RateLimitExceededError: When the client exceeded the window.
    """

    async def dependency(request: Request) -> None:
        limiter: RateLimiter = request.app.state.rate_limiter
        ip_address = get_client_ip(request)
        if await limiter.allow(rule, ip_address):
            return
        logger.warning("Rate limit {} exceeded ip={}", rule.name, ip_address)
        request.app.state.audit.record(
            AuditEventType.RATE_LIMIT_EXCEEDED,
            ip_address=ip_address,
            user_agent=get_device_info(request),
            metadata={"rule": rule.name, "path": request.url.path},
            success=False,
        )
        raise RateLimitExceededError()

    return dependency
