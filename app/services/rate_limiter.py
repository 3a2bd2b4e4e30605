"""Admission control with two fixed-window counters (per session and global)."""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from app.config import settings
from app.db.redis_store import RedisStore, redis_store
from app.errors import failure_policy
from app.models.schemas import RateLimitDecision

logger = logging.getLogger(__name__)

SESSION_KEY_PREFIX = "rate_limit:session:"
GLOBAL_KEY = "rate_limit:global"


@dataclass
class WindowResult:
    allowed: bool
    remaining: int
    reset_at: datetime


def _fail_open(self: "RateLimiter", key: str, limit: int, window: int) -> WindowResult:
    return WindowResult(
        allowed=True,
        remaining=limit,
        reset_at=datetime.now(timezone.utc) + timedelta(seconds=window),
    )


class RateLimiter:
    """Fixed-window rate limiter backed by Redis INCR/EXPIRE.

    Both counters are incremented for every check, so a request denied by
    its session window still spends one unit of the global budget.
    """

    def __init__(
        self,
        store: RedisStore | None = None,
        session_limit: int | None = None,
        session_window: int | None = None,
        global_limit: int | None = None,
        global_window: int | None = None,
    ):
        self.store = store or redis_store
        self.session_limit = session_limit if session_limit is not None else settings.SESSION_RATE_LIMIT
        self.session_window = session_window if session_window is not None else settings.SESSION_RATE_WINDOW
        self.global_limit = global_limit if global_limit is not None else settings.GLOBAL_RATE_LIMIT
        self.global_window = global_window if global_window is not None else settings.GLOBAL_RATE_WINDOW

    @failure_policy("rate_limit.count", fallback=_fail_open)
    async def _check_window(self, key: str, limit: int, window: int) -> WindowResult:
        r = self.store.client
        current = await r.incr(key)
        if current == 1:
            # First hit arms the window
            await r.expire(key, window)

        ttl = await r.ttl(key)
        if ttl < 0:
            # Key lost its expiry (e.g. crash between INCR and EXPIRE)
            await r.expire(key, window)
            ttl = window
        reset_at = datetime.now(timezone.utc) + timedelta(seconds=ttl)

        if current > limit:
            logger.warning("Rate limit exceeded for %s: %d/%d", key, current, limit)
            return WindowResult(allowed=False, remaining=0, reset_at=reset_at)

        logger.debug("Rate limit check passed for %s: %d/%d", key, current, limit)
        return WindowResult(allowed=True, remaining=max(0, limit - current), reset_at=reset_at)

    async def check_session(self, session_id: str) -> WindowResult:
        return await self._check_window(
            f"{SESSION_KEY_PREFIX}{session_id}", self.session_limit, self.session_window
        )

    async def check_global(self) -> WindowResult:
        return await self._check_window(GLOBAL_KEY, self.global_limit, self.global_window)

    async def admit(self, session_id: str) -> RateLimitDecision:
        """Check both windows and decide whether the request may proceed."""
        session_result, global_result = await asyncio.gather(
            self.check_session(session_id),
            self.check_global(),
        )

        reason = None
        if not session_result.allowed:
            reason = "Session rate limit exceeded"
        elif not global_result.allowed:
            reason = "Global rate limit exceeded"

        return RateLimitDecision(
            allowed=reason is None,
            session_remaining=session_result.remaining,
            session_reset_at=session_result.reset_at,
            global_remaining=global_result.remaining,
            global_reset_at=global_result.reset_at,
            reason=reason,
        )


def retry_after_seconds(decision: RateLimitDecision, now: datetime | None = None) -> int:
    """Seconds until the window that denied the request resets (at least 1)."""
    now = now or datetime.now(timezone.utc)
    if decision.reason == "Global rate limit exceeded":
        reset_at = decision.global_reset_at
    else:
        reset_at = decision.session_reset_at
    return max(1, math.ceil((reset_at - now).total_seconds()))
