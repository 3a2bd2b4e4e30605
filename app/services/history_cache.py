"""Redis-backed cache of a session's recent conversation turns.

The cache is a disposable accelerator in front of the database: every
failure degrades to a miss or a skipped write, never to an error. Each
operation is also bounded in time, so a stalled Redis costs a caller at
most ``CACHE_TIMEOUT_SECONDS`` per call.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Awaitable, TypeVar

from pydantic import TypeAdapter, ValidationError

from app.config import settings
from app.db.redis_store import RedisStore, redis_store
from app.errors import CacheError, failure_policy
from app.models.schemas import Turn

logger = logging.getLogger(__name__)

_turns_adapter = TypeAdapter(list[Turn])

T = TypeVar("T")


class HistoryCache:
    def __init__(
        self,
        store: RedisStore | None = None,
        ttl: int | None = None,
        max_turns: int | None = None,
        prefix: str | None = None,
        timeout: float | None = None,
    ):
        self.store = store or redis_store
        self.ttl = ttl if ttl is not None else settings.HISTORY_CACHE_TTL
        self.max_turns = max_turns if max_turns is not None else settings.MAX_HISTORY_MESSAGES
        self.prefix = prefix if prefix is not None else settings.HISTORY_CACHE_PREFIX
        self.timeout = timeout if timeout is not None else settings.CACHE_TIMEOUT_SECONDS

    def _key(self, session_id: str) -> str:
        return f"{self.prefix}{session_id}"

    async def _bounded(self, command: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(command, timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            raise CacheError(f"Cache command exceeded {self.timeout}s") from exc

    @failure_policy("cache.read")
    async def read(self, session_id: str) -> list[Turn] | None:
        """Return the cached turns, or None on a miss."""
        cached = await self._bounded(self.store.client.get(self._key(session_id)))
        if not cached:
            logger.info("Cache miss for session: %s", session_id)
            return None
        try:
            history = _turns_adapter.validate_json(cached)
        except ValidationError as exc:
            raise CacheError(f"Undecodable cached history for {session_id}") from exc
        logger.info("Cache hit for session: %s, %d messages", session_id, len(history))
        return history

    @failure_policy("cache.write")
    async def write(self, session_id: str, turns: list[Turn]) -> None:
        serialized = json.dumps([turn.model_dump() for turn in turns])
        await self._bounded(self.store.client.setex(self._key(session_id), self.ttl, serialized))
        logger.info("Cached conversation history for session: %s, %d messages", session_id, len(turns))

    @failure_policy("cache.append")
    async def append(self, session_id: str, user_text: str, assistant_text: str) -> None:
        """Add one exchange to an existing cached history.

        Without a cached history this is a no-op; the next full read rebuilds
        it from the database.
        """
        existing = await self.read(session_id)
        if existing is None:
            return
        updated = existing + [
            Turn(role="user", content=user_text),
            Turn(role="assistant", content=assistant_text),
        ]
        await self.write(session_id, updated[-self.max_turns:])

    @failure_policy("cache.ping", fallback=False)
    async def is_healthy(self) -> bool:
        await self._bounded(self.store.client.ping())
        return True
