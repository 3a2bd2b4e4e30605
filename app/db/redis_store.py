"""Shared Redis handle with an explicit connect/disconnect lifecycle."""

from __future__ import annotations

import logging

import redis.asyncio as aioredis

from app.config import settings

logger = logging.getLogger(__name__)


class RedisStore:
    """Owns the single ``redis.asyncio`` client used by the limiter and the cache.

    Components receive the store (not the client) so the client can be
    swapped on reconnect and replaced with a fake in tests.
    """

    def __init__(
        self,
        url: str | None = None,
        client: aioredis.Redis | None = None,
        socket_timeout: float | None = None,
    ):
        self.url = url or settings.redis_url
        self._client = client
        # A stalled server surfaces as a timeout error instead of hanging callers
        self.socket_timeout = socket_timeout if socket_timeout is not None else settings.REDIS_SOCKET_TIMEOUT

    @property
    def client(self) -> aioredis.Redis:
        if self._client is None:
            raise ConnectionError("Redis store is not connected")
        return self._client

    @property
    def connected(self) -> bool:
        return self._client is not None

    async def connect(self) -> None:
        """Open the connection pool and verify it with a PING."""
        if self._client is not None:
            return
        client = aioredis.from_url(
            self.url,
            decode_responses=True,
            socket_timeout=self.socket_timeout,
            socket_connect_timeout=self.socket_timeout,
        )
        try:
            await client.ping()
        except Exception:
            await client.aclose()
            logger.error("Failed to connect to Redis at %s", self.url, exc_info=True)
            raise
        self._client = client
        logger.info("Redis client connected")

    async def disconnect(self) -> None:
        if self._client is None:
            return
        try:
            await self._client.aclose()
            logger.info("Redis connection closed")
        except Exception:
            logger.error("Error disconnecting from Redis", exc_info=True)
        finally:
            self._client = None


redis_store = RedisStore()
