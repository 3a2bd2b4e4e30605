"""Root conftest: shared fixtures for all tests."""

from __future__ import annotations

import asyncio
import sys
from datetime import datetime, timezone
from pathlib import Path

# Ensure the repo root is on sys.path
_root_dir = str(Path(__file__).resolve().parent)
if _root_dir not in sys.path:
    sys.path.insert(0, _root_dir)

import fakeredis
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlalchemy.pool import StaticPool

from app.db.database import create_engine_for, init_db
from app.db.redis_store import RedisStore
from app.db.repository import ConversationRepository
from app.models.schemas import Generation
from app.services.history_cache import HistoryCache


def word_count(text: str) -> int:
    """Deterministic stand-in tokenizer; tiktoken downloads its tables."""
    return len(text.split())


class FakeBackend:
    """Generation backend double that records every call.

    Message ids must be unique, so calls after the first get
    ``<generation_id>-<n>``.
    """

    def __init__(
        self,
        text: str = "Please share your order ID.",
        model: str = "m1",
        generation_id: str | None = "g1",
        created_at: datetime | None = None,
        delay: float = 0.0,
        error: Exception | None = None,
    ):
        self.text = text
        self.model = model
        self.generation_id = generation_id
        self.created_at = created_at or datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)
        self.delay = delay
        self.error = error
        self.calls: list[list] = []
        self.cancelled = False

    async def generate(self, turns):
        self.calls.append(list(turns))
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        if self.error is not None:
            raise self.error
        # First call keeps the configured id; later calls get unique ones
        generation_id = self.generation_id
        if generation_id is not None and len(self.calls) > 1:
            generation_id = f"{generation_id}-{len(self.calls)}"
        return Generation(
            text=self.text,
            model=self.model,
            created_at=self.created_at,
            generation_id=generation_id,
        )


@pytest.fixture
def fake_redis():
    """Provide an isolated fakeredis instance."""
    return fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)


@pytest.fixture
def store(fake_redis):
    return RedisStore(url="redis://fake", client=fake_redis)


@pytest.fixture
def down_store():
    """A store that was never connected; every command raises ConnectionError."""
    return RedisStore(url="redis://unreachable")


@pytest.fixture
def cache(store):
    return HistoryCache(store=store)


@pytest_asyncio.fixture
async def engine():
    """In-memory SQLite; StaticPool ensures all connections share the same DB."""
    test_engine = create_engine_for("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)
    await init_db(bind=test_engine)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def repository(session_factory, cache):
    return ConversationRepository(session_factory=session_factory, cache=cache, token_counter=word_count)


@pytest.fixture
def backend():
    return FakeBackend()
