"""Tests for db/repository.py."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from app.db.models import Conversation, Message
from app.db.repository import ConversationRepository, assistant_text_from_raw
from app.errors import PersistenceError
from app.models.schemas import GeneratedReply, Turn


def _reply(text: str, message_id: str, model: str = "m1") -> GeneratedReply:
    return GeneratedReply(
        response=text,
        model=model,
        created_at="2026-10-18T12:00:00+00:00",
        message_id=message_id,
    )


async def _count(session_factory, model) -> int:
    async with session_factory() as db:
        return (await db.execute(select(func.count()).select_from(model))).scalar_one()


class TestEnsureConversation:
    @pytest.mark.asyncio
    async def test_creates_once(self, repository, session_factory):
        await repository.ensure_conversation("s1")
        await repository.ensure_conversation("s1")
        assert await _count(session_factory, Conversation) == 1

    @pytest.mark.asyncio
    async def test_existing_conversation_keeps_messages(self, repository, session_factory):
        await repository.append_message("s1", "q", _reply("a", "g1"))
        await repository.ensure_conversation("s1")
        assert await _count(session_factory, Message) == 1


class TestAppendMessage:
    @pytest.mark.asyncio
    async def test_creates_conversation_lazily(self, repository, session_factory):
        await repository.append_message("s1", "Where is my order?", _reply("Please share your order ID.", "g1"))

        async with session_factory() as db:
            conversation = await db.get(Conversation, "s1")
        assert conversation is not None
        assert conversation.created_at is not None

    @pytest.mark.asyncio
    async def test_token_counts_sum(self, repository, session_factory):
        await repository.append_message("s1", "Where is my order?", _reply("Please share your order ID.", "g1"))

        async with session_factory() as db:
            message = (await db.execute(select(Message))).scalar_one()
        assert message.user_tokens == 4
        assert message.assistant_tokens == 5
        assert message.total_tokens == message.user_tokens + message.assistant_tokens

    @pytest.mark.asyncio
    async def test_stores_raw_payload_and_model(self, repository, session_factory):
        reply = _reply("Hello", "g1", model="gpt-test")
        await repository.append_message("s1", "hi", reply)

        async with session_factory() as db:
            message = (await db.execute(select(Message))).scalar_one()
        assert message.message_id == "g1"
        assert message.model_used == "gpt-test"
        assert json.loads(message.raw_response) == {
            "response": "Hello",
            "model": "gpt-test",
            "created_at": "2026-10-18T12:00:00+00:00",
            "message_id": "g1",
        }

    @pytest.mark.asyncio
    async def test_accepts_serialized_payload(self, repository, session_factory):
        raw = _reply("Hello", "g9").model_dump_json()
        await repository.append_message("s1", "hi", raw)

        async with session_factory() as db:
            message = (await db.execute(select(Message))).scalar_one()
        assert message.raw_response == raw
        assert message.message_id == "g9"

    @pytest.mark.asyncio
    async def test_unparseable_payload_raises_persistence_error(self, repository):
        with pytest.raises(PersistenceError):
            await repository.append_message("s1", "hi", "not a payload")

    @pytest.mark.asyncio
    async def test_duplicate_message_id_raises_persistence_error(self, repository):
        await repository.append_message("s1", "hi", _reply("Hello", "g1"))
        with pytest.raises(PersistenceError):
            await repository.append_message("s1", "hi again", _reply("Hello", "g1"))

    @pytest.mark.asyncio
    async def test_database_failure_raises_persistence_error(self, cache):
        broken_session = MagicMock()
        broken_session.__aenter__ = AsyncMock(side_effect=OperationalError("INSERT", {}, Exception("db down")))
        broken_session.__aexit__ = AsyncMock(return_value=False)
        repository = ConversationRepository(
            session_factory=MagicMock(return_value=broken_session), cache=cache, token_counter=len
        )

        with pytest.raises(PersistenceError) as exc_info:
            await repository.append_message("s1", "hi", _reply("Hello", "g1"))
        assert exc_info.value.code == "persistence_error"
        assert "db down" not in exc_info.value.message


class TestLoadHistory:
    @pytest.mark.asyncio
    async def test_empty_history_is_not_cached(self, repository, cache):
        assert await repository.load_history("s1") == []
        assert await cache.read("s1") is None

    @pytest.mark.asyncio
    async def test_expands_messages_in_insertion_order(self, repository):
        for i in range(3):
            await repository.append_message("s1", f"question {i}", _reply(f"answer {i}", f"g{i}"))

        history = await repository.load_history("s1")
        assert history == [
            Turn(role="user", content="question 0"),
            Turn(role="assistant", content="answer 0"),
            Turn(role="user", content="question 1"),
            Turn(role="assistant", content="answer 1"),
            Turn(role="user", content="question 2"),
            Turn(role="assistant", content="answer 2"),
        ]

    @pytest.mark.asyncio
    async def test_store_read_populates_cache(self, repository, cache):
        await repository.append_message("s1", "q", _reply("a", "g1"))

        history = await repository.load_history("s1")
        assert await cache.read("s1") == history

    @pytest.mark.asyncio
    async def test_cache_hit_skips_database(self, repository, cache, session_factory):
        cached = [Turn(role="user", content="cached q"), Turn(role="assistant", content="cached a")]
        await cache.write("s1", cached)
        await repository.append_message("s1", "db q", _reply("db a", "g1"))

        assert await repository.load_history("s1") == cached

    @pytest.mark.asyncio
    async def test_sessions_do_not_mix(self, repository):
        await repository.append_message("s1", "q1", _reply("a1", "g1"))
        await repository.append_message("s2", "q2", _reply("a2", "g2"))

        history = await repository.load_history("s2")
        assert [t.content for t in history] == ["q2", "a2"]

    @pytest.mark.asyncio
    async def test_raw_payload_fallback(self, repository, session_factory):
        await repository.ensure_conversation("s1")
        async with session_factory() as db:
            db.add(Message(
                message_id="legacy-1",
                conversation_id="s1",
                user_text="q",
                raw_response="plain text reply",
                model_used="m0",
            ))
            await db.commit()

        history = await repository.load_history("s1")
        assert history[1] == Turn(role="assistant", content="plain text reply")

    @pytest.mark.asyncio
    async def test_works_when_cache_is_down(self, session_factory, down_store):
        from app.services.history_cache import HistoryCache

        repository = ConversationRepository(
            session_factory=session_factory, cache=HistoryCache(store=down_store), token_counter=len
        )
        await repository.append_message("s1", "q", _reply("a", "g1"))

        history = await repository.load_history("s1")
        assert [t.content for t in history] == ["q", "a"]


class TestAssistantTextFromRaw:
    def test_structured_payload(self):
        assert assistant_text_from_raw(json.dumps({"response": "hi"})) == "hi"

    def test_invalid_json_returns_raw(self):
        assert assistant_text_from_raw("hello {") == "hello {"

    def test_json_without_response_returns_raw(self):
        raw = json.dumps({"text": "hi"})
        assert assistant_text_from_raw(raw) == raw

    def test_json_scalar_returns_raw(self):
        assert assistant_text_from_raw("42") == "42"


class TestStats:
    @pytest.mark.asyncio
    async def test_stats_for_unknown_session(self, repository):
        stats = await repository.get_stats("nobody")
        assert stats.message_count == 0
        assert stats.token_count == 0
        assert stats.created_at is None

    @pytest.mark.asyncio
    async def test_stats_totals(self, repository):
        await repository.append_message("s1", "one two", _reply("three", "g1"))
        await repository.append_message("s1", "four", _reply("five six seven", "g2"))

        stats = await repository.get_stats("s1")
        assert stats.message_count == 2
        assert stats.token_count == 7
        assert stats.created_at is not None
        assert stats.updated_at is not None

    @pytest.mark.asyncio
    async def test_stats_do_not_modify_history(self, repository, session_factory):
        await repository.append_message("s1", "q", _reply("a", "g1"))

        await repository.get_stats("s1")
        await repository.load_history("s1")

        assert await _count(session_factory, Message) == 1
        assert await _count(session_factory, Conversation) == 1
