"""Tests for services/chat.py."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from app.errors import BackendTimeoutError, InputError, RateLimitedError
from app.logging_config import current_log_context
from app.services.chat import ChatService
from app.services.orchestrator import ReplyOrchestrator
from app.services.rate_limiter import RateLimiter
from conftest import FakeBackend


@pytest.fixture
def limiter(store):
    return RateLimiter(store=store, session_limit=2, session_window=60, global_limit=1000, global_window=60)


@pytest.fixture
def service(limiter, repository, backend, cache):
    orchestrator = ReplyOrchestrator(repository=repository, backend=backend, cache=cache, timeout=1.0)
    return ChatService(rate_limiter=limiter, orchestrator=orchestrator)


class TestInput:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("session_id", ["", "   "])
    async def test_missing_session_id(self, service, backend, session_id):
        with pytest.raises(InputError):
            await service.handle_chat_turn(session_id, "hello")
        assert backend.calls == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("message", ["", " \n "])
    async def test_empty_message(self, service, backend, message):
        with pytest.raises(InputError):
            await service.handle_chat_turn("s1", message)
        assert backend.calls == []

    @pytest.mark.asyncio
    async def test_empty_message_does_not_consume_budget(self, service, fake_redis):
        with pytest.raises(InputError):
            await service.handle_chat_turn("s1", "")
        assert await fake_redis.get("rate_limit:global") is None


class TestAdmission:
    @pytest.mark.asyncio
    async def test_success_returns_reply_and_decision(self, service):
        result = await service.handle_chat_turn("s1", "Where is my order?")

        assert result.session_id == "s1"
        assert result.reply.response == "Please share your order ID."
        assert result.rate_limit.allowed is True
        assert result.rate_limit.session_remaining == 1

    @pytest.mark.asyncio
    async def test_denied_turn_never_reaches_backend(self, service, backend):
        await service.handle_chat_turn("s1", "one")
        await service.handle_chat_turn("s1", "two")

        with pytest.raises(RateLimitedError) as exc_info:
            await service.handle_chat_turn("s1", "three")

        error = exc_info.value
        assert error.status_code == 429
        assert error.decision.allowed is False
        assert error.decision.reason == "Session rate limit exceeded"
        assert 1 <= error.retry_after <= 60
        assert error.to_dict()["reason"] == "Session rate limit exceeded"
        assert len(backend.calls) == 2

    @pytest.mark.asyncio
    async def test_store_down_admits(self, down_store, repository, backend, cache):
        service = ChatService(
            rate_limiter=RateLimiter(store=down_store),
            orchestrator=ReplyOrchestrator(repository=repository, backend=backend, cache=cache),
        )

        result = await service.handle_chat_turn("s1", "hello")
        assert result.rate_limit.allowed is True


class TestFailures:
    @pytest.mark.asyncio
    async def test_pipeline_error_carries_decision(self, limiter, repository, cache):
        orchestrator = ReplyOrchestrator(
            repository=repository, backend=FakeBackend(delay=1.0), cache=cache, timeout=0.05
        )
        service = ChatService(rate_limiter=limiter, orchestrator=orchestrator)

        with pytest.raises(BackendTimeoutError) as exc_info:
            await service.handle_chat_turn("s1", "hello")
        assert exc_info.value.decision is not None
        assert exc_info.value.decision.allowed is True

    @pytest.mark.asyncio
    async def test_unexpected_errors_propagate(self, limiter):
        orchestrator = AsyncMock()
        orchestrator.reply.side_effect = RuntimeError("bug")
        service = ChatService(rate_limiter=limiter, orchestrator=orchestrator)

        with pytest.raises(RuntimeError):
            await service.handle_chat_turn("s1", "hello")


class TestLogContext:
    @pytest.mark.asyncio
    async def test_session_bound_for_the_turn(self, limiter):
        seen = {}

        async def reply(session_id, message):
            seen.update(current_log_context())
            raise BackendTimeoutError()

        orchestrator = AsyncMock()
        orchestrator.reply.side_effect = reply
        service = ChatService(rate_limiter=limiter, orchestrator=orchestrator)

        with pytest.raises(BackendTimeoutError):
            await service.handle_chat_turn("s-log", "hello")

        assert seen == {"session": "s-log"}
        assert current_log_context() == {}
