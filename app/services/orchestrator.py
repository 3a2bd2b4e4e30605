"""Reply pipeline: bounded context, timed generation, persistence, cache refresh."""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Protocol, runtime_checkable

from app.config import settings
from app.db.repository import ConversationRepository, get_repository
from app.errors import (
    BackendGenericError,
    BackendTimeoutError,
    InputError,
    classify_backend_error,
    failure_policy,
)
from app.logging_config import log_context
from app.models.schemas import GeneratedReply, Generation, Turn
from app.services.history_cache import HistoryCache
from app.services.llm import LLMService
from app.services.prompts import get_system_prompt

logger = logging.getLogger(__name__)


def utf16_length(text: str) -> int:
    """Length in UTF-16 code units, the unit browsers use for message limits.

    Characters outside the Basic Multilingual Plane (most emoji) count as two.
    """
    return len(text.encode("utf-16-le", errors="surrogatepass")) // 2


@runtime_checkable
class GenerationBackend(Protocol):
    async def generate(self, turns: list[Turn]) -> Generation:
        ...


class ReplyOrchestrator:
    """Turns one user message into a persisted, generated reply.

    Failures of the backend call are classified into the backend error kinds.
    A persistence failure after a successful generation propagates as-is;
    the spent generation is not rolled back.
    """

    def __init__(
        self,
        repository: ConversationRepository | None = None,
        backend: GenerationBackend | None = None,
        cache: HistoryCache | None = None,
        timeout: float | None = None,
        max_message_length: int | None = None,
        max_history: int | None = None,
    ):
        self.repository = repository or get_repository()
        self.backend = backend or LLMService()
        self.cache = cache or self.repository.cache
        self.timeout = timeout if timeout is not None else settings.REQUEST_TIMEOUT_SECONDS
        self.max_message_length = (
            max_message_length if max_message_length is not None else settings.MAX_MESSAGE_LENGTH
        )
        self.max_history = max_history if max_history is not None else settings.MAX_HISTORY_MESSAGES

    def build_context(self, history: list[Turn], user_text: str) -> list[Turn]:
        """System instruction, the most recent history, then the new user turn."""
        trimmed = history[-self.max_history:] if self.max_history > 0 else []
        return [
            Turn(role="system", content=get_system_prompt()),
            *trimmed,
            Turn(role="user", content=user_text),
        ]

    @failure_policy("backend.generate")
    async def _generate(self, turns: list[Turn]) -> Generation:
        try:
            return await asyncio.wait_for(self.backend.generate(turns), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            logger.error("Generation timed out after %ss", self.timeout)
            raise BackendTimeoutError() from exc
        except Exception as exc:
            error = classify_backend_error(exc)
            logger.error("Generation failed (%s): %s", error.code, exc)
            raise error from exc

    async def reply(self, session_id: str, user_text: str) -> GeneratedReply:
        if utf16_length(user_text) > self.max_message_length:
            raise InputError(
                f"Message too long. Maximum length is {self.max_message_length} characters."
            )

        history = await self.repository.load_history(session_id)
        logger.info("Retrieved conversation history with %d messages", len(history))

        turns = self.build_context(history, user_text)
        generation = await self._generate(turns)

        if not generation.text or not generation.text.strip():
            logger.error("Backend returned an empty generation")
            raise BackendGenericError("No response received from the AI service.")

        created_at = generation.created_at or datetime.now(timezone.utc)
        reply = GeneratedReply(
            response=generation.text,
            model=generation.model,
            created_at=created_at.isoformat(),
            message_id=generation.generation_id or str(uuid.uuid4()),
        )

        with log_context(model=reply.model):
            await self.repository.append_message(session_id, user_text, reply)
            # Bounded and fail-open; a stalled cache cannot hold the reply
            await self.cache.append(session_id, user_text, reply.response)
        return reply
