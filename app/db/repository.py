"""Data access layer for conversations and messages."""
import json
import logging
from typing import Callable

from sqlalchemy import func, insert, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.db.database import SessionLocal
from app.db.models import Conversation, Message
from app.errors import PersistenceError, failure_policy
from app.models.schemas import ConversationStats, GeneratedReply, Turn
from app.services.history_cache import HistoryCache
from app.services.tokens import count_text_tokens

logger = logging.getLogger(__name__)

_UPSERT_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


def assistant_text_from_raw(raw_response: str) -> str:
    """Pull the generated text out of a stored payload, or return it verbatim."""
    try:
        parsed = json.loads(raw_response)
    except (TypeError, ValueError):
        return raw_response
    if isinstance(parsed, dict) and parsed.get("response"):
        return parsed["response"]
    return raw_response


class ConversationRepository:
    """Repository for conversation data operations.

    The database is authoritative; the history cache is consulted first on
    reads and refreshed after a miss.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        cache: HistoryCache | None = None,
        token_counter: Callable[[str], int] = count_text_tokens,
    ):
        self.session_factory = session_factory or SessionLocal
        self.cache = cache or HistoryCache()
        self.count_tokens = token_counter

    async def _ensure(self, db: AsyncSession, session_id: str) -> None:
        dialect = db.get_bind().dialect.name
        dialect_insert = _UPSERT_INSERTS.get(dialect)
        if dialect_insert is not None:
            stmt = dialect_insert(Conversation).values(conversation_id=session_id)
            await db.execute(stmt.on_conflict_do_nothing(index_elements=["conversation_id"]))
            return

        # No native upsert: insert inside a savepoint and tolerate the duplicate
        try:
            async with db.begin_nested():
                await db.execute(insert(Conversation).values(conversation_id=session_id))
        except IntegrityError:
            logger.debug("Conversation %s already exists", session_id)

    @failure_policy("store.write", error=PersistenceError)
    async def ensure_conversation(self, session_id: str) -> None:
        """Create the conversation row if it does not exist yet. Idempotent."""
        async with self.session_factory() as db:
            await self._ensure(db, session_id)
            await db.commit()

    @failure_policy("store.write", error=PersistenceError)
    async def append_message(
        self,
        session_id: str,
        user_text: str,
        reply: GeneratedReply | str,
    ) -> Message:
        """Persist one user turn and its generated reply."""
        if isinstance(reply, str):
            raw_response = reply
            reply = GeneratedReply.model_validate_json(reply)
        else:
            raw_response = reply.model_dump_json()

        user_tokens = self.count_tokens(user_text)
        assistant_tokens = self.count_tokens(reply.response)
        logger.info(
            "Token counts - User: %d, Assistant: %d, Total: %d",
            user_tokens, assistant_tokens, user_tokens + assistant_tokens,
        )

        message = Message(
            message_id=reply.message_id,
            conversation_id=session_id,
            user_text=user_text,
            raw_response=raw_response,
            model_used=reply.model,
            user_tokens=user_tokens,
            assistant_tokens=assistant_tokens,
            total_tokens=user_tokens + assistant_tokens,
        )
        async with self.session_factory() as db:
            await self._ensure(db, session_id)
            db.add(message)
            await db.commit()

        logger.info("Message saved - ID: %s, Model: %s", message.message_id, message.model_used)
        return message

    @failure_policy("store.read", error=PersistenceError)
    async def _load_from_store(self, session_id: str) -> list[Turn]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(Message.user_text, Message.raw_response)
                .where(Message.conversation_id == session_id)
                .order_by(Message.created_at.asc(), Message.id.asc())
            )
            rows = result.all()

        logger.info("Found %d messages in conversation %s", len(rows), session_id)
        history: list[Turn] = []
        for user_text, raw_response in rows:
            history.append(Turn(role="user", content=user_text))
            history.append(Turn(role="assistant", content=assistant_text_from_raw(raw_response)))
        return history

    async def load_history(self, session_id: str) -> list[Turn]:
        """Load the conversation as alternating user/assistant turns."""
        cached = await self.cache.read(session_id)
        if cached is not None:
            return cached

        history = await self._load_from_store(session_id)
        if history:
            await self.cache.write(session_id, history)
        return history

    @failure_policy("store.read", error=PersistenceError)
    async def get_stats(self, session_id: str) -> ConversationStats:
        """Get conversation statistics for a session."""
        async with self.session_factory() as db:
            conversation = await db.get(Conversation, session_id)
            row = (
                await db.execute(
                    select(
                        func.count(Message.id),
                        func.coalesce(func.sum(Message.total_tokens), 0),
                        func.max(Message.created_at),
                    ).where(Message.conversation_id == session_id)
                )
            ).one()

        message_count, token_count, last_message_at = row
        return ConversationStats(
            session_id=session_id,
            message_count=message_count,
            token_count=token_count,
            created_at=conversation.created_at if conversation else None,
            updated_at=last_message_at,
        )


# Singleton instance for convenience
_repository: ConversationRepository | None = None


def get_repository() -> ConversationRepository:
    """Get or create repository instance."""
    global _repository
    if _repository is None:
        _repository = ConversationRepository()
    return _repository
