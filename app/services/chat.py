"""Chat turn service: admission, reply, response bundle."""
import logging

from app.errors import InputError, RateLimitedError, SupportChatError
from app.logging_config import log_context
from app.models.schemas import ChatTurnResult
from app.services.orchestrator import ReplyOrchestrator
from app.services.rate_limiter import RateLimiter, retry_after_seconds

logger = logging.getLogger(__name__)


class ChatService:
    """Entry point the HTTP layer calls for each inbound chat turn."""

    def __init__(
        self,
        rate_limiter: RateLimiter | None = None,
        orchestrator: ReplyOrchestrator | None = None,
    ):
        """Initialize with optional dependencies."""
        self.rate_limiter = rate_limiter or RateLimiter()
        self.orchestrator = orchestrator or ReplyOrchestrator()

    async def handle_chat_turn(self, session_id: str, message: str) -> ChatTurnResult:
        """
        Admit and answer one chat turn.

        Raises an error from the taxonomy in ``app.errors`` on any failure;
        RateLimitedError carries the decision for response headers.
        """
        if not session_id or not session_id.strip():
            raise InputError("Session ID is required")
        if not message or not message.strip():
            raise InputError("Message must not be empty")

        with log_context(session=session_id):
            logger.info("Chat turn received, message length: %d", len(message))

            decision = await self.rate_limiter.admit(session_id)
            if not decision.allowed:
                retry_after = retry_after_seconds(decision)
                logger.warning("Rate limit exceeded: %s", decision.reason)
                raise RateLimitedError(decision=decision, retry_after=retry_after)

            try:
                reply = await self.orchestrator.reply(session_id, message)
            except SupportChatError as exc:
                exc.decision = decision
                raise
            logger.info("Chat turn completed, model: %s", reply.model)
        return ChatTurnResult(reply=reply, session_id=session_id, rate_limit=decision)


# Convenience functions
_chat_service: ChatService | None = None


def get_chat_service() -> ChatService:
    """Get or create chat service instance."""
    global _chat_service
    if _chat_service is None:
        _chat_service = ChatService()
    return _chat_service
