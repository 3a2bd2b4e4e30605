"""LangChain generation backend."""
import logging
from datetime import datetime, timezone

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from app.config import settings
from app.models.schemas import Generation, Turn

logger = logging.getLogger(__name__)


def _turn_to_langchain(turn: Turn):
    """Convert a Turn to a LangChain message object."""
    if turn.role == "system":
        return SystemMessage(content=turn.content)
    elif turn.role == "assistant":
        return AIMessage(content=turn.content)
    else:
        return HumanMessage(content=turn.content)


def _response_text(response: AIMessage) -> str:
    content = response.content
    if isinstance(content, str):
        return content
    # Some providers return a list of content blocks
    return "".join(
        block.get("text", "") if isinstance(block, dict) else str(block)
        for block in content
    )


def _created_at(metadata: dict) -> datetime:
    created = metadata.get("created")
    if isinstance(created, (int, float)):
        return datetime.fromtimestamp(created, tz=timezone.utc)
    return datetime.now(timezone.utc)


def create_llm(
    model: str | None = None,
    temperature: float | None = None,
    **kwargs,
) -> BaseChatModel:
    """
    Create a LangChain chat model based on config.

    Args:
        model: Override model name (defaults to settings.LLM_MODEL)
        temperature: Override temperature (defaults to settings.LLM_TEMPERATURE)
        **kwargs: Additional kwargs passed to the LLM constructor
    """
    model = model or settings.LLM_MODEL
    temperature = temperature if temperature is not None else settings.LLM_TEMPERATURE
    kwargs.setdefault("max_tokens", settings.LLM_MAX_TOKENS)
    # The orchestrator owns the timeout; the SDK must not retry behind it
    kwargs.setdefault("max_retries", 0)
    provider = settings.LLM_PROVIDER.lower()

    if provider == "openai":
        from langchain_openai import ChatOpenAI

        return ChatOpenAI(
            model=model,
            temperature=temperature,
            api_key=settings.LLM_API_KEY,
            **kwargs,
        )

    elif provider == "anthropic":
        from langchain_anthropic import ChatAnthropic

        return ChatAnthropic(
            model=model,
            temperature=temperature,
            api_key=settings.LLM_API_KEY,
            **kwargs,
        )

    elif provider == "openai_compatible":
        from langchain_openai import ChatOpenAI

        return ChatOpenAI(
            model=model,
            temperature=temperature,
            api_key=settings.LLM_API_KEY or "not-needed",
            base_url=settings.LLM_BASE_URL,
            **kwargs,
        )

    else:
        raise ValueError(f"Unknown LLM provider: {provider}")


class LLMService:
    """Generation backend wrapping a LangChain chat model."""

    def __init__(self, llm: BaseChatModel | None = None):
        self._llm = llm

    @property
    def llm(self) -> BaseChatModel:
        # Built lazily so importing the app never needs provider credentials
        if self._llm is None:
            self._llm = create_llm()
        return self._llm

    async def generate(self, turns: list[Turn]) -> Generation:
        """Send the ordered turns and return the generated turn with its metadata."""
        lc_messages = [_turn_to_langchain(t) for t in turns]
        response = await self.llm.ainvoke(lc_messages)
        metadata = response.response_metadata or {}
        model = metadata.get("model_name") or metadata.get("model") or settings.LLM_MODEL
        generation_id = metadata.get("id") or response.id
        logger.info("Generation received from %s (id=%s)", model, generation_id)
        return Generation(
            text=_response_text(response),
            model=model,
            created_at=_created_at(metadata),
            generation_id=generation_id,
        )
