"""Pydantic schemas for data validation."""
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class Turn(BaseModel):
    """One role-tagged unit of conversation."""

    role: Literal["user", "assistant", "system"]
    content: str


class Generation(BaseModel):
    """What the generation backend reports for one call."""

    text: str
    model: str
    created_at: datetime | None = None
    generation_id: str | None = None


class GeneratedReply(BaseModel):
    """Structured reply payload; stored verbatim as ``messages.raw_response``."""

    response: str
    model: str
    created_at: str
    message_id: str


class RateLimitDecision(BaseModel):
    """Outcome of an admission check."""

    allowed: bool
    session_remaining: int
    session_reset_at: datetime
    global_remaining: int
    global_reset_at: datetime
    reason: str | None = None


class ConversationStats(BaseModel):
    """Conversation statistics."""

    session_id: str
    message_count: int
    token_count: int
    created_at: datetime | None
    updated_at: datetime | None


class ChatRequest(BaseModel):
    """Chat turn submitted by a client."""

    model_config = ConfigDict(populate_by_name=True)

    message: str = Field(min_length=1)
    session_id: str = Field(alias="sessionId", min_length=1)


class ChatResponse(BaseModel):
    """Reply returned to the client."""

    model_config = ConfigDict(populate_by_name=True)

    reply: GeneratedReply
    session_id: str = Field(serialization_alias="sessionId")


class ChatTurnResult(BaseModel):
    """Everything the outer layer needs after a successful turn."""

    reply: GeneratedReply
    session_id: str
    rate_limit: RateLimitDecision
