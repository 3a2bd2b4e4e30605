"""Chat REST API endpoint."""
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from app.errors import RateLimitedError, SupportChatError
from app.models.schemas import ChatRequest, ChatResponse, RateLimitDecision
from app.services.chat import ChatService, get_chat_service

router = APIRouter(prefix="/api/ai", tags=["chat"])


def rate_limit_headers(decision: RateLimitDecision) -> dict[str, str]:
    """Response headers describing both rate-limit windows."""
    return {
        "X-RateLimit-Session-Remaining": str(decision.session_remaining),
        "X-RateLimit-Session-Reset": decision.session_reset_at.isoformat(),
        "X-RateLimit-Global-Remaining": str(decision.global_remaining),
        "X-RateLimit-Global-Reset": decision.global_reset_at.isoformat(),
    }


async def support_chat_error_handler(request: Request, exc: SupportChatError) -> JSONResponse:
    """Map the error taxonomy onto HTTP status codes."""
    headers = rate_limit_headers(exc.decision) if exc.decision is not None else {}
    if isinstance(exc, RateLimitedError):
        headers["Retry-After"] = str(exc.retry_after)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.to_dict()}, headers=headers)


@router.post("/chat/message")
async def post_chat_message(
    body: ChatRequest,
    service: ChatService = Depends(get_chat_service),
) -> JSONResponse:
    """Answer one chat turn for a session."""
    result = await service.handle_chat_turn(body.session_id, body.message)
    response = ChatResponse(reply=result.reply, session_id=result.session_id)
    return JSONResponse(
        content=response.model_dump(mode="json", by_alias=True),
        headers=rate_limit_headers(result.rate_limit),
    )
