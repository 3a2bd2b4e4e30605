"""Session REST API endpoints."""
from fastapi import APIRouter

from app.db.repository import get_repository

router = APIRouter(prefix="/api/sessions", tags=["sessions"])


@router.get("/{session_id}/stats")
async def get_session_stats(session_id: str) -> dict:
    """Get conversation statistics for a session."""
    stats = await get_repository().get_stats(session_id)
    return stats.model_dump(mode="json")


@router.get("/{session_id}/messages")
async def get_messages(session_id: str) -> dict:
    """Get conversation turns for a session."""
    turns = await get_repository().load_history(session_id)
    return {
        "session_id": session_id,
        "messages": [turn.model_dump() for turn in turns],
        "count": len(turns),
    }
