"""Health check endpoints."""
import logging

from fastapi import APIRouter
from sqlalchemy import text

from app.db.database import SessionLocal
from app.services.history_cache import HistoryCache

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


async def _database_healthy() -> bool:
    try:
        async with SessionLocal() as db:
            await db.execute(text("SELECT 1"))
        return True
    except Exception:
        logger.error("Database health check failed", exc_info=True)
        return False


@router.get("/health")
async def health_check() -> dict:
    """Health check including Redis and database status."""
    redis_ok = await HistoryCache().is_healthy()
    database_ok = await _database_healthy()
    return {
        "ok": True,
        "services": {
            "redis": "healthy" if redis_ok else "unhealthy",
            "database": "healthy" if database_ok else "unhealthy",
        },
    }
