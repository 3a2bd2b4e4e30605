"""FastAPI application factory and lifecycle."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.chat import router as chat_router
from app.api.chat import support_chat_error_handler
from app.api.health import router as health_router
from app.api.sessions import router as sessions_router
from app.config import settings
from app.db.database import engine, init_db
from app.db.redis_store import redis_store
from app.errors import InputError, SupportChatError
from app.logging_config import setup_logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()

    await init_db()

    try:
        await redis_store.connect()
    except Exception:
        # Limiter and cache fail open without Redis; keep serving
        logger.warning("Starting without Redis; rate limiting and history cache are disabled")

    yield

    await redis_store.disconnect()
    await engine.dispose()
    logger.info("Shutdown complete")


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    error = InputError("Validation error")
    return JSONResponse(
        status_code=error.status_code,
        content={"error": {**error.to_dict(), "issues": jsonable_encoder(exc.errors())}},
    )


def create_api() -> FastAPI:
    """Create FastAPI application."""
    app = FastAPI(
        title="Support Chat API",
        description="Conversational support assistant relay",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type"],
        expose_headers=["Retry-After", "X-RateLimit-Session-Remaining", "X-RateLimit-Session-Reset",
                        "X-RateLimit-Global-Remaining", "X-RateLimit-Global-Reset"],
    )

    app.add_exception_handler(SupportChatError, support_chat_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)

    app.include_router(health_router)
    app.include_router(chat_router)
    app.include_router(sessions_router)

    return app


app = create_api()
