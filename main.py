#!/usr/bin/env python3
"""
Support chat relay - Entry point.

Starts the FastAPI server that fronts the support assistant.
"""
import uvicorn

from app.config import settings


def main() -> None:
    """Main entry point."""
    uvicorn.run(
        "app.main:app",
        host=settings.API_HOST,
        port=settings.API_PORT,
        log_level=settings.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()
