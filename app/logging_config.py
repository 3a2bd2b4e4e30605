"""Logging for the support chat API.

Fields bound to the chat turn being handled (the session id, then the model
once a reply is generated) are appended to every line logged while the turn
is in flight:

    2026-10-18 14:30:01 INFO    app.db.repository: Message saved - ID: g1 [session=s1 model=gpt-4.1]

Bind fields with ``log_context``; modules keep using
``logging.getLogger(__name__)``.
"""

from __future__ import annotations

import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator

LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s%(turn_context)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_HANDLER_NAME = "support_chat"
_QUIET_LOGGERS = ("httpx", "httpcore", "openai", "aiosqlite", "sqlalchemy.engine")

# Treated as immutable; log_context always installs a fresh dict
_turn_fields: ContextVar[dict[str, str]] = ContextVar("turn_fields", default={})


@contextmanager
def log_context(**fields: object) -> Iterator[None]:
    """Bind fields to log lines emitted inside the block. ``None`` values are skipped."""
    bound = {**_turn_fields.get(), **{k: str(v) for k, v in fields.items() if v is not None}}
    token = _turn_fields.set(bound)
    try:
        yield
    finally:
        _turn_fields.reset(token)


def current_log_context() -> dict[str, str]:
    return dict(_turn_fields.get())


class TurnContextFilter(logging.Filter):
    """Renders the bound turn fields into ``record.turn_context``."""

    def filter(self, record: logging.LogRecord) -> bool:
        fields = _turn_fields.get()
        if fields:
            record.turn_context = " [" + " ".join(f"{k}={v}" for k, v in fields.items()) + "]"
        else:
            record.turn_context = ""
        return True


def setup_logging(level: str | None = None) -> None:
    """Install the stderr handler on the root logger. Idempotent.

    Noisy client libraries are capped at WARNING and uvicorn's loggers are
    routed through the root handler so server lines share one format.
    """
    from app.config import settings

    root = logging.getLogger()
    root.setLevel(getattr(logging, (level or settings.LOG_LEVEL).upper(), logging.INFO))

    if any(handler.name == _HANDLER_NAME for handler in root.handlers):
        return

    handler = logging.StreamHandler(sys.stderr)
    handler.name = _HANDLER_NAME
    handler.addFilter(TurnContextFilter())
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    root.addHandler(handler)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    for name in ("uvicorn", "uvicorn.access", "uvicorn.error"):
        uvicorn_logger = logging.getLogger(name)
        uvicorn_logger.handlers.clear()
        uvicorn_logger.propagate = True
