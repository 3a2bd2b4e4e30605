"""Error taxonomy and per-operation failure policies.

Every error that reaches a caller carries a stable machine-readable ``code``,
a human-readable ``message`` and the HTTP ``status_code`` the API layer maps
it to. Backend diagnostics are never forwarded verbatim.
"""

from __future__ import annotations

import enum
import functools
import logging
from typing import Any, Callable

logger = logging.getLogger(__name__)


class SupportChatError(Exception):
    """Base error for the reply pipeline."""

    code = "internal_error"
    status_code = 500
    default_message = "An unexpected error occurred."
    # Admission decision of the turn that failed, for rate-limit headers
    decision = None

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message}


class InputError(SupportChatError):
    """Empty or too-long message, or missing session id."""

    code = "input_error"
    status_code = 400
    default_message = "Invalid chat request."


class RateLimitedError(SupportChatError):
    """Admission denied by the session or global window."""

    code = "rate_limited"
    status_code = 429
    default_message = "Rate limit exceeded. Please try again later."

    def __init__(self, message: str | None = None, decision: Any = None, retry_after: int = 1):
        super().__init__(message)
        self.decision = decision
        self.retry_after = retry_after

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["retryAfter"] = self.retry_after
        if self.decision is not None and self.decision.reason:
            data["reason"] = self.decision.reason
        return data


class BackendError(SupportChatError):
    """Base for failures of the generation backend."""

    code = "backend_error"
    status_code = 502
    default_message = "The AI service encountered an error. Please try again."


class BackendTimeoutError(BackendError):
    code = "backend_timeout"
    status_code = 504
    default_message = "The AI service is taking too long to respond. Please try again."


class BackendAuthError(BackendError):
    code = "backend_auth_error"
    status_code = 401
    default_message = "There was an authentication error with the AI service."


class BackendQuotaError(BackendError):
    code = "backend_quota_error"
    status_code = 503
    default_message = "The AI service is temporarily unavailable."


class BackendRateLimitedError(BackendError):
    code = "backend_rate_limited"
    status_code = 429
    default_message = "The service is experiencing high demand. Please try again in a moment."


class BackendGenericError(BackendError):
    pass


class PersistenceError(SupportChatError):
    """The reply was generated but could not be recorded."""

    code = "persistence_error"
    status_code = 500
    default_message = "The reply could not be saved. Please try again."


class CacheError(SupportChatError):
    """Never surfaced; cache failures degrade to a miss or a skipped write."""

    code = "cache_error"
    default_message = "History cache unavailable."


# ── Backend error classification ───────────────────────────────────────────

def classify_backend_error(error: BaseException) -> BackendError:
    """Translate any backend exception into one of the backend error kinds.

    SDK exception types are checked first; other providers are matched by
    keywords in the exception text. The returned error never carries the
    original text.
    """
    if isinstance(error, BackendError):
        return error

    import openai

    if isinstance(error, openai.APITimeoutError):
        return BackendTimeoutError()
    if isinstance(error, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return BackendAuthError()
    if isinstance(error, openai.RateLimitError):
        if getattr(error, "code", None) == "insufficient_quota" or "insufficient_quota" in str(error):
            return BackendQuotaError()
        return BackendRateLimitedError()

    error_str = str(error).lower()
    error_type_name = type(error).__name__.lower()

    if "insufficient_quota" in error_str or "quota" in error_type_name:
        return BackendQuotaError()
    if "ratelimit" in error_type_name or "rate limit" in error_str or "rate_limit" in error_str:
        return BackendRateLimitedError()
    if "timeout" in error_type_name or "timed out" in error_str or "timeout" in error_str:
        return BackendTimeoutError()
    if any(
        keyword in error_str
        for keyword in ("incorrect api key", "invalid_api_key", "invalid api key", "unauthorized", "authentication")
    ):
        return BackendAuthError()
    return BackendGenericError()


# ── Failure policy table ───────────────────────────────────────────────────

class FailurePolicy(str, enum.Enum):
    FAIL_OPEN = "fail_open"  # log and continue with a fallback value
    FAIL_CLOSED = "fail_closed"  # propagate to the caller


FAILURE_POLICIES: dict[str, FailurePolicy] = {
    "cache.read": FailurePolicy.FAIL_OPEN,
    "cache.write": FailurePolicy.FAIL_OPEN,
    "cache.append": FailurePolicy.FAIL_OPEN,
    "cache.ping": FailurePolicy.FAIL_OPEN,
    "rate_limit.count": FailurePolicy.FAIL_OPEN,
    "backend.generate": FailurePolicy.FAIL_CLOSED,
    "store.read": FailurePolicy.FAIL_CLOSED,
    "store.write": FailurePolicy.FAIL_CLOSED,
}


def failure_policy(
    operation: str,
    fallback: Any = None,
    error: type[SupportChatError] | None = None,
) -> Callable:
    """Decorate an async operation with the policy registered for *operation*.

    Fail-open operations log the exception and return *fallback* (called
    with the operation's arguments when it is callable). Fail-closed
    operations re-raise; when *error* is given, exceptions outside the
    taxonomy are wrapped in it.
    """

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            try:
                return await func(*args, **kwargs)
            except Exception as exc:
                if FAILURE_POLICIES[operation] is FailurePolicy.FAIL_OPEN:
                    logger.error("%s failed, continuing: %s", operation, exc)
                    return fallback(*args, **kwargs) if callable(fallback) else fallback
                if error is not None and not isinstance(exc, SupportChatError):
                    logger.error("%s failed: %s", operation, exc)
                    raise error() from exc
                raise

        return wrapper

    return decorator
