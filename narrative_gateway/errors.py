"""
Error taxonomy for the Narrative Gateway.

Every failure the gateway reports is an ErrorClassification. Upstream errors
are mapped once, at the invoker boundary, by classify_error(); callers only
ever see the classification, never the provider's raw exception.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

import httpx
from google.genai import errors as genai_errors

logger = logging.getLogger(__name__)

INSUFFICIENT_QUOTA = "insufficient_quota"
INVALID_API_KEY = "invalid_api_key"
RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
REQUEST_TIMEOUT = "request_timeout"
AI_REQUEST_FAILED = "ai_request_failed"
UNKNOWN_ERROR = "unknown_error"
DAILY_LIMIT_REACHED = "daily_limit_reached"
CLIENT_DAILY_LIMIT_REACHED = "client_daily_limit_reached"
AI_NOT_CONFIGURED = "ai_not_configured"
INVALID_REQUEST = "invalid_request"


@dataclass(frozen=True)
class ErrorClassification:
    kind: str
    http_status: int
    message: str
    retryable: bool

    def to_body(self, request_id: Optional[str] = None) -> dict:
        return {
            "error": self.message,
            "code": self.kind,
            "retryable": self.retryable,
            "fallback": True,
            "requestId": request_id,
        }


# kind -> (HTTP status, retryable, caller-facing message)
TAXONOMY = {
    INSUFFICIENT_QUOTA: (402, False, "AI provider quota exceeded"),
    INVALID_API_KEY: (401, False, "Invalid AI provider API key"),
    RATE_LIMIT_EXCEEDED: (429, True, "AI provider rate limit exceeded"),
    REQUEST_TIMEOUT: (408, True, "AI request timed out"),
    AI_REQUEST_FAILED: (500, True, "AI service temporarily unavailable"),
    UNKNOWN_ERROR: (500, True, "Unexpected AI service error"),
    DAILY_LIMIT_REACHED: (429, False, "Daily AI usage limit reached"),
    CLIENT_DAILY_LIMIT_REACHED: (429, False, "Daily AI usage limit reached for this client"),
    AI_NOT_CONFIGURED: (503, False, "AI service not configured"),
}


def classification_for(kind: str, message: Optional[str] = None) -> ErrorClassification:
    status, retryable, default_message = TAXONOMY[kind]
    return ErrorClassification(
        kind=kind,
        http_status=status,
        message=message or default_message,
        retryable=retryable,
    )


def quota_denial(reason: str) -> ErrorClassification:
    return classification_for(reason)


def not_configured() -> ErrorClassification:
    return classification_for(AI_NOT_CONFIGURED)


class UpstreamHTTPError(Exception):
    """Non-2xx reply from an OpenAI-compatible endpoint."""

    def __init__(self, status_code: int, error_code: Optional[str], message: str):
        super().__init__(f"{status_code} {error_code or ''} {message}".strip())
        self.status_code = status_code
        self.error_code = error_code
        self.message = message


class UpstreamError(Exception):
    """Raised by the upstream invoker; carries the classification only."""

    def __init__(self, classification: ErrorClassification):
        super().__init__(classification.message)
        self.classification = classification


def _error_metadata(exc: BaseException) -> tuple[Optional[int], str, str]:
    """Pull (status, code, message) out of any provider or transport error."""
    status: Optional[int] = None
    code = ""
    message = str(exc) or exc.__class__.__name__

    if isinstance(exc, UpstreamHTTPError):
        status, code, message = exc.status_code, exc.error_code or "", exc.message or message
    elif isinstance(exc, genai_errors.APIError):
        status = exc.code if isinstance(exc.code, int) else None
        code = exc.status or ""
        message = exc.message or message
    elif isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        try:
            error = exc.response.json().get("error") or {}
            if isinstance(error, dict):
                code = error.get("code") or error.get("type") or ""
                message = error.get("message") or message
        except (ValueError, AttributeError):
            pass
    else:
        raw_status = getattr(exc, "status_code", None) or getattr(exc, "status", None)
        if isinstance(raw_status, int):
            status = raw_status
        raw_code = getattr(exc, "code", None)
        if isinstance(raw_code, str):
            code = raw_code
        elif isinstance(raw_code, int) and status is None:
            status = raw_code

    return status, str(code), str(message)


def _is_timeout(exc: BaseException, status: Optional[int], message: str) -> bool:
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError, httpx.TimeoutException)):
        return True
    if status in (408, 504):
        return True
    lowered = message.lower()
    return "timed out" in lowered or "deadline exceeded" in lowered


def classify_error(exc: BaseException) -> ErrorClassification:
    """Map an upstream failure to exactly one taxonomy member. Never raises."""
    try:
        status, code, message = _error_metadata(exc)
    except Exception:
        logger.exception("Could not read upstream error metadata")
        status, code, message = None, "", exc.__class__.__name__
    lowered_code = code.lower()
    lowered_message = message.lower()

    if _is_timeout(exc, status, message):
        kind = REQUEST_TIMEOUT
    elif (
        lowered_code == INSUFFICIENT_QUOTA
        or status == 402
        or INSUFFICIENT_QUOTA in lowered_message
        or "billing" in lowered_message
    ):
        kind = INSUFFICIENT_QUOTA
    elif (
        lowered_code in (INVALID_API_KEY, "unauthenticated", "permission_denied")
        or status in (401, 403)
        or "api key not valid" in lowered_message
        or "api_key_invalid" in lowered_message
        or "invalid api key" in lowered_message
    ):
        kind = INVALID_API_KEY
    elif (
        status == 429
        or lowered_code in (RATE_LIMIT_EXCEEDED, "resource_exhausted")
        or "rate limit" in lowered_message
    ):
        kind = RATE_LIMIT_EXCEEDED
    elif isinstance(exc, (UpstreamHTTPError, genai_errors.APIError, httpx.HTTPError)):
        kind = AI_REQUEST_FAILED
    else:
        kind = UNKNOWN_ERROR

    classification = classification_for(kind)
    logger.debug(f"Classified {exc.__class__.__name__} (status={status}, code={code!r}) as {kind}")
    return classification
