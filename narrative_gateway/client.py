"""
Caller-side client for the Narrative Gateway.

NarrativeClient always hands back usable text. Whenever the gateway cannot
produce a narrative (transport error, non-2xx status, `fallback: true` body,
malformed body) the client logs why and runs the offline fallback generator
on the same case bundle instead.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Optional, Union

import httpx

from . import fallback
from .case_notes import CaseBundle, EndpointKind

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:8000"
DEFAULT_TIMEOUT = 60.0

# Response field holding the narrative text, per endpoint
TEXT_FIELDS = {
    EndpointKind.SUMMARIZE_REPORT: "summary",
    EndpointKind.BEHAVIORAL_INSIGHTS: "insights",
    EndpointKind.ENHANCE_REPORT: "enhancedContent",
    EndpointKind.SUMMARIZE_NOTE: "summary",
    EndpointKind.QUERY: "answer",
}

# Response field holding a JSON result, rendered to text on the way out
STRUCTURED_FIELDS = {
    EndpointKind.ANALYZE_NOTE: "analysis",
    EndpointKind.CATEGORIZE_INCIDENT: "categorization",
    EndpointKind.ANALYZE_INCIDENT: "analysis",
    EndpointKind.ANALYZE_BEHAVIOR: "analysis",
    EndpointKind.TREATMENT_RECOMMENDATIONS: "treatmentPlan",
}


class GatewayUnavailable(Exception):
    """Internal signal: this attempt produced no usable narrative."""

    def __init__(self, reason: str, retryable: bool = False):
        super().__init__(reason)
        self.retryable = retryable


class NarrativeClient:
    """HTTP client with local fallback and optional bounded retries."""

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT,
        token: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        max_retries: int = 0,
        backoff_seconds: float = 1.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Args:
            base_url: Gateway root URL
            timeout: Transport timeout; the client adds no deadline of its own
            token: Bearer credential sent as Authorization
            transport: Custom httpx transport (tests use ASGITransport/MockTransport)
            max_retries: Extra attempts for failures the gateway marks retryable
            backoff_seconds: Base delay, doubled after each retry
            sleep: Injected by tests to skip real waiting
        """
        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self.client = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            headers=headers,
            transport=transport,
        )
        self.max_retries = max(0, max_retries)
        self.backoff_seconds = backoff_seconds
        self._sleep = sleep

    async def __aenter__(self) -> "NarrativeClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        await self.client.aclose()

    async def _post(self, path: str, body: dict) -> dict:
        try:
            response = await self.client.post(path, json=body)
        except httpx.HTTPError as e:
            raise GatewayUnavailable(f"transport error: {e.__class__.__name__}", retryable=True) from e

        try:
            data = response.json()
        except ValueError:
            data = None

        if not isinstance(data, dict):
            raise GatewayUnavailable(
                f"malformed response ({response.status_code})",
                retryable=response.status_code >= 500,
            )
        if response.status_code >= 400 or data.get("fallback"):
            code = data.get("code") or response.status_code
            raise GatewayUnavailable(
                f"{code}: {data.get('error', 'AI service error')}",
                retryable=bool(data.get("retryable")),
            )
        return data

    async def _post_with_retries(self, path: str, body: dict) -> dict:
        attempt = 0
        while True:
            try:
                return await self._post(path, body)
            except GatewayUnavailable as e:
                if not e.retryable or attempt >= self.max_retries:
                    raise
                delay = self.backoff_seconds * (2 ** attempt)
                attempt += 1
                logger.info(f"Retrying {path} in {delay:.1f}s (attempt {attempt}/{self.max_retries}): {e}")
                await self._sleep(delay)

    async def request_narrative(self, kind: Union[EndpointKind, str], bundle: CaseBundle) -> str:
        """Narrative text for `bundle`. Never raises."""
        kind = EndpointKind(kind)
        try:
            data = await self._post_with_retries(f"/api/ai/{kind.value}", bundle.to_request_body(kind))
            if kind in STRUCTURED_FIELDS:
                result = data.get(STRUCTURED_FIELDS[kind])
                text = fallback.render_structured(kind, result) if isinstance(result, dict) and result else ""
            else:
                text = data.get(TEXT_FIELDS[kind])
            if not isinstance(text, str) or not text.strip():
                raise GatewayUnavailable("response had no narrative text")
        except Exception as e:
            logger.warning(f"AI {kind.value} unavailable, using local fallback: {e}")
            return fallback.generate(kind, bundle)

        return fallback.strip_markdown(text)

    async def analyze_note(self, note_text: str, youth: Optional[dict] = None) -> dict:
        """Structured note analysis, falling back to local keyword analysis."""
        body = {"noteContent": note_text, "youth": youth or {}}
        try:
            data = await self._post_with_retries(f"/api/ai/{EndpointKind.ANALYZE_NOTE.value}", body)
            analysis = data.get("analysis")
            if isinstance(analysis, dict) and analysis:
                return analysis
            raise GatewayUnavailable("empty analysis")
        except Exception as e:
            logger.warning(f"AI note analysis unavailable, using keyword analysis: {e}")
            name = (youth or {}).get("firstName")
            result = fallback.analyze_note(note_text, name)
            result["fallback"] = True
            return result

    async def check_status(self) -> dict:
        """Gateway status; degrades to {available: False, error} instead of raising."""
        try:
            response = await self.client.get("/api/ai/status")
        except httpx.HTTPError as e:
            logger.warning(f"AI status check failed: {e.__class__.__name__}")
            return {"available": False, "error": "Network error"}

        if response.status_code != 200:
            return {"available": False, "error": "AI service unreachable"}
        try:
            data = response.json()
        except ValueError:
            return {"available": False, "error": "Malformed status response"}
        if not isinstance(data, dict):
            return {"available": False, "error": "Malformed status response"}
        return data
