"""
Upstream LLM invocation.

Two backends share one small interface, `generate(...)`:
  - GeminiBackend: google-genai async client (default provider)
  - OpenAICompatibleBackend: httpx POST to an OpenAI-style /chat/completions

UpstreamInvoker wraps whichever backend is configured with a deadline,
token accounting and best-effort structured parsing. Any failure leaves this
module as an UpstreamError carrying an ErrorClassification.
"""
import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Optional

import httpx
from google import genai
from google.genai import types

from .config import PROVIDER_OPENAI, GatewaySettings
from .errors import UpstreamError, UpstreamHTTPError, classify_error
from .json_utils import parse_structured

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GenerationResult:
    """One completed generation. Shared by reference between cache and responses."""
    text: str
    structured: Optional[dict]
    tokens_used: int
    model: str


class GeminiBackend:
    """Gemini via the google-genai SDK."""

    name = "gemini"

    def __init__(self, api_key: str, timeout_seconds: float, client=None):
        if client is None:
            # SDK timeout is in milliseconds
            client = genai.Client(
                api_key=api_key,
                http_options=types.HttpOptions(timeout=int(timeout_seconds * 1000)),
            )
        self.client = client

    async def generate(
        self,
        model: str,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int,
        temperature: float,
        structured: bool = False,
    ) -> GenerationResult:
        config = types.GenerateContentConfig(
            system_instruction=system_prompt or None,
            temperature=temperature,
            max_output_tokens=max_tokens,
            response_mime_type="application/json" if structured else None,
        )
        response = await self.client.aio.models.generate_content(
            model=model,
            contents=user_prompt,
            config=config,
        )

        usage = getattr(response, "usage_metadata", None)
        tokens = getattr(usage, "total_token_count", None) or 0
        return GenerationResult(
            text=response.text or "",
            structured=None,
            tokens_used=int(tokens),
            model=getattr(response, "model_version", None) or model,
        )

    async def aclose(self) -> None:
        return None


class OpenAICompatibleBackend:
    """Any server speaking the OpenAI chat completions protocol."""

    name = "openai"

    def __init__(
        self,
        api_key: str,
        base_url: str,
        timeout_seconds: float,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout_seconds,
            headers={"Authorization": f"Bearer {api_key}"},
            transport=transport,
        )

    async def generate(
        self,
        model: str,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int,
        temperature: float,
        structured: bool = False,
    ) -> GenerationResult:
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": user_prompt})

        body = {
            "model": model,
            "messages": messages,
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        if structured:
            body["response_format"] = {"type": "json_object"}

        response = await self.client.post("/chat/completions", json=body)
        if response.status_code >= 400:
            raise self._http_error(response)

        try:
            data = response.json()
            text = data["choices"][0]["message"].get("content") or ""
        except (ValueError, KeyError, IndexError, TypeError, AttributeError) as e:
            raise UpstreamHTTPError(502, "malformed_response", f"Unexpected completion payload: {e}") from e

        usage = data.get("usage") or {}
        return GenerationResult(
            text=text,
            structured=None,
            tokens_used=int(usage.get("total_tokens") or 0),
            model=data.get("model") or model,
        )

    @staticmethod
    def _http_error(response: httpx.Response) -> UpstreamHTTPError:
        error_code = None
        message = response.text[:200] or response.reason_phrase
        try:
            error = response.json().get("error")
        except (ValueError, AttributeError):
            error = None
        if isinstance(error, dict):
            error_code = error.get("code") or error.get("type")
            message = error.get("message") or message
        logger.error(f"Upstream HTTP error: {response.status_code} {error_code or ''}".rstrip())
        return UpstreamHTTPError(response.status_code, error_code, message)

    async def aclose(self) -> None:
        await self.client.aclose()


def build_backend(settings: GatewaySettings):
    if settings.provider == PROVIDER_OPENAI:
        return OpenAICompatibleBackend(
            api_key=settings.api_key,
            base_url=settings.base_url,
            timeout_seconds=settings.request_timeout_seconds,
        )
    return GeminiBackend(
        api_key=settings.api_key,
        timeout_seconds=settings.request_timeout_seconds,
    )


class UpstreamInvoker:
    """Deadline-bounded calls to the configured backend."""

    def __init__(self, backend, timeout_seconds: float = 45.0):
        self.backend = backend
        self.timeout_seconds = timeout_seconds

    async def invoke(
        self,
        model: str,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int,
        temperature: float,
        structured: bool = False,
    ) -> GenerationResult:
        """Run one generation.

        Raises:
            UpstreamError: the call failed or exceeded its deadline
        """
        start = time.time()
        try:
            raw = await asyncio.wait_for(
                self.backend.generate(
                    model=model,
                    system_prompt=system_prompt,
                    user_prompt=user_prompt,
                    max_tokens=max_tokens,
                    temperature=temperature,
                    structured=structured,
                ),
                timeout=self.timeout_seconds,
            )
        except Exception as e:
            classification = classify_error(e)
            logger.error(
                f"Upstream call to {model} failed after {time.time() - start:.1f}s: "
                f"{classification.kind} ({e.__class__.__name__})"
            )
            raise UpstreamError(classification) from e

        result = GenerationResult(
            text=raw.text,
            structured=parse_structured(raw.text) if structured else None,
            tokens_used=max(0, int(raw.tokens_used or 0)),
            model=raw.model or model,
        )
        logger.info(
            f"Upstream {model} returned {len(result.text)} chars, "
            f"{result.tokens_used} tokens in {time.time() - start:.1f}s"
        )
        return result

    async def health_check(self, model: str) -> GenerationResult:
        """Minimal 1-token call used by the status endpoint."""
        return await self.invoke(
            model=model,
            system_prompt="",
            user_prompt="Test",
            max_tokens=1,
            temperature=0.0,
        )

    async def aclose(self) -> None:
        await self.backend.aclose()
