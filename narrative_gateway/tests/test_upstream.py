"""Tests for the upstream backends and the deadline-bounded invoker."""
import asyncio
import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from fakes import FakeBackend, make_settings

from narrative_gateway.config import PROVIDER_OPENAI
from narrative_gateway.errors import (
    AI_REQUEST_FAILED,
    INVALID_API_KEY,
    REQUEST_TIMEOUT,
    UNKNOWN_ERROR,
    UpstreamError,
    UpstreamHTTPError,
)
from narrative_gateway.upstream import (
    GeminiBackend,
    OpenAICompatibleBackend,
    UpstreamInvoker,
    build_backend,
)


def invoke(invoker, **kwargs):
    params = {
        "model": "gemini-2.5-flash",
        "system_prompt": "system",
        "user_prompt": "user",
        "max_tokens": 100,
        "temperature": 0.2,
    }
    params.update(kwargs)
    return asyncio.run(invoker.invoke(**params))


class TestUpstreamInvoker:

    def test_success(self):
        backend = FakeBackend(text="A narrative.", tokens=42)
        result = invoke(UpstreamInvoker(backend))

        assert result.text == "A narrative."
        assert result.tokens_used == 42
        assert result.model == "gemini-2.5-flash"
        assert result.structured is None
        assert backend.calls[0]["max_tokens"] == 100
        assert backend.calls[0]["temperature"] == 0.2

    def test_structured_output_parsed(self):
        backend = FakeBackend(text='```json\n{"sentiment": "positive"}\n```')
        result = invoke(UpstreamInvoker(backend), structured=True)

        assert result.structured == {"sentiment": "positive"}
        assert backend.calls[0]["structured"] is True

    def test_unparseable_structured_output(self):
        result = invoke(UpstreamInvoker(FakeBackend(text="not json")), structured=True)
        assert result.structured == {}

    def test_negative_token_count_clamped(self):
        result = invoke(UpstreamInvoker(FakeBackend(tokens=-5)))
        assert result.tokens_used == 0

    def test_deadline(self):
        invoker = UpstreamInvoker(FakeBackend(delay=1.0), timeout_seconds=0.01)
        with pytest.raises(UpstreamError) as exc_info:
            invoke(invoker)
        assert exc_info.value.classification.kind == REQUEST_TIMEOUT
        assert exc_info.value.classification.retryable is True

    def test_backend_error_classified(self):
        error = UpstreamHTTPError(401, "invalid_api_key", "Incorrect API key provided")
        with pytest.raises(UpstreamError) as exc_info:
            invoke(UpstreamInvoker(FakeBackend(error=error)))
        assert exc_info.value.classification.kind == INVALID_API_KEY
        assert exc_info.value.__cause__ is error

    def test_unexpected_error_classified(self):
        with pytest.raises(UpstreamError) as exc_info:
            invoke(UpstreamInvoker(FakeBackend(error=KeyError("choices"))))
        assert exc_info.value.classification.kind == UNKNOWN_ERROR

    def test_health_check_is_one_token(self):
        backend = FakeBackend(text="ok", tokens=1)
        result = asyncio.run(UpstreamInvoker(backend).health_check("gemini-2.5-flash"))

        assert result.text == "ok"
        assert backend.calls[0]["max_tokens"] == 1
        assert backend.calls[0]["user_prompt"] == "Test"

    def test_aclose_closes_backend(self):
        backend = FakeBackend()
        asyncio.run(UpstreamInvoker(backend).aclose())
        assert backend.closed


def fake_genai_client(response):
    client = MagicMock()
    client.aio.models.generate_content = AsyncMock(return_value=response)
    return client


class TestGeminiBackend:

    def test_generate(self):
        response = SimpleNamespace(
            text="Jordan made progress.",
            usage_metadata=SimpleNamespace(total_token_count=87),
            model_version="gemini-2.5-flash-001",
        )
        client = fake_genai_client(response)
        backend = GeminiBackend(api_key="k", timeout_seconds=45, client=client)

        result = asyncio.run(backend.generate("gemini-2.5-flash", "system", "user", 500, 0.3))

        assert result.text == "Jordan made progress."
        assert result.tokens_used == 87
        assert result.model == "gemini-2.5-flash-001"

        kwargs = client.aio.models.generate_content.call_args.kwargs
        assert kwargs["model"] == "gemini-2.5-flash"
        assert kwargs["contents"] == "user"
        assert kwargs["config"].system_instruction == "system"
        assert kwargs["config"].max_output_tokens == 500
        assert kwargs["config"].temperature == 0.3
        assert kwargs["config"].response_mime_type is None

    def test_structured_requests_json(self):
        response = SimpleNamespace(text="{}", usage_metadata=None, model_version=None)
        client = fake_genai_client(response)
        backend = GeminiBackend(api_key="k", timeout_seconds=45, client=client)

        result = asyncio.run(backend.generate("gemini-2.5-pro", "", "user", 800, 0.1, structured=True))

        config = client.aio.models.generate_content.call_args.kwargs["config"]
        assert config.response_mime_type == "application/json"
        assert config.system_instruction is None
        assert result.tokens_used == 0
        assert result.model == "gemini-2.5-pro"

    def test_empty_text(self):
        response = SimpleNamespace(text=None, usage_metadata=None, model_version=None)
        backend = GeminiBackend(api_key="k", timeout_seconds=45, client=fake_genai_client(response))
        assert asyncio.run(backend.generate("m", "s", "u", 10, 0.0)).text == ""


def openai_backend(handler):
    return OpenAICompatibleBackend(
        api_key="sk-test",
        base_url="https://api.example.com/v1/",
        timeout_seconds=5,
        transport=httpx.MockTransport(handler),
    )


def completion(content, total_tokens=64, model="gpt-4o-mini-2024-07-18"):
    return {
        "model": model,
        "choices": [{"message": {"role": "assistant", "content": content}}],
        "usage": {"total_tokens": total_tokens},
    }


class TestOpenAICompatibleBackend:

    def test_generate(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=completion("Insightful text."))

        backend = openai_backend(handler)
        result = asyncio.run(backend.generate("gpt-4o-mini", "system", "user", 800, 0.2))
        asyncio.run(backend.aclose())

        assert seen["url"] == "https://api.example.com/v1/chat/completions"
        assert seen["auth"] == "Bearer sk-test"
        assert seen["body"]["messages"] == [
            {"role": "system", "content": "system"},
            {"role": "user", "content": "user"},
        ]
        assert seen["body"]["max_tokens"] == 800
        assert "response_format" not in seen["body"]
        assert result.text == "Insightful text."
        assert result.tokens_used == 64
        assert result.model == "gpt-4o-mini-2024-07-18"

    def test_structured_sets_response_format(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=completion('{"sentiment": "neutral"}'))

        asyncio.run(openai_backend(handler).generate("gpt-4o", "", "user", 800, 0.1, structured=True))

        assert seen["body"]["response_format"] == {"type": "json_object"}
        assert seen["body"]["messages"] == [{"role": "user", "content": "user"}]

    def test_error_body_parsed(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(401, json={"error": {"code": "invalid_api_key", "message": "Incorrect API key"}})

        with pytest.raises(UpstreamHTTPError) as exc_info:
            asyncio.run(openai_backend(handler).generate("gpt-4o", "s", "u", 10, 0.0))
        assert exc_info.value.status_code == 401
        assert exc_info.value.error_code == "invalid_api_key"
        assert exc_info.value.message == "Incorrect API key"

    def test_malformed_completion(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"unexpected": True})

        invoker = UpstreamInvoker(openai_backend(handler))
        with pytest.raises(UpstreamError) as exc_info:
            invoke(invoker, model="gpt-4o")
        assert exc_info.value.classification.kind == AI_REQUEST_FAILED

    def test_invalid_key_through_invoker(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(401, json={"error": {"code": "invalid_api_key", "message": "Incorrect API key"}})

        with pytest.raises(UpstreamError) as exc_info:
            invoke(UpstreamInvoker(openai_backend(handler)), model="gpt-4o")
        assert exc_info.value.classification.kind == INVALID_API_KEY


class TestBuildBackend:

    def test_openai(self):
        backend = build_backend(make_settings(provider=PROVIDER_OPENAI))
        assert isinstance(backend, OpenAICompatibleBackend)
        asyncio.run(backend.aclose())

    def test_gemini_default(self):
        assert isinstance(build_backend(make_settings()), GeminiBackend)
