"""Tests for the Gemini HTTP client, retry policy and model transport."""

import asyncio
import json

import httpx
import pytest

from llm import retry
from llm.client import (
    JSON_MODE_CAPABILITY,
    AudioPayload,
    LLMClient,
    LLMProvider,
    LLMResponse,
    LLMTransientError,
    bedrock_model_id,
)
from llm.retry import (
    LLMRetryError,
    backoff_seconds,
    is_transient,
    parse_retry_after_seconds,
    with_retry,
)
from usg.transport import llm_client_transport

MOCK_GEMINI_BODY = {
    "candidates": [{"content": {"parts": [{"text": '{"observations": '}, {"text": '"ok"}'}]}}],
    "usageMetadata": {"promptTokenCount": 120, "candidatesTokenCount": 8},
}


@pytest.fixture(autouse=True)
def reset_json_mode():
    JSON_MODE_CAPABILITY.reset()
    yield
    JSON_MODE_CAPABILITY.reset()


def _gemini_client(handler) -> tuple[LLMClient, list[httpx.Request]]:
    requests: list[httpx.Request] = []

    def _record(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return handler(request, len(requests))

    http_client = httpx.AsyncClient(transport=httpx.MockTransport(_record))
    return LLMClient(LLMProvider.GEMINI, api_key="test-key", http_client=http_client), requests


def _payload(request: httpx.Request) -> dict:
    return json.loads(request.content)


class TestGeminiClient:
    def test_text_call(self):
        client, requests = _gemini_client(lambda request, n: httpx.Response(200, json=MOCK_GEMINI_BODY))
        response = asyncio.run(client.call("SYSTEM", "USER", json_mode=True))

        assert response.text_content == '{"observations": "ok"}'
        assert response.input_tokens == 120
        assert response.output_tokens == 8
        request = requests[0]
        assert request.url.path.endswith("/gemini-2.5-flash:generateContent")
        assert request.url.params["key"] == "test-key"
        payload = _payload(request)
        assert payload["systemInstruction"] == {"parts": [{"text": "SYSTEM"}]}
        assert payload["contents"][0]["parts"] == [{"text": "USER"}]
        assert payload["generationConfig"]["responseMimeType"] == "application/json"
        assert JSON_MODE_CAPABILITY.get() is True

    def test_plain_call_has_no_mime_type(self):
        client, requests = _gemini_client(lambda request, n: httpx.Response(200, json=MOCK_GEMINI_BODY))
        asyncio.run(client.call("SYSTEM", "USER"))
        assert "responseMimeType" not in _payload(requests[0])["generationConfig"]

    def test_audio_inline_data(self):
        client, requests = _gemini_client(lambda request, n: httpx.Response(200, json=MOCK_GEMINI_BODY))
        audio = AudioPayload(data=b"abc", mime_type="audio/webm")
        asyncio.run(client.call_with_audio("SYSTEM", "USER", audio))
        parts = _payload(requests[0])["contents"][0]["parts"]
        assert parts[1] == {"inline_data": {"mime_type": "audio/webm", "data": "YWJj"}}

    def test_json_mode_rejected_falls_back(self):
        def handler(request, n):
            if n == 1:
                return httpx.Response(400, text='Invalid JSON payload received. Unknown name "responseMimeType"')
            return httpx.Response(200, json=MOCK_GEMINI_BODY)

        client, requests = _gemini_client(handler)
        response = asyncio.run(client.call("SYSTEM", "USER", json_mode=True))

        assert response.text_content == '{"observations": "ok"}'
        assert len(requests) == 2
        assert "responseMimeType" not in _payload(requests[1])["generationConfig"]
        assert JSON_MODE_CAPABILITY.get() is False

        asyncio.run(client.call("SYSTEM", "USER", json_mode=True))
        assert len(requests) == 3
        assert "responseMimeType" not in _payload(requests[2])["generationConfig"]

    def test_server_error_is_transient(self):
        client, _ = _gemini_client(lambda request, n: httpx.Response(503, headers={"Retry-After": "2"}))
        with pytest.raises(LLMTransientError) as exc_info:
            asyncio.run(client.call("SYSTEM", "USER"))
        assert exc_info.value.status_code == 503
        assert exc_info.value.retry_after == 2.0

    def test_client_error_is_not_transient(self):
        client, _ = _gemini_client(lambda request, n: httpx.Response(403, text="forbidden"))
        with pytest.raises(RuntimeError):
            asyncio.run(client.call("SYSTEM", "USER"))

    def test_no_candidates(self):
        client, _ = _gemini_client(lambda request, n: httpx.Response(200, json={"candidates": []}))
        with pytest.raises(RuntimeError, match="No candidates"):
            asyncio.run(client.call("SYSTEM", "USER"))


class TestAudioSupport:
    def test_openai_rejects_unsupported_container(self):
        client = LLMClient(LLMProvider.OPENAI, api_key="k")
        with pytest.raises(ValueError):
            asyncio.run(client.call_with_audio("S", "U", AudioPayload(b"x", "audio/ogg")))

    def test_claude_has_no_audio(self):
        client = LLMClient(LLMProvider.CLAUDE, api_key="k")
        assert not client.supports_audio
        with pytest.raises(ValueError):
            asyncio.run(client.call_with_audio("S", "U", AudioPayload(b"x", "audio/wav")))

    def test_bedrock_model_id(self):
        assert bedrock_model_id("claude-sonnet-4-6", "us-west-2") == "us.anthropic.claude-sonnet-4-6"
        assert bedrock_model_id("claude-sonnet-4-6", "eu-central-1") == "eu.anthropic.claude-sonnet-4-6"
        assert bedrock_model_id("claude-sonnet-4-6", "ap-south-1") == "apac.anthropic.claude-sonnet-4-6"
        assert bedrock_model_id("eu.anthropic.claude-x", "us-east-1") == "eu.anthropic.claude-x"

    def test_default_models(self):
        assert LLMClient(LLMProvider.GEMINI, api_key="k").model == "gemini-2.5-flash"
        assert LLMClient(LLMProvider.GEMINI, api_key="k", model="gemini-2.5-pro").model == "gemini-2.5-pro"


class _StatusError(Exception):
    def __init__(self, status_code):
        super().__init__(f"HTTP {status_code}")
        self.status_code = status_code


class TestRetry:
    def test_transient_classification(self):
        assert is_transient(LLMTransientError("rate limited", status_code=429))
        assert is_transient(_StatusError(429))
        assert is_transient(_StatusError(502))
        assert is_transient(httpx.ConnectError("refused"))
        assert not is_transient(_StatusError(400))
        assert not is_transient(ValueError("bad"))

    def test_retry_after_header(self):
        assert parse_retry_after_seconds({"retry-after": "3"}) == 3.0
        assert parse_retry_after_seconds({"Retry-After": "soon"}) is None
        assert parse_retry_after_seconds(None) is None

    def test_backoff_bounds(self):
        assert 0.75 <= backoff_seconds(0) <= 1.5
        assert backoff_seconds(10) == 10.0

    def test_recovers_after_transient_error(self):
        attempts = []

        async def flaky(value):
            attempts.append(value)
            if len(attempts) == 1:
                raise LLMTransientError("busy", status_code=503, retry_after=0)
            return value

        assert asyncio.run(with_retry(flaky, "done", max_attempts=2)) == "done"
        assert len(attempts) == 2

    def test_non_transient_not_retried(self):
        attempts = []

        async def broken():
            attempts.append(1)
            raise ValueError("bad request")

        with pytest.raises(ValueError):
            asyncio.run(with_retry(broken, max_attempts=3))
        assert len(attempts) == 1

    def test_exhaustion(self, monkeypatch):
        monkeypatch.setattr(retry, "backoff_seconds", lambda attempt: 0)

        async def always_busy():
            raise _StatusError(500)

        with pytest.raises(LLMRetryError) as exc_info:
            asyncio.run(with_retry(always_busy, max_attempts=2))
        assert isinstance(exc_info.value.last_error, _StatusError)


class _FakeClient:
    def __init__(self):
        self.calls = []

    async def call(self, **kwargs):
        self.calls.append(("call", kwargs))
        return LLMResponse(LLMProvider.GEMINI, "text-reply", "m")

    async def call_with_audio(self, **kwargs):
        self.calls.append(("call_with_audio", kwargs))
        return LLMResponse(LLMProvider.GEMINI, "audio-reply", "m")


class TestClientTransport:
    def test_routes_by_audio(self):
        fake = _FakeClient()
        transport = llm_client_transport(fake)
        audio = AudioPayload(b"x", "audio/wav")

        assert asyncio.run(transport("S", "U", None)) == "text-reply"
        assert asyncio.run(transport("S", "U", audio)) == "audio-reply"

        name, kwargs = fake.calls[0]
        assert name == "call"
        assert kwargs["json_mode"] is True
        name, kwargs = fake.calls[1]
        assert name == "call_with_audio"
        assert kwargs["audio"] is audio
