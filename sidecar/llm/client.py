"""
LLM client abstraction supporting Gemini (primary), Claude, OpenAI and
Bedrock.

Dictation audio is only accepted by Gemini (inline data) and by OpenAI
audio-capable chat models (wav/mp3 input_audio). Text-only calls work on
every provider and are used for JSON retries and section regeneration.

Gemini JSON mode:
  The request asks for ``responseMimeType: application/json`` unless the
  endpoint has already rejected it. Whether the endpoint accepts the option
  is remembered process-wide in JSON_MODE_CAPABILITY; a wrong guess only
  costs one extra round trip.
"""

from __future__ import annotations

import base64
import logging
import os
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

import httpx

logger = logging.getLogger(__name__)

GEMINI_BASE_URL = os.getenv(
    "GEMINI_BASE_URL", "https://generativelanguage.googleapis.com/v1beta/models"
).rstrip("/")
LLM_TIMEOUT_S = float(os.getenv("LLM_TIMEOUT_S", "120"))
DEBUG_MODEL_LOG = os.getenv("DEBUG_MODEL_LOG", "").lower() == "true"

# OpenAI input_audio only takes these container formats.
_OPENAI_AUDIO_FORMATS = {
    "audio/wav": "wav",
    "audio/x-wav": "wav",
    "audio/wave": "wav",
    "audio/mpeg": "mp3",
    "audio/mp3": "mp3",
}


class LLMProvider(str, Enum):
    GEMINI = "gemini"
    CLAUDE = "claude"
    OPENAI = "openai"
    BEDROCK = "bedrock"


class LLMTransientError(Exception):
    """Rate limit or server-side failure worth retrying."""

    def __init__(self, message: str, status_code: Optional[int] = None, retry_after: Optional[float] = None):
        super().__init__(message)
        self.status_code = status_code
        self.retry_after = retry_after


class _JsonModeCapability:
    """Best-effort memory of whether Gemini accepts ``responseMimeType``.

    None means unknown; the next request tries the option.
    """

    def __init__(self) -> None:
        self._supported: Optional[bool] = None

    def get(self) -> Optional[bool]:
        return self._supported

    def set(self, supported: bool) -> None:
        self._supported = supported

    def reset(self) -> None:
        self._supported = None


JSON_MODE_CAPABILITY = _JsonModeCapability()


@dataclass
class AudioPayload:
    data: bytes
    mime_type: str
    filename: str = ""

    @property
    def b64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")


@dataclass
class LLMResponse:
    """Raw response from an LLM API call."""

    provider: LLMProvider
    raw_content: str
    model: str
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def text_content(self) -> str:
        """Return the plain text content of the response."""
        return self.raw_content


class LLMClient:
    """Unified LLM client. Instantiated per-request with settings."""

    def __init__(
        self,
        provider: LLMProvider,
        api_key: str,
        model: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.provider = provider
        self.api_key = api_key
        self.model = model or self._default_model()
        self._http_client = http_client

    def _default_model(self) -> str:
        if self.provider == LLMProvider.GEMINI:
            return "gemini-2.5-flash"
        if self.provider in (LLMProvider.CLAUDE, LLMProvider.BEDROCK):
            return "claude-sonnet-4-6"
        return "gpt-4o-audio-preview"

    @property
    def supports_audio(self) -> bool:
        return self.provider in (LLMProvider.GEMINI, LLMProvider.OPENAI)

    async def call(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int = 8192,
        temperature: float = 0.2,
        json_mode: bool = False,
    ) -> LLMResponse:
        """Send a prompt and return a plain text response."""
        if self.provider == LLMProvider.GEMINI:
            parts = [{"text": user_prompt}]
            return await self._call_gemini(system_prompt, parts, max_tokens, temperature, json_mode)
        elif self.provider == LLMProvider.CLAUDE:
            return await self._call_claude_text(system_prompt, user_prompt, max_tokens, temperature)
        elif self.provider == LLMProvider.BEDROCK:
            return await self._call_bedrock_text(system_prompt, user_prompt, max_tokens, temperature)
        else:
            return await self._call_openai(
                system_prompt, [{"type": "text", "text": user_prompt}], max_tokens, temperature, json_mode,
            )

    async def call_with_audio(
        self,
        system_prompt: str,
        user_prompt: str,
        audio: AudioPayload,
        max_tokens: int = 8192,
        temperature: float = 0.1,
        json_mode: bool = True,
    ) -> LLMResponse:
        """Send an audio clip + text prompt and return a plain text response."""
        if self.provider == LLMProvider.GEMINI:
            parts = [
                {"text": user_prompt},
                {"inline_data": {"mime_type": audio.mime_type, "data": audio.b64}},
            ]
            return await self._call_gemini(system_prompt, parts, max_tokens, temperature, json_mode)
        if self.provider == LLMProvider.OPENAI:
            fmt = _OPENAI_AUDIO_FORMATS.get(audio.mime_type)
            if fmt is None:
                raise ValueError(f"OpenAI audio input supports wav or mp3, got {audio.mime_type}")
            content = [
                {"type": "text", "text": user_prompt},
                {"type": "input_audio", "input_audio": {"data": audio.b64, "format": fmt}},
            ]
            # Audio chat models do not accept response_format.
            return await self._call_openai(system_prompt, content, max_tokens, temperature, False)
        raise ValueError(f"Provider '{self.provider.value}' does not accept audio input")

    # ── Gemini ──────────────────────────────────────────────────────

    def _gemini_payload(
        self,
        system_prompt: str,
        parts: list[dict[str, Any]],
        max_tokens: int,
        temperature: float,
        with_mime_type: bool,
    ) -> dict[str, Any]:
        generation_config: dict[str, Any] = {
            "temperature": temperature,
            "maxOutputTokens": max_tokens,
        }
        if with_mime_type:
            generation_config["responseMimeType"] = "application/json"
        return {
            "systemInstruction": {"parts": [{"text": system_prompt}]},
            "contents": [{"role": "user", "parts": parts}],
            "generationConfig": generation_config,
        }

    async def _post_gemini(self, payload: dict[str, Any]) -> httpx.Response:
        url = f"{GEMINI_BASE_URL}/{self.model}:generateContent"
        params = {"key": self.api_key}
        if self._http_client is not None:
            return await self._http_client.post(url, params=params, json=payload)
        async with httpx.AsyncClient(timeout=httpx.Timeout(LLM_TIMEOUT_S, connect=10.0)) as client:
            return await client.post(url, params=params, json=payload)

    @staticmethod
    def _rejects_mime_type(response: httpx.Response) -> bool:
        body = response.text or ""
        return response.status_code == 400 and (
            "responseMimeType" in body or "response_mime_type" in body
        )

    async def _call_gemini(
        self,
        system_prompt: str,
        parts: list[dict[str, Any]],
        max_tokens: int,
        temperature: float,
        json_mode: bool,
    ) -> LLMResponse:
        with_mime_type = json_mode and JSON_MODE_CAPABILITY.get() is not False
        payload = self._gemini_payload(system_prompt, parts, max_tokens, temperature, with_mime_type)
        response = await self._post_gemini(payload)

        if with_mime_type and self._rejects_mime_type(response):
            logger.warning("Gemini rejected responseMimeType; retrying without JSON mode")
            JSON_MODE_CAPABILITY.set(False)
            payload = self._gemini_payload(system_prompt, parts, max_tokens, temperature, False)
            response = await self._post_gemini(payload)
        elif with_mime_type and response.status_code < 400:
            JSON_MODE_CAPABILITY.set(True)

        if response.status_code == 429 or response.status_code >= 500:
            raise LLMTransientError(
                f"Gemini returned HTTP {response.status_code}",
                status_code=response.status_code,
                retry_after=_retry_after(response),
            )
        if response.status_code >= 400:
            logger.error("Gemini API HTTP error status=%s", response.status_code)
            raise RuntimeError(f"Gemini request failed with HTTP {response.status_code}")

        data = response.json()
        candidates = data.get("candidates") or []
        if not candidates:
            raise RuntimeError("No candidates returned from Gemini API")
        content_parts = (candidates[0].get("content") or {}).get("parts") or []
        raw_text = "".join(p.get("text", "") for p in content_parts if isinstance(p, dict))
        if DEBUG_MODEL_LOG:
            logger.info("Gemini raw response: %s", raw_text)

        usage = data.get("usageMetadata") or {}
        return LLMResponse(
            provider=LLMProvider.GEMINI,
            raw_content=raw_text,
            model=self.model,
            input_tokens=usage.get("promptTokenCount", 0),
            output_tokens=usage.get("candidatesTokenCount", 0),
        )

    # ── SDK providers ───────────────────────────────────────────────

    async def _call_claude_text(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int,
        temperature: float,
    ) -> LLMResponse:
        import anthropic

        message = await anthropic.AsyncAnthropic(api_key=self.api_key).messages.create(
            model=self.model,
            system=system_prompt,
            messages=[{"role": "user", "content": user_prompt}],
            max_tokens=max_tokens,
            temperature=temperature,
        )
        return LLMResponse(
            provider=LLMProvider.CLAUDE,
            raw_content="".join(b.text for b in message.content if b.type == "text"),
            model=message.model,
            input_tokens=message.usage.input_tokens,
            output_tokens=message.usage.output_tokens,
        )

    async def _call_openai(
        self,
        system_prompt: str,
        content: list[dict[str, Any]],
        max_tokens: int,
        temperature: float,
        json_mode: bool,
    ) -> LLMResponse:
        import openai

        request: dict[str, Any] = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": content},
            ],
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        if json_mode:
            request["response_format"] = {"type": "json_object"}
        completion = await openai.AsyncOpenAI(api_key=self.api_key).chat.completions.create(**request)
        usage = completion.usage
        return LLMResponse(
            provider=LLMProvider.OPENAI,
            raw_content=completion.choices[0].message.content or "",
            model=completion.model,
            input_tokens=usage.prompt_tokens if usage else 0,
            output_tokens=usage.completion_tokens if usage else 0,
        )

    async def _call_bedrock_text(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int,
        temperature: float,
    ) -> LLMResponse:
        """Claude through Bedrock's Converse API.

        ``api_key`` holds the AWS region; boto3 resolves credentials from
        its default chain (environment, profile or instance role).
        """
        import asyncio

        import boto3

        region = self.api_key if isinstance(self.api_key, str) and self.api_key else "us-east-1"
        model_id = bedrock_model_id(self.model, region)
        runtime = boto3.client("bedrock-runtime", region_name=region)

        def _converse() -> dict[str, Any]:
            return runtime.converse(
                modelId=model_id,
                system=[{"text": system_prompt}],
                messages=[{"role": "user", "content": [{"text": user_prompt}]}],
                inferenceConfig={"maxTokens": max_tokens, "temperature": temperature},
            )

        result = await asyncio.get_running_loop().run_in_executor(None, _converse)
        blocks = result["output"]["message"]["content"]
        usage = result.get("usage", {})
        return LLMResponse(
            provider=LLMProvider.BEDROCK,
            raw_content="".join(b.get("text", "") for b in blocks),
            model=model_id,
            input_tokens=usage.get("inputTokens", 0),
            output_tokens=usage.get("outputTokens", 0),
        )


def bedrock_model_id(model: str, region: str) -> str:
    """Qualify an Anthropic model name as a Bedrock cross-region profile."""
    if "anthropic." in model:
        return model
    geography = "apac" if region.startswith("ap-") else region.split("-", 1)[0]
    return f"{geography}.anthropic.{model}"


def _retry_after(response: httpx.Response) -> Optional[float]:
    from llm.retry import parse_retry_after_seconds

    return parse_retry_after_seconds(response.headers)
