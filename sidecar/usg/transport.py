"""
Model transport: the one call shape the report pipeline depends on.

    async transport(system_prompt, user_prompt, audio_or_none) -> raw text

The pipeline never talks to an SDK directly, so tests can pass a plain
async function and production wires an LLMClient through with_retry.
"""

from __future__ import annotations

from typing import Awaitable, Callable, Optional

from llm.client import AudioPayload, LLMClient
from llm.retry import with_retry

ModelTransport = Callable[[str, str, Optional[AudioPayload]], Awaitable[str]]


def llm_client_transport(
    client: LLMClient,
    max_attempts: int = 2,
    max_tokens: int = 8192,
    temperature: float = 0.2,
) -> ModelTransport:
    async def transport(system_prompt: str, user_prompt: str, audio: Optional[AudioPayload] = None) -> str:
        if audio is not None:
            response = await with_retry(
                client.call_with_audio,
                system_prompt=system_prompt,
                user_prompt=user_prompt,
                audio=audio,
                max_tokens=max_tokens,
                temperature=temperature,
                max_attempts=max_attempts,
            )
        else:
            response = await with_retry(
                client.call,
                system_prompt=system_prompt,
                user_prompt=user_prompt,
                max_tokens=max_tokens,
                temperature=temperature,
                json_mode=True,
                max_attempts=max_attempts,
            )
        return response.text_content

    return transport
