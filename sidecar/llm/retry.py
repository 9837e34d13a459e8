"""
Bounded retry for model calls.

Only transient failures are retried (rate limits, 5xx, dropped connections,
timeouts). Anything else propagates on the first attempt so validation and
auth errors surface immediately.
"""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Any, Awaitable, Callable, Mapping, Optional

import httpx

from llm.client import LLMTransientError

logger = logging.getLogger(__name__)


class LLMRetryError(Exception):
    """Raised when every attempt of a retried call has failed."""

    def __init__(self, message: str, last_error: Optional[BaseException] = None):
        super().__init__(message)
        self.last_error = last_error


def backoff_seconds(attempt: int, *, base: float = 0.75, cap: float = 10.0) -> float:
    """Exponential backoff with jitter."""
    exp = base * (2 ** max(0, int(attempt)))
    jitter = random.uniform(0.0, base)
    return min(cap, exp + jitter)


def parse_retry_after_seconds(headers: Optional[Mapping[str, str]]) -> Optional[float]:
    if not headers:
        return None
    value = headers.get("retry-after") or headers.get("Retry-After")
    if not value:
        return None
    try:
        return max(0.0, float(value.strip()))
    except ValueError:
        return None


def _status_code(exc: BaseException) -> Optional[int]:
    status = getattr(exc, "status_code", None)
    if status is None:
        response = getattr(exc, "response", None)
        status = getattr(response, "status_code", None)
    return status if isinstance(status, int) else None


def is_transient(exc: BaseException) -> bool:
    if isinstance(exc, (LLMTransientError, httpx.TransportError, asyncio.TimeoutError)):
        return True
    status = _status_code(exc)
    return status is not None and (status == 429 or status >= 500)


def _retry_delay(exc: BaseException, attempt: int) -> float:
    retry_after = getattr(exc, "retry_after", None)
    if retry_after is None:
        response = getattr(exc, "response", None)
        retry_after = parse_retry_after_seconds(getattr(response, "headers", None))
    return retry_after if retry_after is not None else backoff_seconds(attempt)


async def with_retry(
    fn: Callable[..., Awaitable[Any]],
    *args: Any,
    max_attempts: int = 2,
    timeout_seconds: Optional[float] = None,
    **kwargs: Any,
) -> Any:
    """Await ``fn(*args, **kwargs)``, retrying transient failures.

    Raises LLMRetryError once ``max_attempts`` transient failures have
    occurred; non-transient errors are re-raised unchanged.
    """
    last_error: Optional[BaseException] = None
    for attempt in range(max(1, max_attempts)):
        try:
            if timeout_seconds:
                return await asyncio.wait_for(fn(*args, **kwargs), timeout=timeout_seconds)
            return await fn(*args, **kwargs)
        except Exception as exc:
            if not is_transient(exc):
                raise
            last_error = exc
            logger.warning(
                "Transient model error (attempt %d/%d): %s",
                attempt + 1, max_attempts, type(exc).__name__,
            )
            if attempt + 1 < max_attempts:
                await asyncio.sleep(_retry_delay(exc, attempt))

    raise LLMRetryError(
        f"Model call failed after {max_attempts} attempts: {last_error}",
        last_error=last_error,
    )
