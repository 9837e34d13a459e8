"""Rate limiting for report generation using slowapi.

Each generation call can trigger several model requests (extraction, a JSON
retry, up to three section rewrites), so /generate endpoints are limited per
client IP. Set RATE_LIMIT_ENABLED=false to turn the limiter off.
"""

import os

from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.requests import Request
from starlette.responses import JSONResponse

RATE_LIMIT_ENABLED = os.getenv("RATE_LIMIT_ENABLED", "true").lower() == "true"
GENERATE_RATE_LIMIT = os.getenv("GENERATE_RATE_LIMIT", "10/hour")


def _client_key(request: Request) -> str:
    """First X-Forwarded-For hop when behind a proxy, else the peer address."""
    forwarded = request.headers.get("x-forwarded-for", "")
    first = forwarded.split(",")[0].strip()
    if first:
        return first
    return request.headers.get("x-real-ip") or get_remote_address(request)


limiter = Limiter(key_func=_client_key, enabled=RATE_LIMIT_ENABLED)


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Custom handler for rate limit exceeded errors."""
    return JSONResponse(
        status_code=429,
        content={
            "detail": "Rate limit exceeded. Try again later.",
            "retry_after": exc.detail,
        },
    )
