import logging
import os
import re
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded

from api.middleware import add_cors_middleware
from api.rate_limit import RATE_LIMIT_ENABLED, limiter, rate_limit_exceeded_handler
from api.routes import LLM_PROVIDER, router
from server import find_free_port, start_server
from usg.templates import list_templates

_logger = logging.getLogger(__name__)

_SENTRY_DSN = os.getenv("SENTRY_DSN", "")

# Dictation often names the patient and exam date; those values can surface
# in exception text and log breadcrumbs.
_PHI_PATTERNS = [
    re.compile(r"\b\d{1,2}[/.-]\d{1,2}[/.-]\d{2,4}\b"),                   # dates
    re.compile(r"\b\d{4}-\d{2}-\d{2}\b"),                                # ISO dates
    re.compile(r"\b\d{10}\b"),                                           # phone
    re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"),   # email
    re.compile(r"(?i)\"?(?:patient_name|patientName|name)\"?\s*[:=]\s*\"?[^\n,;\"]{2,40}"),
    re.compile(r"(?i)\"?(?:exam_date|examDate)\"?\s*[:=]\s*\"?[^\n,;\"]{1,30}"),
]


def scrub_phi(text: str) -> str:
    for pattern in _PHI_PATTERNS:
        text = pattern.sub("[REDACTED]", text)
    return text


def _scrub_entries(entries: list, key: str) -> None:
    for entry in entries:
        if isinstance(entry.get(key), str):
            entry[key] = scrub_phi(entry[key])


def scrub_event(event, hint):
    """Sentry before_send hook: redact patient details, keep the stack."""
    _scrub_entries(event.get("exception", {}).get("values", []), "value")
    _scrub_entries(event.get("breadcrumbs", {}).get("values", []), "message")
    if isinstance(event.get("message"), str):
        event["message"] = scrub_phi(event["message"])
    # Request bodies carry raw model output and audio; never forward them.
    event.get("request", {}).pop("data", None)
    return event


def _init_sentry() -> None:
    if not _SENTRY_DSN:
        return
    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration

    sentry_sdk.init(
        dsn=_SENTRY_DSN,
        environment=os.getenv("SENTRY_ENVIRONMENT", "development"),
        integrations=[FastApiIntegration()],
        before_send=scrub_event,
        send_default_pii=False,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    _logger.info(
        "Sidecar ready: provider=%s, %d templates, rate limiting %s",
        LLM_PROVIDER,
        len(list_templates()),
        "on" if RATE_LIMIT_ENABLED else "off",
    )
    yield


def create_app() -> FastAPI:
    _init_sentry()
    app = FastAPI(title="USG Report Sidecar", version="0.3.0", lifespan=lifespan)
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    add_cors_middleware(app)

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        _logger.exception("Unhandled %s on %s %s", type(exc).__name__, request.method, request.url.path)
        return JSONResponse(status_code=500, content={"detail": "Internal server error."})

    app.include_router(router)
    return app


if __name__ == "__main__":
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    start_server(create_app(), int(os.getenv("PORT", "0")) or find_free_port())
