import os

from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.types import ASGIApp, Message, Receive, Scope, Send

_NO_STORE_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate, max-age=0",
    "Pragma": "no-cache",
    "Expires": "0",
}


def allowed_origins() -> list[str]:
    """Comma-separated ALLOWED_ORIGINS; every origin when unset."""
    raw = os.getenv("ALLOWED_ORIGINS", "")
    origins = [o.strip() for o in raw.split(",") if o.strip()]
    return origins or ["*"]


class NoStoreMiddleware(BaseHTTPMiddleware):
    """Draft reports carry patient details; never let a browser cache them."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers.update(_NO_STORE_HEADERS)
        return response


class ErrorCORSHeaders:
    """Raw ASGI wrapper that adds CORS headers to responses missing them.

    Bare 500s produced inside BaseHTTPMiddleware bypass CORSMiddleware, and
    the editor front end then sees an opaque network error instead of the
    JSON error body.
    """

    def __init__(self, app: ASGIApp, origins: list[str]) -> None:
        self.app = app
        self.origins = origins

    def _matching_origin(self, scope: Scope) -> bytes | None:
        if scope["type"] != "http":
            return None
        origin = dict(scope.get("headers", [])).get(b"origin")
        if origin is None:
            return None
        if "*" in self.origins or origin.decode("latin-1") in self.origins:
            return origin
        return None

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        origin = self._matching_origin(scope)
        if origin is None:
            return await self.app(scope, receive, send)

        async def send_with_origin(message: Message) -> None:
            if message["type"] == "http.response.start":
                headers = list(message.get("headers", []))
                if all(name != b"access-control-allow-origin" for name, _ in headers):
                    headers += [
                        (b"access-control-allow-origin", origin),
                        (b"access-control-allow-credentials", b"true"),
                    ]
                    message["headers"] = headers
            await send(message)

        await self.app(scope, receive, send_with_origin)


def add_cors_middleware(app) -> None:
    origins = allowed_origins()
    app.add_middleware(NoStoreMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )
    # Outermost, so error responses get headers too.
    app.add_middleware(ErrorCORSHeaders, origins=origins)
