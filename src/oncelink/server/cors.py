"""Fixed cross-origin headers on every response."""

from __future__ import annotations

from typing import TYPE_CHECKING

from starlette.datastructures import Headers, MutableHeaders
from starlette.responses import Response

if TYPE_CHECKING:
    from starlette.types import ASGIApp, Message, Receive, Scope, Send

ALLOW_METHODS = "GET,PUT,POST,OPTIONS"
ALLOW_HEADERS = "content-type, x-filename"
PREFLIGHT_MAX_AGE = "86400"


class CORSHeadersMiddleware:
    """Pure ASGI middleware applying one header set regardless of path.

    Unlike Starlette's ``CORSMiddleware`` this does not inspect the
    ``Origin`` header: every response gets the same headers, and every
    ``OPTIONS`` request is answered here with a 204 without reaching the
    app.
    """

    def __init__(self, app: ASGIApp, allowed_origin: str = "*") -> None:
        self.app = app
        self.allowed_origin = allowed_origin
        self.headers = {
            "access-control-allow-origin": allowed_origin,
            "access-control-allow-methods": ALLOW_METHODS,
            "access-control-allow-headers": ALLOW_HEADERS,
            "cache-control": "no-store",
            "vary": "origin, access-control-request-headers",
        }

    def preflight_headers(self, request_headers: Headers) -> dict[str, str]:
        headers = dict(self.headers)
        headers["access-control-allow-headers"] = request_headers.get(
            "access-control-request-headers", ALLOW_HEADERS,
        )
        headers["access-control-max-age"] = PREFLIGHT_MAX_AGE
        return headers

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        if scope["method"] == "OPTIONS":
            response = Response(
                status_code=204,
                headers=self.preflight_headers(Headers(scope=scope)),
            )
            await response(scope, receive, send)
            return

        async def send_with_cors(message: Message) -> None:
            if message["type"] == "http.response.start":
                headers = MutableHeaders(scope=message)
                for key, value in self.headers.items():
                    headers[key] = value
            await send(message)

        await self.app(scope, receive, send_with_cors)
