from __future__ import annotations

from starlette.datastructures import MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send


class CacheControlMiddleware:
    """
    Stamp `Cache-Control` on successful GET responses (200/304) that did not
    set one themselves. Errors are left uncached at the edge.

    Plain ASGI rather than BaseHTTPMiddleware so streamed tile bodies pass
    through untouched.
    """

    def __init__(self, app: ASGIApp, cache_control: str):
        self.app = app
        self.cache_control = cache_control

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or scope["method"] != "GET":
            await self.app(scope, receive, send)
            return

        async def send_with_cache_control(message: Message) -> None:
            if message["type"] == "http.response.start" and message["status"] in (200, 304):
                headers = MutableHeaders(scope=message)
                if "cache-control" not in headers:
                    headers["Cache-Control"] = self.cache_control
            await send(message)

        await self.app(scope, receive, send_with_cache_control)
