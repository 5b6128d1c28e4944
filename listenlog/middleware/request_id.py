"""Tag each HTTP request with an id that is echoed back and logged."""

from __future__ import annotations

import re
from uuid import uuid4

from starlette.datastructures import Headers, MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send

_SAFE_REQUEST_ID = re.compile(r"^[A-Za-z0-9._-]{1,128}$")


def resolve_request_id(incoming: str | None) -> str:
    candidate = (incoming or "").strip()
    if _SAFE_REQUEST_ID.match(candidate):
        return candidate
    return uuid4().hex


class RequestIDMiddleware:
    """Store the id on ``request.state.request_id`` and set the response header."""

    def __init__(self, app: ASGIApp, *, header_name: str = "X-Request-ID") -> None:
        self.app = app
        self.header_name = header_name

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request_id = resolve_request_id(Headers(scope=scope).get(self.header_name))
        scope.setdefault("state", {})["request_id"] = request_id

        async def send_with_id(message: Message) -> None:
            if message["type"] == "http.response.start":
                MutableHeaders(scope=message).setdefault(self.header_name, request_id)
            await send(message)

        await self.app(scope, receive, send_with_id)


__all__ = ["RequestIDMiddleware", "resolve_request_id"]
