"""Attach an X-Request-Id to every request and response.

A client supplied id is reused only when it is short and made of safe
characters; anything else is replaced so ids can be logged verbatim.
"""

from __future__ import annotations

import re
import uuid

from starlette.datastructures import MutableHeaders
from starlette.requests import Request
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from app.api.request_id import REQUEST_ID_ATTR

_SAFE_ID = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")


def accept_request_id(value: str | None) -> str:
    if value and _SAFE_ID.match(value.strip()):
        return value.strip()
    return str(uuid.uuid4())


class RequestIdMiddleware:
    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request = Request(scope)
        rid = getattr(request.state, REQUEST_ID_ATTR, None) or accept_request_id(request.headers.get("X-Request-Id"))
        setattr(request.state, REQUEST_ID_ATTR, rid)

        async def send_with_id(message: Message) -> None:
            if message["type"] == "http.response.start":
                headers = MutableHeaders(raw=list(message.get("headers", [])))
                if "x-request-id" not in headers:
                    headers.append("X-Request-Id", rid)
                message["headers"] = headers.raw
            await send(message)

        await self.app(scope, receive, send_with_id)
