from __future__ import annotations

from starlette.datastructures import MutableHeaders
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from app.api.request_id import get_request_id

MAX_KEY_LENGTH = 200
WRITE_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})


class IdempotencyMiddleware:
    """Expose a client supplied Idempotency-Key on request.state and echo it back.

    Only write methods carry a key; reads always see ``idem_key = None``. The
    key is never invented here because only the client can make a retry carry
    the same one. Raw ASGI so the echo reaches error responses too.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request = Request(scope)
        key = None
        if request.method in WRITE_METHODS:
            key = (request.headers.get("Idempotency-Key") or "").strip() or None
        request.state.idem_key = key
        if key is None:
            await self.app(scope, receive, send)
            return
        if len(key) > MAX_KEY_LENGTH:
            response = JSONResponse(
                status_code=400,
                content={
                    "detail": "idempotency_key_too_long",
                    "code": "VALIDATION_ERROR",
                    "request_id": get_request_id(request),
                },
            )
            await response(scope, receive, send)
            return

        async def send_with_header(message: Message) -> None:
            if message["type"] == "http.response.start":
                headers = MutableHeaders(raw=list(message.get("headers", [])))
                headers.append("Idempotency-Key", key)
                message["headers"] = headers.raw
            await send(message)

        await self.app(scope, receive, send_with_header)
