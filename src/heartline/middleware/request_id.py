"""Request ID middleware — one correlation ID per request or stream.

Learn: Every HTTP request and every WebSocket handshake gets an ID, either
from the incoming X-Request-ID header or freshly generated. It is bound to
structlog's contextvars, so every log line of that request (or of the whole
life of a stream) carries it. HTTP responses echo it back in the header.

Written as a plain ASGI middleware rather than BaseHTTPMiddleware, which
only ever sees HTTP requests and would skip the streams.
"""

import uuid

import structlog
from starlette.datastructures import Headers, MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send

HEADER = "X-Request-ID"


class RequestIdMiddleware:
    """Generate and propagate a request ID for HTTP and WebSocket scopes."""

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] not in ("http", "websocket"):
            await self.app(scope, receive, send)
            return

        # Use existing request ID or generate a new one
        request_id = Headers(scope=scope).get(HEADER) or str(uuid.uuid4())

        # Bind to structlog for correlated logging
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)

        if scope["type"] == "websocket":
            await self.app(scope, receive, send)
            return

        async def send_with_id(message: Message) -> None:
            if message["type"] == "http.response.start":
                MutableHeaders(scope=message)[HEADER] = request_id
            await send(message)

        await self.app(scope, receive, send_with_id)
