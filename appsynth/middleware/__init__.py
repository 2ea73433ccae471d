"""Request-ID middleware -- tags every HTTP request with an ``X-Request-ID``.

Pure ASGI (not ``BaseHTTPMiddleware``) so WebSocket connections pass
through untouched.
"""

import uuid

from starlette.datastructures import MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send

_HEADER = "x-request-id"
# Client-supplied IDs longer than this are replaced
_MAX_ID_LEN = 128


class RequestIDMiddleware:
    """Reuses the client's ``X-Request-ID`` or generates a UUID-4.

    The ID is stored on ``request.state.request_id`` for the exception
    handlers and echoed on the response.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        supplied = dict(scope.get("headers", [])).get(_HEADER.encode(), b"").decode("latin-1")
        request_id = supplied if 0 < len(supplied) <= _MAX_ID_LEN else str(uuid.uuid4())
        scope.setdefault("state", {})["request_id"] = request_id

        async def send_with_id(message: Message) -> None:
            if message["type"] == "http.response.start":
                MutableHeaders(scope=message)[_HEADER] = request_id
            await send(message)

        await self.app(scope, receive, send_with_id)
