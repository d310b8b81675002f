import uuid

from starlette.types import ASGIApp, Message, Receive, Scope, Send

from traffic_fines.core.logging import request_id_ctx_var

REQUEST_ID_HEADER = b"x-request-id"


class CorrelationIdMiddleware:
    """Reuse the caller's X-Request-ID (or mint one), expose it to logging and echo it back."""

    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request_id = dict(scope.get("headers", [])).get(REQUEST_ID_HEADER) or uuid.uuid4().hex.encode()
        token = request_id_ctx_var.set(request_id.decode("latin-1"))

        async def send_with_request_id(message: Message):
            if message["type"] == "http.response.start":
                message["headers"] = list(message.get("headers", [])) + [(REQUEST_ID_HEADER, request_id)]
            await send(message)

        try:
            await self.app(scope, receive, send_with_request_id)
        finally:
            request_id_ctx_var.reset(token)
