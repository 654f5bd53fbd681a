"""
ASGI middleware: correlation id per request plus one access log line.
"""

import logging
import time

from .context import RequestContext, generate_request_id

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = b"x-request-id"


class CorrelationIdMiddleware:
    """
    Reads X-Request-ID (or generates one), exposes it to every log line in
    the request, and echoes it on the response.

    Usage in server.py:
        app.add_middleware(CorrelationIdMiddleware)
    """

    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request_id = None
        for key, value in scope.get("headers", []):
            if key.lower() == REQUEST_ID_HEADER:
                try:
                    request_id = value.decode("utf-8")
                except UnicodeDecodeError as e:
                    logger.warning("Could not decode X-Request-ID header: %s", e)
                break
        request_id = request_id or generate_request_id()

        status = {"code": 500}
        start_time = time.perf_counter()

        async def send_with_request_id(message):
            if message["type"] == "http.response.start":
                status["code"] = message["status"]
                headers_list = list(message.get("headers", []))
                headers_list.append((REQUEST_ID_HEADER, request_id.encode("utf-8")))
                message["headers"] = headers_list
            await send(message)

        with RequestContext(request_id=request_id):
            try:
                await self.app(scope, receive, send_with_request_id)
            finally:
                logger.info(
                    "%s %s → %d (%.1fms)",
                    scope.get("method"),
                    scope.get("path"),
                    status["code"],
                    (time.perf_counter() - start_time) * 1000,
                )
