"""
ASGI middleware: correlation IDs and the last-resort error boundary.
"""

import traceback

from starlette.datastructures import Headers, MutableHeaders
from starlette.responses import JSONResponse

from datadump.core.logging_config import (
    CORRELATION_HEADER,
    generate_correlation_id,
    get_correlation_id,
    get_logger,
    is_production,
    set_correlation_id,
)

logger = get_logger("middleware")


class CorrelationIdMiddleware:
    """Adopts the caller's ``x-correlation-id`` (or mints one) for the request's
    log context and echoes it on the response."""

    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        cid = Headers(scope=scope).get(CORRELATION_HEADER) or generate_correlation_id()
        set_correlation_id(cid)

        async def send_with_correlation(message):
            if message["type"] == "http.response.start":
                headers = MutableHeaders(scope=message)
                if CORRELATION_HEADER not in headers:
                    headers.append(CORRELATION_HEADER, cid)
            await send(message)

        await self.app(scope, receive, send_with_correlation)


class ErrorBoundaryMiddleware:
    """Turns an exception escaping a route into a JSON 500.

    The body uses the API's ``{error, code}`` shape. Outside production it
    also carries the exception text and traceback. If the response has
    already started (a streamed export failing mid-body) the error is only
    logged.
    """

    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        started = False

        async def send_tracking(message):
            nonlocal started
            if message["type"] == "http.response.start":
                started = True
            await send(message)

        try:
            await self.app(scope, receive, send_tracking)
        except Exception as exc:
            logger.error(
                f"Unhandled exception on {scope.get('method')} {scope.get('path')}: {exc}",
                exc_info=True,
            )
            if started:
                return

            cid = get_correlation_id()
            payload = {"error": "Internal server error", "code": "INTERNAL_ERROR", "correlationId": cid}
            if not is_production():
                payload["error"] = str(exc) or type(exc).__name__
                payload["stackTrace"] = traceback.format_exc()

            response = JSONResponse(payload, status_code=500, headers={CORRELATION_HEADER: cid})
            await response(scope, receive, send)
