"""
Serve Tracker Backend — Request ID Middleware
===============================================

What:  Tags every request with a short correlation id.
How:   Reuses an inbound `X-Request-ID` header (the frontend sends one when
       it retries an offline submission) or generates 8 hex characters.
       The id is stored in a ContextVar for loggers and exception handlers,
       on `request.state`, and echoed in the response header.
"""

import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

# Coroutine-local: concurrent requests share one thread
request_id_var: ContextVar[str] = ContextVar("request_id", default="")


class RequestIDMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        rid = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:8]
        request_id_var.set(rid)
        request.state.request_id = rid
        response = await call_next(request)
        response.headers["X-Request-ID"] = rid
        return response
