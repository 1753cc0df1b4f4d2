"""
Serve Tracker Backend — Request Logging Middleware
====================================================

What:  One access-log line per request: method, path, status, duration,
       request id, client address.
How:   Logged on the `serve_tracker.access` logger at INFO for 2xx/3xx,
       WARNING for 4xx and ERROR for 5xx. Request bodies are never logged;
       submissions carry base64 photographs and personal details.

Typical durations:
    GET /health                     1-5ms (skipped, health-check traffic)
    GET /api/serve-attempts/cached  5-20ms (local SQLite read)
    POST /api/serve-attempts        0.5-5s (two uploads + document create)
"""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from serve_tracker.middleware.request_id import request_id_var

logger = logging.getLogger("serve_tracker.access")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        path = request.url.path
        if path == "/health":
            return await call_next(request)

        start_time = time.perf_counter()
        client_ip = request.client.host if request.client else "unknown"
        rid = request_id_var.get("")

        response = await call_next(request)

        duration_ms = (time.perf_counter() - start_time) * 1000
        status = response.status_code
        if status >= 500:
            log_level = logging.ERROR
        elif status >= 400:
            log_level = logging.WARNING
        else:
            log_level = logging.INFO

        logger.log(
            log_level,
            "%s %s %d %.1fms [%s] from %s",
            request.method,
            path,
            status,
            duration_ms,
            rid,
            client_ip,
            extra={
                "request_id": rid,
                "method": request.method,
                "path": path,
                "status": status,
                "duration_ms": round(duration_ms, 2),
            },
        )
        return response
