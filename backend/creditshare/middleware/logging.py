"""
CreditShare Backend - Request Logging Middleware
=================================================

What:  One access log line per HTTP request on the "creditshare.access"
       logger.
Why:   The credit ledger records what was charged; the access log records
       who asked, when, and how the request ended. Download lines carry the
       charge and resulting balance so the two can be reconciled by request
       id without a database query.
Who:   Applied to every request except the health probe.
When:  Inside RequestIDMiddleware, so the request id is already set.

Line format:
    GET /api/files/<id>/download 200 12.4ms [a1b2c3d4] from 10.0.0.7 charged=5 balance=15
    POST /api/files/upload 201 48.0ms [9f8e7d6c] from 10.0.0.7

Severity follows the status code:
    5xx → ERROR, 4xx → WARNING, everything else → INFO

What we log vs what we DON'T log:
    ✅ method, path, status, duration, client address, request id, credit headers
    ❌ request bodies (file contents), X-User-ID / X-User-Email
"""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from creditshare.middleware.request_id import request_id_var

logger = logging.getLogger("creditshare.access")

UNLOGGED_PATHS = frozenset({"/health"})


def status_log_level(status: int) -> int:
    if status >= 500:
        return logging.ERROR
    if status >= 400:
        return logging.WARNING
    return logging.INFO


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Logs each request once its response is ready.

    Duration covers everything downstream of this middleware, including the
    route handler and response serialization. For streamed downloads it ends
    when the response headers are ready, not when the last byte is sent.
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if request.url.path in UNLOGGED_PATHS:
            return await call_next(request)

        start_time = time.perf_counter()
        response = await call_next(request)
        duration_ms = (time.perf_counter() - start_time) * 1000

        rid = request_id_var.get("")
        client_ip = request.client.host if request.client else "unknown"
        charged = response.headers.get("X-Credits-Charged")
        balance = response.headers.get("X-Credits-Balance")

        message = "%s %s %d %.1fms [%s] from %s"
        args = [request.method, request.url.path, response.status_code, duration_ms, rid, client_ip]
        if charged is not None:
            message += " charged=%s balance=%s"
            args += [charged, balance]

        logger.log(
            status_log_level(response.status_code),
            message,
            *args,
            extra={
                "request_id": rid,
                "method": request.method,
                "path": request.url.path,
                "status": response.status_code,
                "duration_ms": round(duration_ms, 2),
                "client_ip": client_ip,
                "credits_charged": charged,
            },
        )

        return response
