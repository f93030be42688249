"""
CreditShare Backend - Request ID Middleware
============================================

What:  Assigns a correlation ID to each request and returns it in the
       X-Request-ID response header.
Why:   A download charge, its ledger row and the access log line for the
       same request share one id, so a disputed charge can be traced from
       the client's error report to the exact log entries.
How:   Reuses the client's X-Request-ID when it is a short token of safe
       characters, otherwise generates an 8-character id. The id is stored
       in a ContextVar so loggers and exception handlers can read it
       without access to the request object.
When:  Outermost application middleware.

Accepted client ids:
    ✅ "a1b2c3d4", "web-7f3e", "retry_2"     (≤ 64 chars, [A-Za-z0-9._-])
    ❌ "", "x" * 65, "id\\nFAKE LOG LINE"     (replaced with a generated id)
"""

import re
import uuid
from contextvars import ContextVar
from typing import Optional

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

# Coroutine-local: concurrent requests on the same thread each see their own id
request_id_var: ContextVar[str] = ContextVar("request_id", default="")

REQUEST_ID_HEADER = "X-Request-ID"
CLIENT_ID_PATTERN = re.compile(r"^[A-Za-z0-9._-]{1,64}$")


def new_request_id() -> str:
    return uuid.uuid4().hex[:8]


def resolve_request_id(client_value: Optional[str]) -> str:
    """Client-supplied id if it is safe to echo into logs and headers."""
    if client_value and CLIENT_ID_PATTERN.fullmatch(client_value):
        return client_value
    return new_request_id()


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Attach a request ID to the request state, the log context and the response.

    Error bodies built in main.py read the same ContextVar, so the id in a
    JSON error matches the response header.
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        rid = resolve_request_id(request.headers.get(REQUEST_ID_HEADER))
        # Not reset afterwards: the catch-all error handler runs outside
        # this middleware and still reads it
        request_id_var.set(rid)
        request.state.request_id = rid

        response = await call_next(request)

        response.headers[REQUEST_ID_HEADER] = rid
        return response
