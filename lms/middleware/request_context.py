"""Request context middleware: a request ID on every log line.

Lesson completions, recalculations and certificate issuance all log from
service code that never sees the HTTP request.  A ContextVar carries the
request ID down the async call chain, and a logging filter on the root
handlers stamps it onto every record, so one learner's "complete lesson"
can be followed from the access log to the certificate it produced.

ContextVar rather than threading.local: concurrent requests share the
event loop thread, and each asyncio task gets its own context copy.
"""

from __future__ import annotations

import logging
import time
import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)

request_id_var: ContextVar[str] = ContextVar("request_id", default="-")


class _RequestContextFilter(logging.Filter):
    """Adds request_id to every LogRecord (formatters can only read fields)."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get("-")  # type: ignore[attr-defined]
        return True


def install_request_context_filter() -> None:
    """Attach the filter to the root logger's handlers, once.

    Filters on a logger only see records logged directly on it, so the
    filter goes on the handlers, which see records from every logger.
    """
    root = logging.getLogger()
    for handler in root.handlers:
        if not any(isinstance(f, _RequestContextFilter) for f in handler.filters):
            handler.addFilter(_RequestContextFilter())


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Assigns a request ID, times the request, logs one summary line.

    X-Request-ID from the client is reused when present, so IDs can be
    correlated across services; it is echoed back on the response.
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        req_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        token = request_id_var.set(req_id)
        try:
            start = time.monotonic()
            response = await call_next(request)
            duration_ms = round((time.monotonic() - start) * 1000, 1)

            logger.info(
                "%s %s → %d (%.1fms)",
                request.method,
                request.url.path,
                response.status_code,
                duration_ms,
                extra={
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": response.status_code,
                    "duration_ms": duration_ms,
                },
            )
            response.headers["X-Request-ID"] = req_id
            return response
        finally:
            request_id_var.reset(token)
