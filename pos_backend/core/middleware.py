"""HTTP middleware for request ID propagation and correlation.

The middleware:
- Accepts incoming X-Request-ID header or generates a UUID
- Stores request_id in contextvars so limiter and error logs carry it
- Keeps request_id on ``request.state`` for handlers that run after the
  context is cleared (the unhandled-exception handler)
- Injects request_id and the request duration into response headers

Usage:
    app.middleware("http")(request_id_middleware)
"""

from __future__ import annotations

import time
import uuid

from fastapi import Request, Response

from pos_backend.core.config import settings
from pos_backend.core.logging import clear_request_id, get_request_id, set_request_id


def request_id_for(request: Request) -> str | None:
    """Correlation id of ``request``, even outside the middleware's context."""

    request_id = getattr(request.state, "request_id", None)
    if isinstance(request_id, str):
        return request_id
    return get_request_id()


async def request_id_middleware(request: Request, call_next) -> Response:
    """Tag every request/response pair with a correlation id.

    If the client provides the configured request id header (``LOG_REQUEST_ID_HEADER``,
    ``X-Request-ID`` by default), that value is reused; otherwise a new UUID
    is generated.

    Unexpected exceptions propagate past this middleware to Starlette's
    outermost error handler, which reads the id back from ``request.state``.
    """

    header_name = settings.log.request_id_header
    request_id = request.headers.get(header_name) or str(uuid.uuid4())
    request.state.request_id = request_id
    set_request_id(request_id)

    started = time.perf_counter()
    try:
        response: Response = await call_next(request)
    finally:
        clear_request_id()

    response.headers[header_name] = request_id
    elapsed_ms = (time.perf_counter() - started) * 1000
    response.headers.setdefault("X-Request-Duration-ms", f"{elapsed_ms:.2f}")
    return response
