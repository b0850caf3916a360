"""Global exception handlers for consistent error responses.

This module provides FastAPI exception handlers that intercept all errors
(domain and unexpected) and return consistent JSON responses with proper
HTTP status codes and traceability.

Design:
- RateLimitExceededError → 429 with Retry-After and X-RateLimit-* headers
- ConfigurationError → 500 (server misconfiguration)
- Other AppError subclasses → 400
- Unexpected Exception → generic 500 (safety net)
- All responses include request_id for distributed tracing
"""

import logging

from fastapi import Request
from fastapi.responses import JSONResponse

from pos_backend.core.config import settings
from pos_backend.core.errors import AppError, ConfigurationError, RateLimitExceededError
from pos_backend.core.middleware import request_id_for
from pos_backend.core.rate_limit import rate_limit_headers

logger = logging.getLogger(__name__)


def _error_body(request: Request, exc: AppError) -> dict:
    error_content = {
        "code": exc.code,
        "message": exc.message,
        "request_id": request_id_for(request),
    }
    # Include details only if present (optional structured context)
    if exc.details:
        error_content["details"] = exc.details
    return {"error": error_content}


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceededError) -> JSONResponse:
    """Render a rejected rate limit decision as HTTP 429.

    Retry-After is always sent (whole seconds, rounded up). The X-RateLimit-*
    headers follow the ``RATE_LIMIT_INCLUDE_HEADERS`` setting.

    Args:
        request: FastAPI request object.
        exc: Error carrying the rejected Decision.

    Returns:
        JSONResponse with status 429.
    """
    cfg = getattr(request.app.state, "rate_limit_settings", settings.rate_limit)
    headers: dict[str, str] = {}
    if exc.decision is not None:
        headers["Retry-After"] = str(exc.decision.retry_after_seconds)
        if cfg.include_headers:
            headers.update(rate_limit_headers(exc.decision))

    return JSONResponse(
        status_code=429,
        content=_error_body(request, exc),
        headers=headers or None,
    )


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Handle domain application errors with consistent JSON format.

    Routes domain errors to appropriate HTTP status codes:
    - ConfigurationError → 500 Internal Server Error (server fault)
    - anything else → 400 Bad Request (client fault)

    Args:
        request: FastAPI request object.
        exc: AppError instance (or subclass).

    Returns:
        JSONResponse with appropriate status code and error details.
    """
    status_code = 500 if isinstance(exc, ConfigurationError) else 400

    log = logger.error if status_code >= 500 else logger.warning
    log(
        "app_error_handled",
        extra={
            "error_code": exc.code,
            "error_message": exc.message,
            "status_code": status_code,
            "has_details": bool(exc.details),
            "request_id": request_id_for(request),
        },
    )

    return JSONResponse(status_code=status_code, content=_error_body(request, exc))


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Fallback handler for unexpected errors (safety net).

    Logs detailed information for debugging while returning a generic
    message, so no stack traces or internals leak to the client.

    Starlette runs this outside the request-id middleware, so the id
    header is set here as well.
    """
    request_id = request_id_for(request)
    logger.error(
        "unhandled_exception",
        extra={
            "error_type": type(exc).__name__,
            "error_msg": str(exc),
            "request_path": request.url.path,
            "request_method": request.method,
            "request_id": request_id,
        },
    )

    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "internal_server_error",
                "message": "An unexpected error occurred. Please try again later.",
                "request_id": request_id,
            }
        },
        headers={settings.log.request_id_header: request_id} if request_id else None,
    )


def setup_exception_handlers(app) -> None:
    """Register all exception handlers with FastAPI app.

    Starlette resolves handlers by walking the exception's MRO, so the
    rate limit handler wins over the generic AppError handler.

    Args:
        app: FastAPI application instance.
    """
    app.exception_handler(RateLimitExceededError)(rate_limit_exceeded_handler)
    app.exception_handler(AppError)(app_error_handler)
    app.exception_handler(Exception)(general_exception_handler)
