from __future__ import annotations

"""Application factory for FastAPI app.

Centralizes app construction (metadata, middleware, handlers, routers and the
rate limiter) to improve testability. The limiter is created here exactly
once per application and handed to routes through ``app.state``.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from pos_backend.adapters.rate_limit.base import AbstractRateLimiter
from pos_backend.api.routes import health_router, rate_limits_router
from pos_backend.core.config import RateLimitSettings, settings
from pos_backend.core.exception_handlers import setup_exception_handlers
from pos_backend.core.logging import configure_logging
from pos_backend.core.middleware import request_id_middleware
from pos_backend.core.openapi import apply_openapi_customizations
from pos_backend.core.rate_limit import (
    build_policy_registry,
    build_rate_limiter,
    validate_route_policies,
)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    # Routes are all registered by now; unknown policy names stop startup
    validate_route_policies(app)
    yield


def create_app(
    rate_limit_settings: RateLimitSettings | None = None,
    limiter: AbstractRateLimiter | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        rate_limit_settings: Overrides ``settings.rate_limit`` (mainly tests).
        limiter: Pre-built limiter to use instead of the in-memory default.

    Returns:
        Configured FastAPI app with middleware, handlers, routers and docs.

    Raises:
        ConfigurationError: If the rate limit policies are invalid.
    """
    # Logging first so subsequent init logs are formatted as desired
    configure_logging(settings.log)

    rl_settings = rate_limit_settings or settings.rate_limit

    app = FastAPI(
        title=settings.app.title,
        description=(
            "Multi-branch POS backend. Sensitive endpoints such as login are "
            "protected by a per-client fixed-window rate limiter; rejected "
            "requests receive HTTP 429 with a Retry-After header."
        ),
        version="0.1.0",
        debug=settings.app.debug,
        lifespan=lifespan,
    )

    # Invalid policies must fail here, before any request is served
    app.state.rate_limit_settings = rl_settings
    app.state.rate_limit_policies = build_policy_registry(rl_settings)
    app.state.rate_limiter = limiter or build_rate_limiter(rl_settings)

    # Middleware
    app.middleware("http")(request_id_middleware)

    # Exception handlers
    setup_exception_handlers(app)

    # Routers
    app.include_router(rate_limits_router, prefix="/v1")
    app.include_router(health_router)

    apply_openapi_customizations(app)

    return app
