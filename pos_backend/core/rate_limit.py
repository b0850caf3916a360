"""Rate limiting dependency for FastAPI routes.

This module wires the rate limiting adapter into the HTTP layer.

Design goals:
- Minimal coupling: API routes depend on a dependency factory only.
- Swap-friendly: storage backend can be replaced (e.g., Redis) behind an
  abstract interface.
- Explicit ownership: one limiter is built by the app factory and stored on
  ``app.state``; routes reach it through the request.

Identity strategy:
- Authenticated principal (``request.state.user_id``) when present.
- Otherwise the socket peer address. X-Forwarded-For / X-Real-IP are only
  read when ``RATE_LIMIT_TRUST_FORWARDED_FOR`` is set, which is safe only
  behind a reverse proxy that overwrites those headers.
"""

from __future__ import annotations

import hashlib
import logging
from typing import Awaitable, Callable, Iterator

from fastapi import FastAPI, Request, Response
from fastapi.routing import APIRoute

from pos_backend.adapters.rate_limit.base import AbstractRateLimiter, Decision
from pos_backend.adapters.rate_limit.in_memory import InMemoryFixedWindowRateLimiter
from pos_backend.adapters.rate_limit.policy import PolicyRegistry, parse_policy_spec
from pos_backend.core.config import RateLimitSettings, settings
from pos_backend.core.errors import ConfigurationError, RateLimitExceededError

logger = logging.getLogger(__name__)


def build_policy_registry(rate_limit_settings: RateLimitSettings | None = None) -> PolicyRegistry:
    """Build the policy registry from settings.

    Raises:
        ConfigurationError: If the configured policies are invalid or empty.
    """

    cfg = rate_limit_settings or settings.rate_limit
    policies = parse_policy_spec(cfg.policies)
    if not policies:
        raise ConfigurationError(
            code="no_rate_limit_policies",
            message="Rate limiting is enabled but no policies are configured",
            details={"hint": "Set RATE_LIMIT_POLICIES, e.g. login=5/60000"},
        )
    return PolicyRegistry(policies)


def build_rate_limiter(rate_limit_settings: RateLimitSettings | None = None) -> AbstractRateLimiter:
    """Build the process-wide limiter instance (called once by the app factory)."""

    cfg = rate_limit_settings or settings.rate_limit
    return InMemoryFixedWindowRateLimiter(
        cleanup_grace_windows=cfg.cleanup_grace_windows,
        sweep_interval_ms=cfg.sweep_interval_ms,
    )


def get_rate_limiter(request: Request) -> AbstractRateLimiter:
    """FastAPI dependency returning the limiter owned by the application."""

    return request.app.state.rate_limiter


def get_policy_registry(request: Request) -> PolicyRegistry:
    return request.app.state.rate_limit_policies


def _first_forwarded_hop(value: str | None) -> str | None:
    if not value:
        return None
    first = value.split(",")[0].strip()
    return first or None


def resolve_identity(request: Request, *, trust_forwarded_for: bool = False) -> str:
    """Build the limiter identity for the current request.

    Args:
        request: FastAPI request.
        trust_forwarded_for: Whether proxy headers may name the client.

    Returns:
        str: Namespaced identity, e.g. ``user:42`` or ``ip:1.2.3.4``.
    """

    user_id = getattr(request.state, "user_id", None)
    if user_id:
        return f"user:{user_id}"

    client_host: str | None = None
    if trust_forwarded_for:
        client_host = _first_forwarded_hop(request.headers.get("x-forwarded-for")) or (
            request.headers.get("x-real-ip") or None
        )
    if not client_host and request.client:
        client_host = request.client.host

    return f"ip:{client_host or 'unknown'}"


def hash_identity(identity: str) -> str:
    """Hash the identity for logging without exposing addresses or user ids."""
    return hashlib.sha256(identity.encode()).hexdigest()[:16]


def rate_limit_headers(decision: Decision) -> dict[str, str]:
    """Standard X-RateLimit-* headers for a decision."""
    return {
        "X-RateLimit-Limit": str(decision.limit),
        "X-RateLimit-Remaining": str(decision.remaining),
        "X-RateLimit-Reset": str(decision.reset_at_ms // 1000),
    }


def rate_limit(policy_name: str) -> Callable[[Request, Response], Awaitable[None]]:
    """Create a FastAPI dependency enforcing the named policy.

    Usage:
        @router.post("/auth/login", dependencies=[Depends(rate_limit("login"))])
        async def login(): ...

    Args:
        policy_name: Name of a configured policy (e.g. ``"login"``).

    Returns:
        Async dependency that raises RateLimitExceededError when the caller
        is over budget.
    """

    async def enforce_rate_limit(request: Request, response: Response) -> None:
        cfg: RateLimitSettings = request.app.state.rate_limit_settings
        if not cfg.enabled:
            return

        policy = get_policy_registry(request).get_policy(policy_name)
        limiter = get_rate_limiter(request)
        identity = resolve_identity(request, trust_forwarded_for=cfg.trust_forwarded_for)
        identity_hash = hash_identity(identity)

        decision = limiter.check(identity, policy)
        if decision.allowed:
            logger.debug(
                "rate_limit.allowed",
                extra={
                    "policy": policy.name,
                    "identity_hash": identity_hash,
                    "limit": decision.limit,
                    "remaining": decision.remaining,
                    "window_ms": policy.window_ms,
                },
            )
            if cfg.include_headers:
                response.headers.update(rate_limit_headers(decision))
            return

        logger.warning(
            "rate_limit.exceeded",
            extra={
                "policy": policy.name,
                "identity_hash": identity_hash,
                "limit": decision.limit,
                "remaining": decision.remaining,
                "window_ms": policy.window_ms,
                "retry_after_ms": decision.retry_after_ms,
            },
        )
        raise RateLimitExceededError(
            code="rate_limit_exceeded",
            message="Too many requests. Please try again later.",
            details={
                "policy": policy.name,
                "limit": decision.limit,
                "retry_after_ms": decision.retry_after_ms,
            },
            decision=decision,
            policy_name=policy.name,
        )

    enforce_rate_limit.policy_name = policy_name  # type: ignore[attr-defined]
    return enforce_rate_limit


def _route_policy_names(dependant) -> Iterator[str]:
    for sub in dependant.dependencies:
        name = getattr(sub.call, "policy_name", None)
        if name is not None:
            yield name
        yield from _route_policy_names(sub)


def validate_route_policies(app: FastAPI) -> None:
    """Check that every ``rate_limit(name)`` used by a route is configured.

    Runs at startup so a typo in a policy name stops the service instead of
    turning the route into a permanent 500.

    Raises:
        ConfigurationError: If a route references an unknown policy.
    """

    cfg: RateLimitSettings = app.state.rate_limit_settings
    if not cfg.enabled:
        return

    registry: PolicyRegistry = app.state.rate_limit_policies
    for route in app.routes:
        if not isinstance(route, APIRoute):
            continue
        for name in _route_policy_names(route.dependant):
            if name not in registry:
                logger.error(
                    "rate_limit.unknown_policy",
                    extra={"policy": name, "route_path": route.path},
                )
                registry.get_policy(name)
