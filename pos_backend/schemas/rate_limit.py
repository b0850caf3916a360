"""Pydantic schemas for rate limiting and health responses."""

from __future__ import annotations

from typing import Any, Dict, List

from pydantic import BaseModel, Field

from pos_backend.adapters.rate_limit.policy import RateLimitPolicy


class PolicyResponse(BaseModel):
    """One configured rate limit policy."""

    name: str = Field(..., description="Policy name, e.g. 'login'.")
    max_requests: int = Field(..., description="Requests allowed per window.")
    window_ms: int = Field(..., description="Window size in milliseconds.")

    @classmethod
    def from_policy(cls, policy: RateLimitPolicy) -> "PolicyResponse":
        return cls(name=policy.name, max_requests=policy.max_requests, window_ms=policy.window_ms)


class PolicyListResponse(BaseModel):
    enabled: bool = Field(..., description="Whether rate limiting is enforced.")
    policies: List[PolicyResponse] = Field(default_factory=list)


class HealthResponse(BaseModel):
    """Liveness status with limiter metrics."""

    status: str = Field("ok", description="Always 'ok' when the process serves requests.")
    rate_limiter: Dict[str, Any] = Field(
        default_factory=dict,
        description="Limiter counters (records, allowed, rejected, evictions).",
    )
