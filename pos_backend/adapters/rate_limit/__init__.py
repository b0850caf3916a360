"""Rate limiting adapters.

This package provides a small abstraction layer so the backend can start with
an in-memory limiter and later migrate to Redis or another shared store
without changing the API layer.
"""

from pos_backend.adapters.rate_limit.base import (
    AbstractRateLimiter,
    Decision,
    RateLimitRecord,
)
from pos_backend.adapters.rate_limit.in_memory import InMemoryFixedWindowRateLimiter
from pos_backend.adapters.rate_limit.policy import (
    DEFAULT_POLICIES,
    PolicyRegistry,
    RateLimitPolicy,
    parse_policy_spec,
)

__all__ = [
    "AbstractRateLimiter",
    "DEFAULT_POLICIES",
    "Decision",
    "InMemoryFixedWindowRateLimiter",
    "PolicyRegistry",
    "RateLimitPolicy",
    "RateLimitRecord",
    "parse_policy_spec",
]
