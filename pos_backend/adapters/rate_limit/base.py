"""Rate limiter interfaces.

The API should depend on this abstraction (not the concrete implementation)
so we can swap storage backends later (e.g., Redis) with minimal changes.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from pos_backend.adapters.rate_limit.policy import RateLimitPolicy


@dataclass
class RateLimitRecord:
    """Request count for one identity within its current window.

    Attributes:
        identity: Caller key (network address or account identifier).
        count: Requests observed in the current window.
        window_start: Epoch milliseconds when the current window began.
    """

    identity: str
    count: int
    window_start: int


@dataclass(frozen=True)
class Decision:
    """Verdict of a rate limit check.

    Attributes:
        allowed: Whether the request is allowed to proceed.
        remaining: Remaining requests in the current window (0 when rejected).
        retry_after_ms: Milliseconds until the window resets (0 when allowed).
        limit: Max requests per window for the applied policy.
        reset_at_ms: Epoch milliseconds when the current window ends.
    """

    allowed: bool
    remaining: int
    retry_after_ms: int
    limit: int
    reset_at_ms: int

    @property
    def retry_after_seconds(self) -> int:
        """Retry hint rounded up to whole seconds, as used by Retry-After."""
        return -(-self.retry_after_ms // 1000)


class AbstractRateLimiter(ABC):
    """Interface for rate limiters."""

    @abstractmethod
    def check(self, identity: str, policy: RateLimitPolicy) -> Decision:
        """Decide whether a request from ``identity`` is allowed.

        Args:
            identity: Unique caller identifier (e.g., IP address, user id).
            policy: Named (max_requests, window_ms) pair to enforce.

        Returns:
            Decision describing whether it was allowed.
        """
        raise NotImplementedError

    @abstractmethod
    def reset(self, identity: str, policy: RateLimitPolicy) -> bool:
        """Forget the record of ``identity`` under ``policy``.

        Returns:
            True if a record existed and was removed.
        """
        raise NotImplementedError

    def stats(self) -> dict[str, Any]:
        """Return lightweight limiter metrics (no identities exposed)."""
        return {}


@dataclass
class LimiterCounters:
    """Running totals kept by limiter implementations."""

    allowed: int = 0
    rejected: int = 0
    evictions: int = 0
