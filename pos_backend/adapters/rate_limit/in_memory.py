"""In-memory fixed-window rate limiter.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Thread-safe: each record has its own lock, the registry lock only guards
  lookup, creation and eviction of records.
- Windows are anchored at the first request of each identity, not aligned to
  the wall clock.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable

from pos_backend.adapters.rate_limit.base import (
    AbstractRateLimiter,
    Decision,
    LimiterCounters,
    RateLimitRecord,
)
from pos_backend.adapters.rate_limit.policy import RateLimitPolicy
from pos_backend.core.errors import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass
class _Slot:
    record: RateLimitRecord
    window_ms: int
    lock: threading.Lock = field(default_factory=threading.Lock)
    evicted: bool = False


class InMemoryFixedWindowRateLimiter(AbstractRateLimiter):
    """Rate limiter using a fixed time window per identity.

    Each identity gets a window starting at its first request. Up to
    ``policy.max_requests`` requests are allowed until ``policy.window_ms``
    has elapsed, after which the next request opens a new window. Rejected
    requests are not counted, so a client spamming past the limit is not
    locked out beyond the current window.

    Records are keyed by ``(policy.name, identity)`` so that budgets of
    different policies never share a counter.

    Important:
        This limiter is per-process only. If the API runs with multiple workers
        (e.g., multiple Uvicorn/Gunicorn workers), each worker will enforce its
        own independent limits.
    """

    def __init__(
        self,
        *,
        clock: Callable[[], float] = time.time,
        cleanup_grace_windows: int = 3,
        sweep_interval_ms: int = 60_000,
    ) -> None:
        """Initialize the in-memory rate limiter.

        Args:
            clock: Time source function returning UNIX time in seconds.
            cleanup_grace_windows: Idle records older than this many windows
                are evicted by the sweep.
            sweep_interval_ms: Minimum delay between two lazy sweeps.

        Raises:
            ConfigurationError: If cleanup_grace_windows or sweep_interval_ms
                are invalid.
        """
        if cleanup_grace_windows < 1:
            raise ConfigurationError(
                code="invalid_rate_limit_settings",
                message="cleanup_grace_windows must be >= 1",
            )
        if sweep_interval_ms < 0:
            raise ConfigurationError(
                code="invalid_rate_limit_settings",
                message="sweep_interval_ms must be >= 0",
            )

        self._clock = clock
        self._grace_windows = cleanup_grace_windows
        self._sweep_interval_ms = sweep_interval_ms
        self._registry_lock = threading.Lock()
        self._counters_lock = threading.Lock()
        self._slots: dict[tuple[str, str], _Slot] = {}
        self._counters = LimiterCounters()
        self._last_sweep_ms = self._now_ms()

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return (
            f"InMemoryFixedWindowRateLimiter(records={len(self._slots)}, "
            f"cleanup_grace_windows={self._grace_windows})"
        )

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _get_or_create_slot(self, key: tuple[str, str], window_ms: int, now_ms: int) -> _Slot:
        """Return the slot for key, creating an empty one on first request."""
        with self._registry_lock:
            slot = self._slots.get(key)
            if slot is None:
                slot = _Slot(
                    record=RateLimitRecord(identity=key[1], count=0, window_start=now_ms),
                    window_ms=window_ms,
                )
                self._slots[key] = slot
            return slot

    def _apply(self, slot: _Slot, policy: RateLimitPolicy, now_ms: int) -> Decision:
        """Increment-or-reset the record. Caller must hold ``slot.lock``."""
        record = slot.record
        slot.window_ms = policy.window_ms

        if record.count == 0 or now_ms - record.window_start >= policy.window_ms:
            # A clock stepping backwards must not move the window start back.
            record.window_start = max(now_ms, record.window_start)
            record.count = 1
            return Decision(
                allowed=True,
                remaining=policy.max_requests - 1,
                retry_after_ms=0,
                limit=policy.max_requests,
                reset_at_ms=record.window_start + policy.window_ms,
            )

        reset_at_ms = record.window_start + policy.window_ms
        if record.count < policy.max_requests:
            record.count += 1
            return Decision(
                allowed=True,
                remaining=policy.max_requests - record.count,
                retry_after_ms=0,
                limit=policy.max_requests,
                reset_at_ms=reset_at_ms,
            )

        return Decision(
            allowed=False,
            remaining=0,
            retry_after_ms=max(0, reset_at_ms - now_ms),
            limit=policy.max_requests,
            reset_at_ms=reset_at_ms,
        )

    def check(self, identity: str, policy: RateLimitPolicy) -> Decision:
        """Check and consume rate limit budget for the provided identity.

        Allowed requests increment the record; rejected requests leave it
        untouched.

        Args:
            identity: Unique identifier for rate limiting (e.g., client IP).
            policy: Policy to enforce.

        Returns:
            Decision with allowance verdict and metadata.

        Raises:
            ValueError: If identity is empty.
        """
        if not identity:
            raise ValueError("identity must be a non-empty string")

        now_ms = self._now_ms()
        self._maybe_sweep(now_ms)

        key = (policy.name, identity)
        while True:
            slot = self._get_or_create_slot(key, policy.window_ms, now_ms)
            with slot.lock:
                # The slot may have been evicted between lookup and locking.
                if slot.evicted:
                    continue
                decision = self._apply(slot, policy, now_ms)
            break

        with self._counters_lock:
            if decision.allowed:
                self._counters.allowed += 1
            else:
                self._counters.rejected += 1
        return decision

    def reset(self, identity: str, policy: RateLimitPolicy) -> bool:
        """Drop the record of identity under policy, if any."""
        with self._registry_lock:
            slot = self._slots.pop((policy.name, identity), None)
            if slot is None:
                return False
            with slot.lock:
                slot.evicted = True
        return True

    def _maybe_sweep(self, now_ms: int) -> None:
        if now_ms - self._last_sweep_ms < self._sweep_interval_ms:
            return
        self.sweep(now_ms)

    def sweep(self, now_ms: int | None = None) -> int:
        """Evict records idle for more than the configured grace windows.

        Records currently locked by an in-flight check are skipped and
        considered again on the next sweep.

        Args:
            now_ms: Current time in epoch milliseconds (defaults to the clock).

        Returns:
            Number of evicted records.
        """
        if now_ms is None:
            now_ms = self._now_ms()

        evicted = 0
        with self._registry_lock:
            for key, slot in list(self._slots.items()):
                if not slot.lock.acquire(blocking=False):
                    continue
                try:
                    idle_ms = now_ms - slot.record.window_start
                    if idle_ms >= self._grace_windows * slot.window_ms:
                        slot.evicted = True
                        del self._slots[key]
                        evicted += 1
                finally:
                    slot.lock.release()
            self._last_sweep_ms = now_ms
            remaining = len(self._slots)

        if evicted:
            with self._counters_lock:
                self._counters.evictions += evicted
            logger.debug(
                "rate_limit.sweep",
                extra={"evicted": evicted, "records": remaining},
            )
        return evicted

    def stats(self) -> dict[str, Any]:
        """Return lightweight limiter metrics without exposing identities."""
        with self._registry_lock:
            records = len(self._slots)
        with self._counters_lock:
            return {
                "backend": "in_memory",
                "records": records,
                "allowed": self._counters.allowed,
                "rejected": self._counters.rejected,
                "evictions": self._counters.evictions,
                "cleanup_grace_windows": self._grace_windows,
            }
