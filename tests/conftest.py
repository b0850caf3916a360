"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
Environment variables are set before any import that might load settings.
"""

import os

os.environ.setdefault("APP_ENV", "testing")
os.environ.setdefault("RATE_LIMIT_ENABLED", "true")
os.environ.setdefault("RATE_LIMIT_POLICIES", "login=5/60000,api=100/60000")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest

from pos_backend.adapters.rate_limit.policy import RateLimitPolicy


class FakeClock:
    """Deterministic clock returning UNIX seconds, advanced by tests."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.current = start

    def __call__(self) -> float:
        return self.current

    def advance_ms(self, milliseconds: float) -> None:
        self.current += milliseconds / 1000


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def login_policy() -> RateLimitPolicy:
    return RateLimitPolicy(name="login", max_requests=5, window_ms=60_000)
