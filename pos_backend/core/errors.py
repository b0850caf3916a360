"""Application-level exception types.

This module defines domain errors used across services/adapters, enabling
consistent error handling, logging, and API responses.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, NotRequired, TypedDict

if TYPE_CHECKING:
    from pos_backend.adapters.rate_limit.base import Decision


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients.

    Fields are optional to keep backward compatibility while encouraging
    consistent shapes across the codebase.
    """

    code: str
    message: str
    hint: str
    policy: str
    limit: int
    remaining: int
    retry_after_ms: int
    http_status: int
    request_id: str
    context: NotRequired[dict[str, Any]]


@dataclass
class AppError(Exception):
    """Base error for application/domain failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class ConfigurationError(AppError):
    """Raised when rate limit policies or settings are invalid.

    Fatal at setup time: the limiter (and the app) must not be constructed
    with an invalid configuration.
    """


@dataclass
class RateLimitExceededError(AppError):
    """Raised by the HTTP layer when the limiter rejects a request.

    The limiter itself never raises this; it only returns a rejected
    Decision. Route dependencies convert that outcome into this error so
    the exception handler can render a 429 response.
    """

    decision: Decision | None = None
    policy_name: str | None = None
