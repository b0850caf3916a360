"""Named rate limit policies.

A policy is a named ``(max_requests, window_ms)`` pair protecting one
operation (e.g., login attempts). Policies are validated on construction so
that a bad configuration fails at startup rather than per request.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Iterator, Mapping

from pos_backend.core.errors import ConfigurationError


@dataclass(frozen=True)
class RateLimitPolicy:
    """Named fixed-window policy.

    Attributes:
        name: Policy name used to look it up and to namespace records.
        max_requests: Maximum number of allowed requests per window.
        window_ms: Window size in milliseconds.

    Raises:
        ConfigurationError: If the name is empty or a bound is not positive.
    """

    name: str
    max_requests: int
    window_ms: int

    def __post_init__(self) -> None:
        if not self.name:
            raise ConfigurationError(
                code="invalid_rate_limit_policy",
                message="Rate limit policy name must be a non-empty string",
            )
        if self.max_requests < 1:
            raise ConfigurationError(
                code="invalid_rate_limit_policy",
                message=f"Policy '{self.name}': max_requests must be >= 1",
                details={"policy": self.name, "limit": self.max_requests},
            )
        if self.window_ms < 1:
            raise ConfigurationError(
                code="invalid_rate_limit_policy",
                message=f"Policy '{self.name}': window_ms must be >= 1",
                details={"policy": self.name, "context": {"window_ms": self.window_ms}},
            )


# login: 5 attempts per minute on the auth endpoint.
# api: general budget for the read-only /v1 endpoints of this service.
DEFAULT_POLICIES: tuple[RateLimitPolicy, ...] = (
    RateLimitPolicy(name="login", max_requests=5, window_ms=60_000),
    RateLimitPolicy(name="api", max_requests=100, window_ms=60_000),
)


class PolicyRegistry(Mapping[str, RateLimitPolicy]):
    """Read-only mapping of policy names to policies."""

    def __init__(self, policies: Iterable[RateLimitPolicy] = DEFAULT_POLICIES) -> None:
        self._policies: dict[str, RateLimitPolicy] = {}
        for policy in policies:
            if policy.name in self._policies:
                raise ConfigurationError(
                    code="duplicate_rate_limit_policy",
                    message=f"Rate limit policy '{policy.name}' is defined more than once",
                    details={"policy": policy.name},
                )
            self._policies[policy.name] = policy

    def __getitem__(self, name: str) -> RateLimitPolicy:
        return self._policies[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._policies)

    def __len__(self) -> int:
        return len(self._policies)

    def get_policy(self, name: str) -> RateLimitPolicy:
        """Return the policy registered under ``name``.

        Raises:
            ConfigurationError: If no such policy is configured.
        """
        try:
            return self._policies[name]
        except KeyError:
            raise ConfigurationError(
                code="unknown_rate_limit_policy",
                message=f"Rate limit policy '{name}' is not configured",
                details={"policy": name, "hint": "Add it to RATE_LIMIT_POLICIES"},
            ) from None


def parse_policy_spec(spec: str | None) -> list[RateLimitPolicy]:
    """Parse comma-separated ``name=max/window_ms`` entries into policies.

    Args:
        spec: Policy string, e.g. ``"login=5/60000,api=100/60000"``.

    Returns:
        Policies in declaration order (empty list for blank input).

    Raises:
        ConfigurationError: If an entry is malformed or out of range.

    Examples:
        >>> parse_policy_spec("login=5/60000")
        [RateLimitPolicy(name='login', max_requests=5, window_ms=60000)]
        >>> parse_policy_spec("")
        []
    """
    if not spec:
        return []

    policies: list[RateLimitPolicy] = []
    for raw_entry in spec.split(","):
        entry = raw_entry.strip()
        if not entry:
            continue

        name, sep, budget = entry.partition("=")
        max_requests, slash, window_ms = budget.partition("/")
        if not sep or not slash:
            raise ConfigurationError(
                code="malformed_rate_limit_policy",
                message=f"Malformed rate limit policy entry: '{entry}'",
                details={"hint": "Use name=max_requests/window_ms"},
            )

        try:
            policy = RateLimitPolicy(
                name=name.strip(),
                max_requests=int(max_requests.strip()),
                window_ms=int(window_ms.strip()),
            )
        except ValueError:
            raise ConfigurationError(
                code="malformed_rate_limit_policy",
                message=f"Rate limit policy entry '{entry}' has non-integer bounds",
                details={"hint": "Use name=max_requests/window_ms"},
            ) from None
        policies.append(policy)

    return policies
