from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from pos_backend.core.rate_limit import get_policy_registry, rate_limit
from pos_backend.schemas.rate_limit import PolicyListResponse, PolicyResponse

router = APIRouter(tags=["Rate limits"])


@router.get(
    "/rate-limits",
    response_model=PolicyListResponse,
    dependencies=[Depends(rate_limit("api"))],
)
async def list_rate_limits(request: Request) -> PolicyListResponse:
    """List the configured rate limit policies.

    The endpoint itself is subject to the ``api`` policy, so clients can also
    read their remaining budget from the X-RateLimit-* response headers.
    """

    registry = get_policy_registry(request)
    return PolicyListResponse(
        enabled=request.app.state.rate_limit_settings.enabled,
        policies=[PolicyResponse.from_policy(policy) for policy in registry.values()],
    )
