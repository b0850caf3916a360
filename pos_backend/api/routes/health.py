from __future__ import annotations

from fastapi import APIRouter, Request

from pos_backend.schemas.rate_limit import HealthResponse

router = APIRouter(tags=["Health"])


@router.get("/health", response_model=HealthResponse)
def health_check(request: Request) -> HealthResponse:
    """Health check endpoint.

    Used by load balancers and monitoring systems to determine service
    health. Includes the in-process limiter counters.
    """

    return HealthResponse(status="ok", rate_limiter=request.app.state.rate_limiter.stats())
