"""
Health check router.

Liveness/readiness probe. Returns application status, version and
whether the simulation scheduler is running.
"""

from fastapi import APIRouter

from coinvault.interfaces.accounts.dependencies import ServicesDep
from coinvault.interfaces.accounts.schemas import HealthResponse

router = APIRouter(tags=["health"])


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Returns application health status and version.",
)
def health_check(services: ServicesDep) -> HealthResponse:
    """Return current application health status."""
    return HealthResponse(
        status="ok",
        version=services.settings.version,
        scheduler_running=services.scheduler.is_running,
    )
