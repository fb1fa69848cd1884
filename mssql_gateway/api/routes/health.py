"""
Health Check Routes - Service health and readiness endpoints.

These endpoints are used for:
1. Load balancer / orchestrator health checks
2. Quick verification that a profile's database is reachable
"""
from datetime import datetime

from fastapi import APIRouter, Depends

from mssql_gateway import __version__
from mssql_gateway.api.deps import get_service, query_profile
from mssql_gateway.core.logging_config import get_logger
from mssql_gateway.models.gateway import HealthResponse
from mssql_gateway.services.gateway_service import GatewayService

logger = get_logger(__name__)

router = APIRouter(
    prefix="/health",
    tags=["Health"],
)


@router.get(
    "",
    response_model=HealthResponse,
    summary="Health check endpoint",
    description="Returns 200 OK if the API is running. Does not touch the database."
)
def health_check(service: GatewayService = Depends(get_service)) -> HealthResponse:
    """Perform a basic health check."""
    logger.debug("Health check requested")

    return HealthResponse(
        status="healthy",
        version=__version__,
        timestamp=datetime.utcnow(),
        active_pools=service.manager.active_pool_count(),
    )


@router.get(
    "/ready",
    response_model=HealthResponse,
    summary="Readiness check endpoint",
    description="""
    Verifies that the given profile (or the current one) can be connected.

    Connection failures are returned as a 503 connection_error.
    """
)
def readiness_check(
    profile: str = Depends(query_profile),
    service: GatewayService = Depends(get_service)
) -> HealthResponse:
    """Acquire the profile's pool, connecting it if needed."""
    logger.debug("Readiness check requested")

    service.acquire(profile)

    return HealthResponse(
        status="ready",
        version=__version__,
        timestamp=datetime.utcnow(),
        active_pools=service.manager.active_pool_count(),
    )
