"""
Connection Routes - API endpoints for connection profiles.

These endpoints allow tool clients to:
- List configured profiles (passwords masked)
- Show the current profile and its pool status
- Switch the current profile
"""
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, Request

from mssql_gateway.api.deps import get_service, resolve_profile
from mssql_gateway.core.logging_config import get_logger
from mssql_gateway.models.gateway import SwitchProfileRequest
from mssql_gateway.services.gateway_service import GatewayService

logger = get_logger(__name__)

router = APIRouter(
    prefix="/connections",
    tags=["Connection"],
)


@router.get(
    "",
    summary="List connection profiles",
    description="Returns every configured profile with its password masked."
)
def list_profiles(service: GatewayService = Depends(get_service)) -> List[Dict[str, Any]]:
    return service.list_profiles()


@router.get(
    "/current",
    summary="Show the current connection",
    description="Masked settings and pool status of the current profile."
)
def current_connection(
    http_request: Request,
    service: GatewayService = Depends(get_service)
) -> Dict[str, Any]:
    return service.connection_info(resolve_profile(http_request, service, None))


@router.get(
    "/{profile}",
    summary="Show a connection profile",
    description="Masked settings and pool status of a named profile."
)
def connection_info(
    profile: str,
    http_request: Request,
    service: GatewayService = Depends(get_service)
) -> Dict[str, Any]:
    return service.connection_info(resolve_profile(http_request, service, profile))


@router.post(
    "/switch",
    summary="Switch the current profile",
    description="""
    Make another configured profile the current one.

    The previous profile's pool stays open; pools are only closed at shutdown.
    """
)
def switch_profile(
    request: SwitchProfileRequest,
    http_request: Request,
    service: GatewayService = Depends(get_service)
) -> Dict[str, Any]:
    profile = service.switch_profile(resolve_profile(http_request, service, request.profile))
    logger.info(f"Current profile is now '{profile.name}' ({profile.environment})")
    return {
        "message": f"Switched to {profile.name} ({profile.database} on {profile.host})",
        "profile": profile.to_safe_dict(),
    }
