"""Shared FastAPI dependencies."""
from typing import Optional

from fastapi import Depends, Request

from mssql_gateway.services.gateway_service import GatewayService


def get_service(request: Request) -> GatewayService:
    """Return the GatewayService built at startup."""
    return request.app.state.service


def resolve_profile(request: Request, service: GatewayService, name: Optional[str]) -> str:
    """Resolve an optional profile name and record it on the request for the audit log."""
    resolved = name or service.current_profile
    request.state.profile = resolved
    return resolved


def query_profile(
    request: Request,
    profile: Optional[str] = None,
    service: GatewayService = Depends(get_service)
) -> str:
    """Profile from the ?profile= query parameter, defaulting to the current one."""
    return resolve_profile(request, service, profile)
