"""
Services module - Orchestration over named connection profiles.

Services contain the gateway's entry points:
- No HTTP concerns (those belong in api/)
- No SQL text of their own (that belongs in database/)
"""
from mssql_gateway.services.gateway_service import GatewayService

__all__ = [
    "GatewayService",
]
