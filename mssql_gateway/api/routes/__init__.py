"""
API Routes module - Endpoint definitions.

Each file in this module defines routes for a specific domain:
- health.py     : Health check endpoints
- connection.py : Connection profiles and pool status
- schema.py     : Catalog browsing and table descriptions
- query.py      : Guarded read-only query execution
"""
from mssql_gateway.api.routes.health import router as health_router
from mssql_gateway.api.routes.connection import router as connection_router
from mssql_gateway.api.routes.schema import router as schema_router
from mssql_gateway.api.routes.query import router as query_router

__all__ = [
    "health_router",
    "connection_router",
    "schema_router",
    "query_router",
]
