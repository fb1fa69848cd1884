"""
API module - FastAPI routes and HTTP handling.

This module handles:
- Request validation and parsing
- Response formatting
- Mapping gateway errors to HTTP responses
- Route definitions
"""
from mssql_gateway.api.main import app, create_app

__all__ = ["app", "create_app"]
