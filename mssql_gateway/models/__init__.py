"""
Models module - Pydantic schemas for data validation.

This module defines:
- Request models: Input validation for API endpoints
- Response models: Output formatting for API responses
"""
from mssql_gateway.models.gateway import (
    QueryRequest,
    QueryResponse,
    ScalarResponse,
    SwitchProfileRequest,
    TableDescriptionResponse,
    ForeignKeyModel,
    DefinitionResponse,
    StatementRequest,
    ExplainResponse,
    SyntaxCheckResponse,
    TableStatisticsResponse,
    HealthResponse,
    ErrorResponse,
)

__all__ = [
    "QueryRequest",
    "QueryResponse",
    "ScalarResponse",
    "SwitchProfileRequest",
    "TableDescriptionResponse",
    "ForeignKeyModel",
    "DefinitionResponse",
    "StatementRequest",
    "ExplainResponse",
    "SyntaxCheckResponse",
    "TableStatisticsResponse",
    "HealthResponse",
    "ErrorResponse",
]
