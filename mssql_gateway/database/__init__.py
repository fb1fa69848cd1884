"""
Database module - Read-only SQL Server access layer.

This module handles:
- Connection pools per environment profile
- SQL guarding (read-only classification, row limits, timeouts)
- Table metadata assembly from catalog views
- Guarded query execution
"""
from mssql_gateway.database.connection_manager import (
    ConnectionPoolManager,
    ConnectionPool,
    ConnectionProfile,
    AUTH_INTEGRATED,
    AUTH_CREDENTIALED,
)
from mssql_gateway.database.query_guard import (
    StatementClassification,
    classify,
    ensure_read_only,
    apply_row_limit,
    apply_timeout,
)
from mssql_gateway.database.schema import (
    SchemaAssembler,
    CatalogInspector,
    TableDescription,
    ColumnDescriptor,
    IndexDescriptor,
    ForeignKeyDescriptor,
)
from mssql_gateway.database.executor import QueryExecutor, QueryResult

__all__ = [
    # Connections
    "ConnectionPoolManager",
    "ConnectionPool",
    "ConnectionProfile",
    "AUTH_INTEGRATED",
    "AUTH_CREDENTIALED",
    # Guard
    "StatementClassification",
    "classify",
    "ensure_read_only",
    "apply_row_limit",
    "apply_timeout",
    # Schema
    "SchemaAssembler",
    "CatalogInspector",
    "TableDescription",
    "ColumnDescriptor",
    "IndexDescriptor",
    "ForeignKeyDescriptor",
    # Executor
    "QueryExecutor",
    "QueryResult",
]
