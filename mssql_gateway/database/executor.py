"""
Query Executor - Guarded read-only query execution.

This module is the only path by which caller-supplied SQL reaches a pool:
1. QueryGuard classifies the text (rejections are raised, never fixed up)
2. A TOP row limit is injected when the text has none
3. The statement runs with an explicit timeout
4. Rows, columns and timing are returned as a QueryResult
"""
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from mssql_gateway.core.exceptions import DatabaseError
from mssql_gateway.core.logging_config import get_logger
from mssql_gateway.database.query_guard import (
    MAX_QUERY_LENGTH,
    apply_row_limit,
    ensure_read_only,
    has_row_limit,
)

logger = get_logger(__name__)

DEFAULT_MAX_ROWS = 1000


@dataclass
class QueryResult:
    """
    Result of a guarded query.

    Attributes:
        columns: List of column names
        rows: List of rows as dictionaries
        row_count: Number of rows returned
        execution_time_ms: Query execution time in milliseconds
        sql: The statement actually sent to the server
        row_limit: TOP value injected by the gateway, None if the text had its own
    """
    columns: List[str]
    rows: List[Dict[str, Any]]
    row_count: int
    execution_time_ms: float
    sql: str
    row_limit: Optional[int] = None
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "columns": self.columns,
            "rows": self.rows,
            "row_count": self.row_count,
            "execution_time_ms": round(self.execution_time_ms, 2),
            "sql": self.sql,
            "row_limit": self.row_limit,
            "warnings": self.warnings,
        }


class QueryExecutor:
    """
    Executes read-only SQL through a ConnectionPool.

    Example:
        >>> executor = QueryExecutor(max_rows=100)
        >>> result = executor.execute_query(pool, "SELECT name FROM sys.tables")
        >>> result.sql
        'SELECT TOP 100 name FROM sys.tables'
    """

    def __init__(
        self,
        max_rows: int = DEFAULT_MAX_ROWS,
        timeout_seconds: Optional[int] = None,
        max_query_length: int = MAX_QUERY_LENGTH
    ):
        """
        Initialize query executor.

        Args:
            max_rows: Default row limit injected into queries
            timeout_seconds: Default deadline; None uses the pool's own
            max_query_length: Longest SQL text accepted
        """
        self.max_rows = max_rows
        self.timeout_seconds = timeout_seconds
        self.max_query_length = max_query_length
        logger.info(f"QueryExecutor initialized (max_rows={max_rows})")

    def execute_query(
        self,
        pool,
        sql: str,
        max_rows: Optional[int] = None,
        timeout_seconds: Optional[int] = None
    ) -> QueryResult:
        """
        Validate, limit and execute a query.

        Args:
            pool: ConnectionPool to run on
            sql: Raw SQL text
            max_rows: Row limit for this call (defaults to the executor's)
            timeout_seconds: Deadline for this call

        Returns:
            QueryResult

        Raises:
            RejectedStatementError: If the text is not read-only
            QueryTimeoutError: If the deadline expires
            DatabaseError: On other driver failures
        """
        ensure_read_only(sql, max_length=self.max_query_length)

        limit = max_rows or self.max_rows
        warnings = []
        row_limit = None
        final_sql = sql
        if not has_row_limit(sql):
            final_sql = apply_row_limit(sql, limit)
            if final_sql != sql:
                row_limit = limit
                warnings.append(f"Added TOP {limit} for safety")

        logger.info(f"Executing query: {final_sql[:100]}...")
        start_time = time.perf_counter()

        columns, rows = pool.execute(final_sql, timeout_seconds=timeout_seconds or self.timeout_seconds)

        execution_time = (time.perf_counter() - start_time) * 1000
        logger.info(f"Query completed: {len(rows)} rows in {execution_time:.2f}ms")

        return QueryResult(
            columns=columns,
            rows=rows,
            row_count=len(rows),
            execution_time_ms=execution_time,
            sql=final_sql,
            row_limit=row_limit,
            warnings=warnings,
        )

    def execute_scalar(self, pool, sql: str, timeout_seconds: Optional[int] = None) -> Any:
        """
        Execute a query and return the first column of the first row.

        Raises:
            RejectedStatementError: If the text is not read-only
            DatabaseError: If the query returns no rows
        """
        ensure_read_only(sql, max_length=self.max_query_length)

        columns, rows = pool.execute(sql, timeout_seconds=timeout_seconds or self.timeout_seconds)
        if not rows or not columns:
            raise DatabaseError("Query returned no results")
        return rows[0][columns[0]]
