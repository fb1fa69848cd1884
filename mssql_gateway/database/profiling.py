"""
Table Profiler - Sample rows and storage statistics for one table.

Schema and table names cannot be bound as parameters in a FROM clause, so
sample_data() first confirms the table exists through a parameterized
OBJECT_ID lookup and then quotes every identifier with quote_identifier().
"""
import time
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from mssql_gateway.core.exceptions import NotFoundError
from mssql_gateway.core.logging_config import LoggerMixin
from mssql_gateway.database.executor import QueryResult

TABLE_EXISTS_SQL = """
SELECT OBJECT_ID(QUOTENAME(:schema) + '.' + QUOTENAME(:table), 'U') AS object_id
"""

TABLE_STATISTICS_SQL = """
SELECT
    SUM(CASE WHEN i.index_id IN (0, 1) THEN p.rows ELSE 0 END) AS row_count,
    SUM(CASE WHEN i.index_id IN (0, 1) THEN a.total_pages * 8.0 / 1024 ELSE 0 END) AS data_size_mb,
    SUM(CASE WHEN i.index_id > 1 THEN a.total_pages * 8.0 / 1024 ELSE 0 END) AS index_size_mb,
    SUM(a.total_pages * 8.0 / 1024) AS total_size_mb,
    (SELECT MAX(sp.last_updated)
     FROM sys.stats st
     CROSS APPLY sys.dm_db_stats_properties(st.object_id, st.stats_id) sp
     WHERE st.object_id = t.object_id) AS last_stats_update,
    MAX(CASE WHEN p.data_compression > 0 THEN 1 ELSE 0 END) AS is_compressed,
    COUNT(DISTINCT p.partition_number) AS partition_count
FROM sys.tables t
INNER JOIN sys.schemas s ON t.schema_id = s.schema_id
INNER JOIN sys.indexes i ON t.object_id = i.object_id
INNER JOIN sys.partitions p ON i.object_id = p.object_id AND i.index_id = p.index_id
INNER JOIN sys.allocation_units a ON p.partition_id = a.container_id
WHERE s.name = :schema AND t.name = :table
GROUP BY t.object_id
"""

DEFAULT_SAMPLE_ROWS = 10


def quote_identifier(name: str) -> str:
    """Bracket-quote a SQL Server identifier, doubling any closing bracket."""
    if not name:
        raise ValueError("Identifier must not be empty")
    return "[" + name.replace("]", "]]") + "]"


@dataclass
class TableStatistics:
    """Storage statistics of one table; sizes in megabytes."""
    schema: str
    table: str
    row_count: int
    data_size_mb: float
    index_size_mb: float
    total_size_mb: float
    last_stats_update: Optional[datetime]
    is_compressed: bool
    partition_count: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class TableProfiler(LoggerMixin):
    """
    Reads sample rows and storage statistics.

    Example:
        >>> profiler = TableProfiler()
        >>> result = profiler.sample_data(pool, "dbo", "Orders", limit=5, order_by="OrderDate", descending=True)
        >>> result.sql
        'SELECT TOP (:limit) * FROM [dbo].[Orders] ORDER BY [OrderDate] DESC'
    """

    def __init__(self, timeout_seconds: Optional[int] = None):
        self.timeout_seconds = timeout_seconds

    def _ensure_table(self, pool, schema: str, table: str) -> None:
        rows = pool.fetch_all(TABLE_EXISTS_SQL, {"schema": schema, "table": table})
        if not rows or rows[0].get("object_id") is None:
            raise NotFoundError("Table", f"{schema}.{table}")

    def sample_data(
        self,
        pool,
        schema: str,
        table: str,
        limit: int = DEFAULT_SAMPLE_ROWS,
        order_by: Optional[str] = None,
        descending: bool = False
    ) -> QueryResult:
        """
        Return the first rows of a table.

        Args:
            pool: ConnectionPool to read from
            schema: Schema name
            table: Table name
            limit: Number of rows (TOP)
            order_by: Column to sort by; unordered when None
            descending: Sort order for order_by

        Returns:
            QueryResult with row_limit set to limit

        Raises:
            ValueError: If limit is not positive
            NotFoundError: If the table does not exist
        """
        if limit < 1:
            raise ValueError("limit must be a positive integer")

        self._ensure_table(pool, schema, table)

        sql = f"SELECT TOP (:limit) * FROM {quote_identifier(schema)}.{quote_identifier(table)}"
        if order_by:
            sql += f" ORDER BY {quote_identifier(order_by)}" + (" DESC" if descending else "")

        self.logger.info(f"Sampling {limit} rows from {schema}.{table}")
        start_time = time.perf_counter()
        columns, rows = pool.execute(sql, {"limit": limit}, timeout_seconds=self.timeout_seconds)
        execution_time = (time.perf_counter() - start_time) * 1000

        return QueryResult(
            columns=columns,
            rows=rows,
            row_count=len(rows),
            execution_time_ms=execution_time,
            sql=sql,
            row_limit=limit,
        )

    def table_statistics(self, pool, schema: str, table: str) -> TableStatistics:
        """
        Row count, data/index sizes, compression and partitioning of a table.

        Raises:
            NotFoundError: If the table does not exist
        """
        rows = pool.fetch_all(TABLE_STATISTICS_SQL, {"schema": schema, "table": table})
        if not rows:
            raise NotFoundError("Table", f"{schema}.{table}")

        stats = rows[0]
        return TableStatistics(
            schema=schema,
            table=table,
            row_count=int(stats.get("row_count") or 0),
            data_size_mb=float(stats.get("data_size_mb") or 0),
            index_size_mb=float(stats.get("index_size_mb") or 0),
            total_size_mb=float(stats.get("total_size_mb") or 0),
            last_stats_update=stats.get("last_stats_update"),
            is_compressed=bool(stats.get("is_compressed")),
            partition_count=int(stats.get("partition_count") or 0),
        )
