"""
Gateway Service - Orchestrates guarded database access per named profile.

This service is the boundary tool handlers call into:
1. Resolve a profile name (or the current profile) to a ConnectionProfile
2. Acquire the profile's pool from the ConnectionPoolManager
3. Run guarded queries or catalog reads on it
4. Return result structures or raise typed gateway errors

It never formats output; serialization belongs to the caller.
"""
import threading
from typing import Any, Dict, List, Optional

from mssql_gateway.core.config import Settings, load_profiles
from mssql_gateway.core.exceptions import ProfileNotFoundError
from mssql_gateway.core.logging_config import get_logger
from mssql_gateway.database.connection_manager import (
    ConnectionPool,
    ConnectionPoolManager,
    ConnectionProfile,
)
from mssql_gateway.database.diagnostics import ExecutionPlan, QueryDiagnostics, SyntaxCheck
from mssql_gateway.database.executor import QueryExecutor, QueryResult
from mssql_gateway.database.profiling import DEFAULT_SAMPLE_ROWS, TableProfiler, TableStatistics
from mssql_gateway.database.schema import (
    CatalogInspector,
    ForeignKeyDescriptor,
    SchemaAssembler,
    TableDescription,
)

logger = get_logger(__name__)


class GatewayService:
    """
    Facade over pools, the query executor and the schema assembler.

    Example:
        >>> service = GatewayService.from_settings(get_settings())
        >>> result = service.execute_query("SELECT name FROM sys.tables", profile="staging")
        >>> description = service.describe_table("dbo", "Orders")
    """

    def __init__(
        self,
        settings: Settings,
        profiles: Dict[str, ConnectionProfile],
        manager: Optional[ConnectionPoolManager] = None
    ):
        """
        Initialize the service.

        Args:
            settings: Gateway settings (limits, default profile)
            profiles: Connection profiles by name
            manager: Pool manager; a new one is created if not provided
        """
        if not profiles:
            raise ValueError("At least one connection profile is required")

        self.settings = settings
        self._profiles = dict(profiles)
        self.manager = manager or ConnectionPoolManager(
            odbc_driver=settings.odbc_driver,
            query_timeout_seconds=settings.query_timeout_seconds,
        )
        self.executor = QueryExecutor(
            max_rows=settings.max_rows,
            timeout_seconds=settings.query_timeout_seconds,
            max_query_length=settings.max_query_length,
        )
        self.diagnostics = QueryDiagnostics(
            timeout_seconds=settings.query_timeout_seconds,
            max_query_length=settings.max_query_length,
        )
        self.assembler = SchemaAssembler()
        self.inspector = CatalogInspector()
        self.profiler = TableProfiler(timeout_seconds=settings.query_timeout_seconds)

        default = settings.default_profile if settings.default_profile in self._profiles else next(iter(self._profiles))
        self._current_profile = default
        self._current_lock = threading.Lock()

        logger.info(
            f"GatewayService initialized with {len(self._profiles)} profile(s), "
            f"current profile '{self._current_profile}'"
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "GatewayService":
        """Build a service with profiles read from the environment."""
        return cls(settings, load_profiles(settings.profile_names))

    # ------------------------------------------------------------
    # Profiles
    # ------------------------------------------------------------

    @property
    def current_profile(self) -> str:
        return self._current_profile

    def list_profiles(self) -> List[Dict[str, Any]]:
        """All profiles with passwords masked, marking the current one."""
        return [
            {**profile.to_safe_dict(), "current": name == self._current_profile}
            for name, profile in self._profiles.items()
        ]

    def get_profile(self, name: Optional[str] = None) -> ConnectionProfile:
        """
        Resolve a profile name; None means the current profile.

        Raises:
            ProfileNotFoundError: If the name is not configured
        """
        profile_name = name or self._current_profile
        profile = self._profiles.get(profile_name)
        if profile is None:
            raise ProfileNotFoundError(profile_name)
        return profile

    def switch_profile(self, name: str) -> ConnectionProfile:
        """Make another configured profile the current one."""
        profile = self.get_profile(name)
        with self._current_lock:
            previous = self._current_profile
            self._current_profile = name
        logger.info(f"Switched current profile from '{previous}' to '{name}'")
        return profile

    def connection_info(self, name: Optional[str] = None) -> Dict[str, Any]:
        """Masked profile settings plus pool status, if a pool exists."""
        profile = self.get_profile(name)
        return {
            "profile": profile.to_safe_dict(),
            "connection": profile.describe(),
            "pool": self.manager.get_pool_info(profile),
        }

    def acquire(self, name: Optional[str] = None) -> ConnectionPool:
        """Get a connected pool for a profile."""
        return self.manager.acquire(self.get_profile(name))

    # ------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------

    def execute_query(
        self,
        sql: str,
        profile: Optional[str] = None,
        max_rows: Optional[int] = None
    ) -> QueryResult:
        """Run a guarded read-only query; max_rows is capped at MAX_ROWS_LIMIT."""
        limit = min(max_rows or self.settings.max_rows, self.settings.max_rows_limit)
        pool = self.acquire(profile)
        return self.executor.execute_query(pool, sql, max_rows=limit)

    def execute_scalar(self, sql: str, profile: Optional[str] = None) -> Any:
        """Run a guarded query and return a single value."""
        pool = self.acquire(profile)
        return self.executor.execute_scalar(pool, sql)

    def explain_query(self, sql: str, profile: Optional[str] = None) -> ExecutionPlan:
        """Estimated execution plan of a guarded read-only query."""
        return self.diagnostics.explain_query(self.acquire(profile), sql)

    def validate_syntax(self, sql: str, profile: Optional[str] = None) -> SyntaxCheck:
        """Parse a guarded read-only query without running it."""
        return self.diagnostics.validate_syntax(self.acquire(profile), sql)

    # ------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------

    def list_databases(self, include_system: bool = False, profile: Optional[str] = None) -> List[Dict[str, Any]]:
        return self.inspector.list_databases(self.acquire(profile), include_system=include_system)

    def describe_table(self, schema: str, table: str, profile: Optional[str] = None) -> TableDescription:
        pool = self.acquire(profile)
        return self.assembler.describe_table(pool, schema, table)

    def list_tables(
        self,
        schema: Optional[str] = None,
        include_system: bool = False,
        profile: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        return self.inspector.list_tables(self.acquire(profile), schema=schema, include_system=include_system)

    def list_views(self, schema: Optional[str] = None, profile: Optional[str] = None) -> List[Dict[str, Any]]:
        return self.inspector.list_views(self.acquire(profile), schema=schema)

    def list_procedures(
        self,
        schema: Optional[str] = None,
        pattern: Optional[str] = None,
        profile: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        return self.inspector.list_procedures(self.acquire(profile), schema=schema, pattern=pattern)

    def get_object_definition(self, schema: str, name: str, profile: Optional[str] = None) -> str:
        return self.inspector.get_object_definition(self.acquire(profile), schema, name)

    def get_relationships(
        self,
        table: Optional[str] = None,
        schema: Optional[str] = None,
        profile: Optional[str] = None
    ) -> List[ForeignKeyDescriptor]:
        return self.inspector.get_relationships(self.acquire(profile), table=table, schema=schema)

    def sample_data(
        self,
        schema: str,
        table: str,
        limit: Optional[int] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        profile: Optional[str] = None
    ) -> QueryResult:
        """First rows of a table; limit is capped at MAX_ROWS_LIMIT."""
        rows = min(limit or DEFAULT_SAMPLE_ROWS, self.settings.max_rows_limit)
        return self.profiler.sample_data(
            self.acquire(profile), schema, table, limit=rows, order_by=order_by, descending=descending
        )

    def table_statistics(self, schema: str, table: str, profile: Optional[str] = None) -> TableStatistics:
        return self.profiler.table_statistics(self.acquire(profile), schema, table)

    def shutdown(self) -> None:
        """Close every pool. Called once at process exit."""
        self.manager.shutdown()
