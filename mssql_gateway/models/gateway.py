"""
Request and Response models for the gateway API.

These Pydantic models define the contract between tool clients and the server.
They provide:
- Type validation
- Automatic documentation
- Request/response serialization
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from mssql_gateway.database.schema import ForeignKeyDescriptor, TableDescription


class QueryRequest(BaseModel):
    """
    Request model for the /query endpoints.

    Attributes:
        sql: Read-only SQL text (SELECT, WITH, EXPLAIN)
        profile: Connection profile name; the current profile when omitted
        max_rows: Row limit injected when the query has none
    """
    sql: str = Field(
        ...,
        min_length=1,
        description="Read-only SQL query to execute",
        examples=["SELECT name, create_date FROM sys.tables"]
    )
    profile: Optional[str] = Field(
        default=None,
        description="Connection profile name"
    )
    max_rows: Optional[int] = Field(
        default=None,
        ge=1,
        description="Maximum rows to return"
    )


class QueryResponse(BaseModel):
    """Response from query execution."""
    columns: List[str]
    rows: List[Dict[str, Any]]
    row_count: int
    execution_time_ms: float
    sql: str = Field(..., description="Statement actually sent to the server")
    row_limit: Optional[int] = Field(default=None, description="TOP value added by the gateway")
    warnings: List[str] = Field(default_factory=list)


class ScalarResponse(BaseModel):
    """Response from scalar query execution."""
    value: Any = None


class SwitchProfileRequest(BaseModel):
    """Request to change the current connection profile."""
    profile: str = Field(..., min_length=1, description="Configured profile name")


class ColumnModel(BaseModel):
    name: str
    data_type: str
    max_length: Optional[int] = None
    precision: Optional[int] = None
    scale: Optional[int] = None
    nullable: bool
    is_identity: bool
    default_expression: Optional[str] = None


class IndexModel(BaseModel):
    name: str
    kind: Optional[str] = None
    is_unique: bool
    is_primary_key: bool
    key_columns: List[str]
    included_columns: List[str]
    filter_expression: Optional[str] = None


class ForeignKeyModel(BaseModel):
    name: str
    owner_schema: str
    owner_table: str
    owner_columns: List[str]
    target_schema: str
    target_table: str
    target_columns: List[str]
    on_delete: str
    on_update: str

    @classmethod
    def from_descriptor(cls, fk: ForeignKeyDescriptor) -> "ForeignKeyModel":
        return cls(
            name=fk.name,
            owner_schema=fk.owner_schema,
            owner_table=fk.owner_table,
            owner_columns=list(fk.owner_columns),
            target_schema=fk.target_schema,
            target_table=fk.target_table,
            target_columns=list(fk.target_columns),
            on_delete=fk.on_delete,
            on_update=fk.on_update,
        )


class TableDescriptionResponse(BaseModel):
    """
    Response model for the describe endpoint.

    Sets are returned as sorted lists.
    """
    schema_name: str = Field(..., description="Schema the table belongs to")
    table: str
    columns: List[ColumnModel]
    primary_key_column_names: List[str]
    indexes: List[IndexModel]
    outbound_foreign_keys: List[ForeignKeyModel]
    inbound_foreign_keys: List[ForeignKeyModel]
    trigger_names: List[str]

    @classmethod
    def from_description(cls, description: TableDescription) -> "TableDescriptionResponse":
        return cls(
            schema_name=description.schema,
            table=description.table,
            columns=[
                ColumnModel(
                    name=c.name,
                    data_type=c.data_type,
                    max_length=c.max_length,
                    precision=c.precision,
                    scale=c.scale,
                    nullable=c.nullable,
                    is_identity=c.is_identity,
                    default_expression=c.default_expression,
                )
                for c in description.columns
            ],
            primary_key_column_names=sorted(description.primary_key_column_names),
            indexes=[
                IndexModel(
                    name=i.name,
                    kind=i.kind,
                    is_unique=i.is_unique,
                    is_primary_key=i.is_primary_key,
                    key_columns=list(i.key_columns),
                    included_columns=list(i.included_columns),
                    filter_expression=i.filter_expression,
                )
                for i in description.indexes
            ],
            outbound_foreign_keys=[ForeignKeyModel.from_descriptor(fk) for fk in description.outbound_foreign_keys],
            inbound_foreign_keys=[ForeignKeyModel.from_descriptor(fk) for fk in description.inbound_foreign_keys],
            trigger_names=sorted(description.trigger_names),
        )


class StatementRequest(BaseModel):
    """Request model for /query/explain and /query/validate."""
    sql: str = Field(
        ...,
        min_length=1,
        description="Read-only SQL query to inspect without running it",
        examples=["SELECT * FROM dbo.Orders WHERE CustomerId = 42"]
    )
    profile: Optional[str] = Field(default=None, description="Connection profile name")


class ExplainResponse(BaseModel):
    """Estimated execution plan."""
    plan_xml: str = Field(..., description="SHOWPLAN_XML document")
    estimated_cost: float
    estimated_rows: Optional[float] = None
    statement_count: int
    warnings: List[str] = Field(default_factory=list)


class SyntaxCheckResponse(BaseModel):
    """Outcome of a parse-only syntax check."""
    valid: bool
    errors: List[str] = Field(default_factory=list)


class TableStatisticsResponse(BaseModel):
    """Storage statistics of one table; sizes in megabytes."""
    schema_name: str
    table: str
    row_count: int
    data_size_mb: float
    index_size_mb: float
    total_size_mb: float
    last_stats_update: Optional[datetime] = None
    is_compressed: bool
    partition_count: int


class DefinitionResponse(BaseModel):
    """T-SQL source of a schema object."""
    schema_name: str
    name: str
    definition: str


class HealthResponse(BaseModel):
    """Response model for the /health endpoint."""
    status: str = Field(default="healthy")
    version: str
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    active_pools: Optional[int] = None


class ErrorResponse(BaseModel):
    """Standard error response model."""
    error: str
    message: str
    details: Optional[str] = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)
