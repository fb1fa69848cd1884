"""
Schema Routes - API endpoints for catalog metadata.

These endpoints allow:
- Listing databases, tables, views and stored procedures
- Reading object definitions
- Describing one table (columns, keys, indexes, foreign keys, triggers)
- Sampling rows and reading storage statistics of one table
- Listing foreign key relationships
"""
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query

from mssql_gateway.api.deps import get_service, query_profile
from mssql_gateway.core.logging_config import get_logger
from mssql_gateway.models.gateway import (
    DefinitionResponse,
    ForeignKeyModel,
    QueryResponse,
    TableDescriptionResponse,
    TableStatisticsResponse,
)
from mssql_gateway.services.gateway_service import GatewayService

logger = get_logger(__name__)

router = APIRouter(
    prefix="/schema",
    tags=["Schema"],
)


@router.get(
    "/databases",
    summary="List databases",
    description="Databases on the profile's server; master, tempdb, model and msdb only with include_system."
)
def list_databases(
    include_system: bool = False,
    profile: str = Depends(query_profile),
    service: GatewayService = Depends(get_service)
) -> List[Dict[str, Any]]:
    return service.list_databases(include_system=include_system, profile=profile)


@router.get("/tables", summary="List tables")
def list_tables(
    schema: Optional[str] = None,
    include_system: bool = False,
    profile: str = Depends(query_profile),
    service: GatewayService = Depends(get_service)
) -> List[Dict[str, Any]]:
    return service.list_tables(schema=schema, include_system=include_system, profile=profile)


@router.get("/views", summary="List views")
def list_views(
    schema: Optional[str] = None,
    profile: str = Depends(query_profile),
    service: GatewayService = Depends(get_service)
) -> List[Dict[str, Any]]:
    return service.list_views(schema=schema, profile=profile)


@router.get("/procedures", summary="List stored procedures")
def list_procedures(
    schema: Optional[str] = None,
    pattern: Optional[str] = None,
    profile: str = Depends(query_profile),
    service: GatewayService = Depends(get_service)
) -> List[Dict[str, Any]]:
    return service.list_procedures(schema=schema, pattern=pattern, profile=profile)


@router.get(
    "/definition/{schema}/{name}",
    response_model=DefinitionResponse,
    summary="Get an object definition",
    description="T-SQL source of a view, stored procedure, function or trigger."
)
def get_definition(
    schema: str,
    name: str,
    profile: str = Depends(query_profile),
    service: GatewayService = Depends(get_service)
) -> DefinitionResponse:
    definition = service.get_object_definition(schema, name, profile=profile)
    return DefinitionResponse(schema_name=schema, name=name, definition=definition)


@router.get(
    "/relationships",
    response_model=List[ForeignKeyModel],
    summary="List foreign key relationships",
    description="""
    All foreign keys, or only those where the table is owner or target.

    Pass schema together with table to tell apart same-named tables in
    different schemas.
    """
)
def get_relationships(
    table: Optional[str] = None,
    schema: Optional[str] = None,
    profile: str = Depends(query_profile),
    service: GatewayService = Depends(get_service)
) -> List[ForeignKeyModel]:
    foreign_keys = service.get_relationships(table=table, schema=schema, profile=profile)
    return [ForeignKeyModel.from_descriptor(fk) for fk in foreign_keys]


@router.get(
    "/tables/{schema}/{table}",
    response_model=TableDescriptionResponse,
    summary="Describe a table",
    description="""
    Columns, primary key, indexes, foreign keys in both directions and triggers.

    Returns 404 when the table does not exist and 409 when the catalog
    changed while it was being read.
    """
)
def describe_table(
    schema: str,
    table: str,
    profile: str = Depends(query_profile),
    service: GatewayService = Depends(get_service)
) -> TableDescriptionResponse:
    logger.info(f"Describe requested for {schema}.{table}")
    description = service.describe_table(schema, table, profile=profile)
    return TableDescriptionResponse.from_description(description)


@router.get(
    "/tables/{schema}/{table}/sample",
    response_model=QueryResponse,
    summary="Sample table rows",
    description="First rows of a table, optionally ordered by one column. The limit is capped at MAX_ROWS_LIMIT."
)
def sample_data(
    schema: str,
    table: str,
    limit: Optional[int] = Query(default=None, ge=1),
    order_by: Optional[str] = None,
    descending: bool = False,
    profile: str = Depends(query_profile),
    service: GatewayService = Depends(get_service)
) -> QueryResponse:
    result = service.sample_data(
        schema, table, limit=limit, order_by=order_by, descending=descending, profile=profile
    )
    return QueryResponse(**result.to_dict())


@router.get(
    "/tables/{schema}/{table}/statistics",
    response_model=TableStatisticsResponse,
    summary="Table storage statistics",
    description="Row count, data and index size, compression and partition count."
)
def table_statistics(
    schema: str,
    table: str,
    profile: str = Depends(query_profile),
    service: GatewayService = Depends(get_service)
) -> TableStatisticsResponse:
    stats = service.table_statistics(schema, table, profile=profile).to_dict()
    stats["schema_name"] = stats.pop("schema")
    return TableStatisticsResponse(**stats)
