"""
Query Routes - Guarded read-only query execution.

Every statement passes the read-only guard before it is sent.
Rejected statements return 400 rejected_statement and must not be
rewritten and resubmitted automatically.
"""
from fastapi import APIRouter, Depends, Request

from mssql_gateway.api.deps import get_service, resolve_profile
from mssql_gateway.core.logging_config import get_logger
from mssql_gateway.models.gateway import (
    ExplainResponse,
    QueryRequest,
    QueryResponse,
    ScalarResponse,
    StatementRequest,
    SyntaxCheckResponse,
)
from mssql_gateway.services.gateway_service import GatewayService

logger = get_logger(__name__)

router = APIRouter(
    prefix="/query",
    tags=["Query"],
)


@router.post(
    "",
    response_model=QueryResponse,
    summary="Execute a read-only query",
    description="""
    Execute a SELECT, WITH or EXPLAIN statement.

    A TOP row limit is added when the query has none; every query runs
    with the configured timeout (504 query_timeout on expiry).
    """
)
def execute_query(
    request: QueryRequest,
    http_request: Request,
    service: GatewayService = Depends(get_service)
) -> QueryResponse:
    profile = resolve_profile(http_request, service, request.profile)
    result = service.execute_query(request.sql, profile=profile, max_rows=request.max_rows)
    return QueryResponse(**result.to_dict())


@router.post(
    "/scalar",
    response_model=ScalarResponse,
    summary="Execute a scalar query",
    description="Returns the first column of the first row."
)
def execute_scalar(
    request: QueryRequest,
    http_request: Request,
    service: GatewayService = Depends(get_service)
) -> ScalarResponse:
    profile = resolve_profile(http_request, service, request.profile)
    return ScalarResponse(value=service.execute_scalar(request.sql, profile=profile))


@router.post(
    "/explain",
    response_model=ExplainResponse,
    summary="Get an estimated execution plan",
    description="""
    Returns the SHOWPLAN_XML estimated plan with total cost and row estimate.

    The statement is compiled but not executed.
    """
)
def explain_query(
    request: StatementRequest,
    http_request: Request,
    service: GatewayService = Depends(get_service)
) -> ExplainResponse:
    profile = resolve_profile(http_request, service, request.profile)
    return ExplainResponse(**service.explain_query(request.sql, profile=profile).to_dict())


@router.post(
    "/validate",
    response_model=SyntaxCheckResponse,
    summary="Check query syntax",
    description="""
    Parses the statement on the server without compiling or running it.

    A parse error is a 200 response with valid=false; statements the guard
    rejects still return 400 rejected_statement.
    """
)
def validate_syntax(
    request: StatementRequest,
    http_request: Request,
    service: GatewayService = Depends(get_service)
) -> SyntaxCheckResponse:
    profile = resolve_profile(http_request, service, request.profile)
    check = service.validate_syntax(request.sql, profile=profile)
    return SyntaxCheckResponse(valid=check.valid, errors=check.errors)
