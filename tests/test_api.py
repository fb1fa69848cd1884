"""Tests for the HTTP API: routing, response shapes and error mapping."""

import logging

import pytest
from fastapi.testclient import TestClient

from mssql_gateway.api.main import create_app
from mssql_gateway.core.audit import audit_level
from mssql_gateway.core.config import build_settings
from mssql_gateway.core.exceptions import DatabaseError
from mssql_gateway.database import profiling, schema
from mssql_gateway.services.gateway_service import GatewayService

from .conftest import FakeCatalogPool, FakePoolManager


@pytest.fixture
def pool():
    return FakeCatalogPool(
        catalog={
            schema.COLUMNS_SQL: [
                {"name": "id", "data_type": "int", "is_nullable": False, "is_identity": True, "column_id": 1},
                {"name": "Status", "data_type": "nvarchar", "is_nullable": True, "column_id": 2},
            ],
            schema.PRIMARY_KEY_SQL: [{"name": "id", "key_ordinal": 1}],
            schema.TRIGGERS_SQL: [{"name": "trg_b"}, {"name": "trg_a"}],
        },
        columns=["id"],
        rows=[{"id": 1}],
    )


@pytest.fixture
def manager(pool):
    return FakePoolManager(pool)


@pytest.fixture
def client(profiles, manager):
    settings = build_settings({"MSSQL_PROFILES": "local,staging", "ENABLE_AUDIT_LOGGING": "true"})
    service = GatewayService(settings, profiles, manager=manager)
    with TestClient(create_app(settings=settings, service=service)) as test_client:
        yield test_client


def test_health(client) -> None:
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert "X-Response-Time" in response.headers


def test_readiness_connects_profile(client, manager) -> None:
    response = client.get("/health/ready", params={"profile": "staging"})

    assert response.status_code == 200
    assert manager.acquired[-1].name == "staging"


def test_query_returns_rows_and_injected_limit(client, pool) -> None:
    response = client.post("/query", json={"sql": "SELECT id FROM Orders", "max_rows": 10})

    body = response.json()
    assert response.status_code == 200
    assert body["rows"] == [{"id": 1}]
    assert body["sql"] == "SELECT TOP 10 id FROM Orders"
    assert body["row_limit"] == 10


def test_write_statement_is_rejected_with_400(client, pool) -> None:
    response = client.post("/query", json={"sql": "DROP TABLE Orders"})

    assert response.status_code == 400
    assert response.json()["error"] == "rejected_statement"
    assert pool.executed == []


def test_scalar_query(client) -> None:
    response = client.post("/query/scalar", json={"sql": "SELECT TOP 1 id FROM Orders"})

    assert response.json() == {"value": 1}


def test_unknown_profile_is_404(client) -> None:
    response = client.post("/query", json={"sql": "SELECT 1", "profile": "production"})

    assert response.status_code == 404
    assert response.json()["error"] == "profile_not_found"


def test_switch_profile(client) -> None:
    response = client.post("/connections/switch", json={"profile": "staging"})

    assert response.status_code == 200
    assert response.json()["profile"]["password"] == "***REDACTED***"

    current = client.get("/connections/current").json()
    assert current["profile"]["name"] == "staging"


def test_profiles_are_listed_masked(client) -> None:
    body = client.get("/connections").json()

    assert {p["name"] for p in body} == {"local", "staging"}
    assert "secret" not in str(body)


def test_describe_table(client) -> None:
    response = client.get("/schema/tables/dbo/Orders")

    body = response.json()
    assert response.status_code == 200
    assert body["schema_name"] == "dbo"
    assert [c["name"] for c in body["columns"]] == ["id", "Status"]
    assert body["primary_key_column_names"] == ["id"]
    assert body["trigger_names"] == ["trg_a", "trg_b"]


def test_describe_missing_table_is_404(client, pool) -> None:
    pool.catalog[schema.COLUMNS_SQL] = []

    response = client.get("/schema/tables/dbo/Nope")

    assert response.status_code == 404
    assert response.json()["error"] == "not_found"


def test_missing_definition_is_404(client) -> None:
    response = client.get("/schema/definition/dbo/vw_Missing")

    assert response.status_code == 404


def test_shutdown_closes_pools(profiles, manager) -> None:
    settings = build_settings({"MSSQL_PROFILES": "local,staging"})
    service = GatewayService(settings, profiles, manager=manager)

    with TestClient(create_app(settings=settings, service=service)):
        pass

    assert manager.shut_down


def _audit_lines(caplog):
    return [r for r in caplog.records if r.name == "mssql_gateway.core.audit"]


def test_audit_logs_profile_from_json_body_and_error_code(client, caplog) -> None:
    caplog.set_level(logging.DEBUG, logger="mssql_gateway.core.audit")

    client.post("/query", json={"sql": "DELETE FROM Orders", "profile": "staging"})

    (record,) = _audit_lines(caplog)
    assert record.levelno == logging.WARNING
    assert record.getMessage().startswith(
        "AUDIT POST /query profile=staging status=400 error=rejected_statement duration="
    )


def test_audit_logs_current_profile_when_none_given(client, caplog) -> None:
    caplog.set_level(logging.DEBUG, logger="mssql_gateway.core.audit")

    client.get("/schema/tables/dbo/Orders")

    (record,) = _audit_lines(caplog)
    assert record.levelno == logging.INFO
    assert "profile=local status=200" in record.getMessage()
    assert "error=" not in record.getMessage()


def test_audit_logs_profile_from_query_string(client, caplog) -> None:
    caplog.set_level(logging.DEBUG, logger="mssql_gateway.core.audit")

    client.get("/schema/views", params={"profile": "staging"})

    assert "profile=staging status=200" in _audit_lines(caplog)[0].getMessage()


def test_explain_query(client, pool) -> None:
    pool.rows = [{"plan": "<ShowPlanXML xmlns='http://schemas.microsoft.com/sqlserver/2004/07/showplan'>"
                          "<StmtSimple StatementSubTreeCost='0.5' StatementEstRows='10'/></ShowPlanXML>"}]
    pool.columns = ["plan"]

    response = client.post("/query/explain", json={"sql": "SELECT * FROM Orders"})

    body = response.json()
    assert response.status_code == 200
    assert body["estimated_cost"] == 0.5
    assert body["estimated_rows"] == 10.0
    assert pool.session_options[-1][0] == "SHOWPLAN_XML"


def test_validate_syntax_reports_parse_errors(client, pool) -> None:
    pool.error = DatabaseError("Query failed: Incorrect syntax near 'FORM'.")

    response = client.post("/query/validate", json={"sql": "SELECT id FORM Orders"})

    assert response.status_code == 200
    assert response.json() == {"valid": False, "errors": ["Query failed: Incorrect syntax near 'FORM'."]}


def test_validate_syntax_still_rejects_writes(client) -> None:
    response = client.post("/query/validate", json={"sql": "UPDATE Orders SET Status = 'x'"})

    assert response.status_code == 400
    assert response.json()["error"] == "rejected_statement"


def test_list_databases(client, pool) -> None:
    pool.catalog[schema.DATABASES_SQL] = [{"name": "Sales", "size_mb": 64.0, "status": "ONLINE"}]

    response = client.get("/schema/databases")

    assert response.json() == [{"name": "Sales", "size_mb": 64.0, "status": "ONLINE"}]


def test_sample_limit_is_capped(client, pool) -> None:
    pool.catalog[profiling.TABLE_EXISTS_SQL] = [{"object_id": 42}]

    response = client.get("/schema/tables/dbo/Orders/sample", params={"limit": 1000000, "order_by": "id"})

    body = response.json()
    assert response.status_code == 200
    assert body["sql"] == "SELECT TOP (:limit) * FROM [dbo].[Orders] ORDER BY [id]"
    assert pool.bound[-1]["limit"] == body["row_limit"] < 1000000


def test_table_statistics(client, pool) -> None:
    pool.catalog[profiling.TABLE_STATISTICS_SQL] = [{
        "row_count": 3, "data_size_mb": 0.1, "index_size_mb": 0.0, "total_size_mb": 0.1,
        "last_stats_update": None, "is_compressed": 0, "partition_count": 1,
    }]

    response = client.get("/schema/tables/dbo/Orders/statistics")

    body = response.json()
    assert response.status_code == 200
    assert body["schema_name"] == "dbo"
    assert body["row_count"] == 3
    assert body["is_compressed"] is False


def test_relationships_accept_schema(client, pool) -> None:
    response = client.get("/schema/relationships", params={"table": "Orders", "schema": "sales"})

    assert response.status_code == 200
    assert pool.fetched[-1] == (schema.TABLE_RELATIONSHIPS_SQL, {"table": "Orders", "schema": "sales"})


@pytest.mark.parametrize(
    "path, status, level",
    [
        ("/health", 200, logging.DEBUG),
        ("/openapi.json", 200, logging.DEBUG),
        ("/health/ready", 503, logging.ERROR),
        ("/query", 200, logging.INFO),
        ("/query", 404, logging.WARNING),
    ],
)
def test_audit_level(path, status, level) -> None:
    assert audit_level(path, status) == level
