"""Tests for the gateway service facade."""

import pytest

from mssql_gateway.core.config import build_settings
from mssql_gateway.core.exceptions import ProfileNotFoundError, RejectedStatementError
from mssql_gateway.database.profiling import TABLE_EXISTS_SQL
from mssql_gateway.services.gateway_service import GatewayService

from .conftest import FakeCatalogPool, FakePoolManager


@pytest.fixture
def settings():
    return build_settings({
        "MSSQL_PROFILES": "local,staging",
        "MSSQL_DEFAULT_PROFILE": "staging",
        "MAX_ROWS": "100",
        "MAX_ROWS_LIMIT": "500",
        "QUERY_TIMEOUT_SECONDS": "12",
    })


def test_default_profile_is_current(settings, profiles) -> None:
    service = GatewayService(settings, profiles, manager=FakePoolManager())

    assert service.current_profile == "staging"
    assert [p["name"] for p in service.list_profiles() if p["current"]] == ["staging"]


def test_listed_profiles_never_expose_passwords(settings, profiles) -> None:
    service = GatewayService(settings, profiles, manager=FakePoolManager())

    assert "secret" not in str(service.list_profiles())
    assert "secret" not in str(service.connection_info("staging"))


def test_switch_profile_changes_target_pool(settings, profiles) -> None:
    manager = FakePoolManager()
    service = GatewayService(settings, profiles, manager=manager)

    service.switch_profile("local")
    service.acquire()

    assert service.current_profile == "local"
    assert manager.acquired[-1].name == "local"


def test_unknown_profile_raises(settings, profiles) -> None:
    service = GatewayService(settings, profiles, manager=FakePoolManager())

    with pytest.raises(ProfileNotFoundError):
        service.switch_profile("production")
    with pytest.raises(ProfileNotFoundError):
        service.execute_query("SELECT 1", profile="production")

    assert service.current_profile == "staging"


def test_requested_rows_are_capped(settings, profiles) -> None:
    pool = FakeCatalogPool()
    service = GatewayService(settings, profiles, manager=FakePoolManager(pool))

    result = service.execute_query("SELECT id FROM Orders", max_rows=100000)

    assert result.sql == "SELECT TOP 500 id FROM Orders"
    assert pool.executed == [("SELECT TOP 500 id FROM Orders", 12)]


def test_default_row_limit_comes_from_settings(settings, profiles) -> None:
    service = GatewayService(settings, profiles, manager=FakePoolManager())

    assert service.execute_query("SELECT id FROM Orders").row_limit == 100


def test_rejected_query_is_never_sent(settings, profiles) -> None:
    pool = FakeCatalogPool()
    service = GatewayService(settings, profiles, manager=FakePoolManager(pool))

    with pytest.raises(RejectedStatementError):
        service.execute_query("UPDATE Orders SET Status = 'x'")

    assert pool.executed == []


def test_service_requires_profiles(settings) -> None:
    with pytest.raises(ValueError):
        GatewayService(settings, {}, manager=FakePoolManager())


def test_shutdown_closes_manager(settings, profiles) -> None:
    manager = FakePoolManager()
    GatewayService(settings, profiles, manager=manager).shutdown()

    assert manager.shut_down


def test_sample_rows_are_capped(settings, profiles) -> None:
    pool = FakeCatalogPool(catalog={TABLE_EXISTS_SQL: [{"object_id": 7}]})
    service = GatewayService(settings, profiles, manager=FakePoolManager(pool))

    result = service.sample_data("dbo", "Orders", limit=5000)

    assert result.row_limit == 500
    assert pool.bound == [{"limit": 500}]


def test_explain_and_validate_use_current_profile(settings, profiles) -> None:
    pool = FakeCatalogPool(columns=["plan"], rows=[{"plan": "<ShowPlanXML/>"}])
    manager = FakePoolManager(pool)
    service = GatewayService(settings, profiles, manager=manager)

    assert service.explain_query("SELECT 1").statement_count == 0
    assert service.validate_syntax("SELECT 1").valid
    assert [p.name for p in manager.acquired] == ["staging", "staging"]
    assert [option for option, _, _ in pool.session_options] == ["SHOWPLAN_XML", "PARSEONLY"]
    # The option calls carry the configured timeout
    assert {timeout for _, _, timeout in pool.session_options} == {12}
