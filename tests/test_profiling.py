"""Tests for table sampling and storage statistics."""

from datetime import datetime

import pytest

from mssql_gateway.core.exceptions import NotFoundError
from mssql_gateway.database.profiling import (
    TABLE_EXISTS_SQL,
    TABLE_STATISTICS_SQL,
    TableProfiler,
    quote_identifier,
)

from .conftest import FakeCatalogPool


@pytest.fixture
def orders_pool() -> FakeCatalogPool:
    return FakeCatalogPool(
        catalog={TABLE_EXISTS_SQL: [{"object_id": 901578250}]},
        columns=["id", "Status"],
        rows=[{"id": 1, "Status": "open"}, {"id": 2, "Status": "shipped"}],
    )


def test_quote_identifier_escapes_closing_bracket() -> None:
    assert quote_identifier("Orders") == "[Orders]"
    assert quote_identifier("Order]s; DROP TABLE x --") == "[Order]]s; DROP TABLE x --]"


def test_quote_identifier_rejects_empty_name() -> None:
    with pytest.raises(ValueError):
        quote_identifier("")


def test_sample_binds_limit_and_quotes_names(orders_pool) -> None:
    result = TableProfiler(timeout_seconds=4).sample_data(orders_pool, "dbo", "Orders", limit=2)

    assert result.sql == "SELECT TOP (:limit) * FROM [dbo].[Orders]"
    assert result.row_count == 2
    assert result.row_limit == 2
    assert orders_pool.fetched == [(TABLE_EXISTS_SQL, {"schema": "dbo", "table": "Orders"})]
    assert orders_pool.executed == [("SELECT TOP (:limit) * FROM [dbo].[Orders]", 4)]
    assert orders_pool.bound == [{"limit": 2}]


def test_sample_orders_by_quoted_column(orders_pool) -> None:
    result = TableProfiler().sample_data(orders_pool, "dbo", "Orders", order_by="Placed At", descending=True)

    assert result.sql.endswith("ORDER BY [Placed At] DESC")
    assert orders_pool.bound == [{"limit": 10}]


def test_sample_of_missing_table_never_runs_select() -> None:
    pool = FakeCatalogPool(catalog={TABLE_EXISTS_SQL: [{"object_id": None}]})

    with pytest.raises(NotFoundError):
        TableProfiler().sample_data(pool, "dbo", "Nope")

    assert pool.executed == []


def test_sample_rejects_non_positive_limit(orders_pool) -> None:
    with pytest.raises(ValueError):
        TableProfiler().sample_data(orders_pool, "dbo", "Orders", limit=0)


def test_table_statistics() -> None:
    updated = datetime(2026, 10, 1, 3, 0)
    pool = FakeCatalogPool(catalog={TABLE_STATISTICS_SQL: [{
        "row_count": 1200,
        "data_size_mb": 1.5,
        "index_size_mb": 0.25,
        "total_size_mb": 1.75,
        "last_stats_update": updated,
        "is_compressed": 0,
        "partition_count": 1,
    }]})

    stats = TableProfiler().table_statistics(pool, "dbo", "Orders")

    assert stats.to_dict() == {
        "schema": "dbo",
        "table": "Orders",
        "row_count": 1200,
        "data_size_mb": 1.5,
        "index_size_mb": 0.25,
        "total_size_mb": 1.75,
        "last_stats_update": updated,
        "is_compressed": False,
        "partition_count": 1,
    }
    assert pool.fetched == [(TABLE_STATISTICS_SQL, {"schema": "dbo", "table": "Orders"})]


def test_statistics_of_missing_table_is_not_found() -> None:
    with pytest.raises(NotFoundError):
        TableProfiler().table_statistics(FakeCatalogPool(), "dbo", "Nope")
