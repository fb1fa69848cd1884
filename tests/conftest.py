"""Shared fixtures: profiles, SQLite-backed engine factories and a fake catalog pool."""

import threading
import time
from typing import Any, Dict, List, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from mssql_gateway.database import connection_manager
from mssql_gateway.database.connection_manager import AUTH_CREDENTIALED, ConnectionProfile


@pytest.fixture
def profile() -> ConnectionProfile:
    return ConnectionProfile(
        name="staging",
        host="db1",
        database="Sales",
        auth_mode=AUTH_CREDENTIALED,
        username="ro",
        password="secret",
    )


@pytest.fixture(autouse=True)
def no_driver_timeout(monkeypatch: pytest.MonkeyPatch) -> List[int]:
    """SQLite connections have no pyodbc-style timeout attribute; record the calls instead."""
    applied: List[int] = []
    monkeypatch.setattr(connection_manager, "apply_timeout", lambda conn, seconds: applied.append(seconds))
    return applied


class CountingEngineFactory:
    """Builds in-memory SQLite engines and counts how often it was asked to."""

    def __init__(self, delay: float = 0.0, url: str = "sqlite://") -> None:
        self.delay = delay
        self.url = url
        self.calls: List[ConnectionProfile] = []
        self._lock = threading.Lock()

    def __call__(self, profile: ConnectionProfile):
        with self._lock:
            self.calls.append(profile)
        if self.delay:
            time.sleep(self.delay)
        return create_engine(self.url, poolclass=StaticPool, connect_args={"check_same_thread": False})

    @property
    def count(self) -> int:
        return len(self.calls)


@pytest.fixture
def engine_factory() -> CountingEngineFactory:
    return CountingEngineFactory()


class FakeCatalogPool:
    """
    Stands in for a ConnectionPool.

    fetch_all() answers catalog SQL from a dict keyed by the SQL constant;
    execute() and execute_with_session_option() answer raw queries with a
    fixed result; execute_with_session_option() raises `error` when one is given.
    """

    def __init__(
        self,
        catalog: Optional[Dict[str, List[Dict[str, Any]]]] = None,
        columns: Optional[List[str]] = None,
        rows: Optional[List[Dict[str, Any]]] = None,
        error: Optional[Exception] = None,
    ) -> None:
        self.catalog = catalog or {}
        self.columns = columns or []
        self.rows = rows or []
        self.error = error
        self.connected = True
        self.fetched: List[tuple] = []
        self.executed: List[tuple] = []
        self.bound: List[Optional[Dict[str, Any]]] = []
        self.session_options: List[tuple] = []

    def fetch_all(self, sql: str, params: Optional[Dict[str, Any]] = None, timeout_seconds=None):
        self.fetched.append((sql, params))
        return [dict(row) for row in self.catalog.get(sql, [])]

    def execute(self, sql: str, params=None, timeout_seconds=None):
        self.executed.append((sql, timeout_seconds))
        self.bound.append(params)
        return list(self.columns), [dict(row) for row in self.rows]

    def execute_with_session_option(self, option: str, sql: str, timeout_seconds=None):
        self.session_options.append((option, sql, timeout_seconds))
        if self.error is not None:
            raise self.error
        return list(self.columns), [dict(row) for row in self.rows]


class FakePoolManager:
    """Stands in for a ConnectionPoolManager; every profile gets the same pool."""

    def __init__(self, pool: Optional[FakeCatalogPool] = None) -> None:
        self.pool = pool or FakeCatalogPool()
        self.acquired: List[ConnectionProfile] = []
        self.shut_down = False

    def acquire(self, profile: ConnectionProfile) -> FakeCatalogPool:
        self.acquired.append(profile)
        return self.pool

    def get_pool_info(self, profile: ConnectionProfile):
        return {"profile": profile.name, "connected": True} if profile in self.acquired else None

    def active_pool_count(self) -> int:
        return len({profile.identity for profile in self.acquired})

    def shutdown(self) -> None:
        self.shut_down = True


@pytest.fixture
def profiles(profile: ConnectionProfile) -> Dict[str, ConnectionProfile]:
    local = ConnectionProfile(name="local", host="localhost", database="Sales")
    return {"local": local, "staging": profile}
