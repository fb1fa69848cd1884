"""Tests for settings and connection profile loading."""

import pytest

from mssql_gateway.core.config import build_settings, load_profiles
from mssql_gateway.database.connection_manager import AUTH_CREDENTIALED, AUTH_INTEGRATED


def test_settings_defaults() -> None:
    settings = build_settings({})

    assert settings.profile_names == ["default"]
    assert settings.default_profile == "default"
    assert settings.max_rows == 1000
    assert settings.max_rows_limit == 10000
    assert settings.query_timeout_seconds == 30
    assert settings.max_query_length == 50000
    assert settings.log_dir is None
    assert settings.enable_audit_logging
    assert settings.is_development()


def test_settings_read_from_mapping() -> None:
    settings = build_settings({
        "MSSQL_PROFILES": "local, staging",
        "MSSQL_DEFAULT_PROFILE": "staging",
        "MAX_ROWS": "50",
        "QUERY_TIMEOUT_SECONDS": "5",
        "APP_ENV": "production",
        "ENABLE_AUDIT_LOGGING": "off",
    })

    assert settings.profile_names == ["local", "staging"]
    assert settings.default_profile == "staging"
    assert settings.max_rows == 50
    assert settings.query_timeout_seconds == 5
    assert settings.app_env == "production"
    assert not settings.is_development()
    assert not settings.enable_audit_logging


def test_default_profile_must_be_listed() -> None:
    with pytest.raises(ValueError, match="MSSQL_DEFAULT_PROFILE"):
        build_settings({"MSSQL_PROFILES": "local", "MSSQL_DEFAULT_PROFILE": "prod"})


@pytest.mark.parametrize("max_rows", ["0", "20001"])
def test_max_rows_must_be_within_limit(max_rows: str) -> None:
    with pytest.raises(ValueError, match="MAX_ROWS"):
        build_settings({"MAX_ROWS": max_rows, "MAX_ROWS_LIMIT": "20000"})


def test_load_profiles_reads_prefixed_variables() -> None:
    profiles = load_profiles(["local", "staging"], {
        "MSSQL_LOCAL_HOST": "localhost\\SQLEXPRESS",
        "MSSQL_LOCAL_DATABASE": "Sales",
        "MSSQL_STAGING_HOST": "db1.staging",
        "MSSQL_STAGING_PORT": "14330",
        "MSSQL_STAGING_DATABASE": "Sales",
        "MSSQL_STAGING_AUTH": "SQL",
        "MSSQL_STAGING_USERNAME": "ro",
        "MSSQL_STAGING_PASSWORD": "secret",
        "MSSQL_STAGING_ENCRYPT": "yes",
        "MSSQL_STAGING_ENVIRONMENT": "staging",
    })

    local = profiles["local"]
    assert local.auth_mode == AUTH_INTEGRATED
    assert local.instance_name == "SQLEXPRESS"
    assert local.username is None
    assert local.read_only_intent

    staging = profiles["staging"]
    assert staging.auth_mode == AUTH_CREDENTIALED
    assert staging.port == 14330
    assert staging.password == "secret"
    assert staging.encrypt
    assert staging.environment == "staging"


def test_profile_without_host_is_rejected() -> None:
    with pytest.raises(ValueError, match="MSSQL_BROKEN_HOST"):
        load_profiles(["broken"], {"MSSQL_BROKEN_DATABASE": "Sales"})
