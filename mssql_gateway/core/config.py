"""
Configuration management via environment variables.

This module loads configuration from a .env file using python-dotenv.
Gateway-wide settings are accessed through the Settings class; named
connection profiles are read by load_profiles().

Profiles are declared as a comma separated list in MSSQL_PROFILES and each
profile NAME is described by MSSQL_<NAME>_* variables:

    MSSQL_PROFILES=local,staging
    MSSQL_LOCAL_HOST=localhost
    MSSQL_LOCAL_DATABASE=Sales
    MSSQL_LOCAL_AUTH=integrated
    MSSQL_STAGING_HOST=db1.staging
    MSSQL_STAGING_DATABASE=Sales
    MSSQL_STAGING_AUTH=credentialed
    MSSQL_STAGING_USERNAME=ro
    MSSQL_STAGING_PASSWORD=...
"""
import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Dict, List, Mapping, Optional

from dotenv import load_dotenv


# Load .env file from project root
# This must happen before accessing os.environ
env_path = Path(__file__).parent.parent.parent / ".env"
load_dotenv(env_path)

_TRUE_VALUES = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    """
    Gateway settings loaded from environment variables.

    frozen=True makes the dataclass immutable, preventing accidental
    modification of settings at runtime.

    Attributes:
        app_name: Application identifier for logging
        app_env: Environment name (development, staging, production)
        log_level: Logging verbosity (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_dir: Optional directory for log files
        max_rows: Default row limit injected into queries
        max_rows_limit: Upper bound a caller may request
        query_timeout_seconds: Execution deadline applied to every query
        max_query_length: Longest SQL text accepted by the guard
        odbc_driver: ODBC driver name passed to pyodbc
        profile_names: Configured connection profile names
        default_profile: Profile used when a caller names none
        enable_audit_logging: Log every API request
    """
    # Application settings
    app_name: str
    app_env: str
    log_level: str
    log_dir: Optional[str]

    # Query limits
    max_rows: int
    max_rows_limit: int
    query_timeout_seconds: int
    max_query_length: int

    # Connection settings
    odbc_driver: str
    profile_names: List[str]
    default_profile: str

    enable_audit_logging: bool

    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.app_env.lower() == "development"


def _get_env(key: str, default: Optional[str] = None, environ: Optional[Mapping[str, str]] = None) -> str:
    """
    Get environment variable with optional default.

    Args:
        key: Environment variable name
        default: Default value if not set
        environ: Mapping to read from (defaults to os.environ)

    Returns:
        Environment variable value

    Raises:
        ValueError: If required variable is not set and no default provided
    """
    source = os.environ if environ is None else environ
    value = source.get(key, default)
    if value is None:
        raise ValueError(
            f"Required environment variable '{key}' is not set. "
            f"Please check your .env file."
        )
    return value


def _get_bool(key: str, default: bool, environ: Optional[Mapping[str, str]] = None) -> bool:
    return _get_env(key, "true" if default else "false", environ).strip().lower() in _TRUE_VALUES


def _split_names(raw: str) -> List[str]:
    return [name.strip() for name in raw.split(",") if name.strip()]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Settings are read once at startup; maxsize=1 ensures only one
    instance exists.

    Returns:
        Settings instance with all configuration values
    """
    return build_settings()


def build_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    """Build a Settings instance from a mapping (os.environ by default)."""
    profile_names = _split_names(_get_env("MSSQL_PROFILES", "default", environ))
    if not profile_names:
        raise ValueError("MSSQL_PROFILES must name at least one connection profile")

    default_profile = _get_env("MSSQL_DEFAULT_PROFILE", profile_names[0], environ)
    if default_profile not in profile_names:
        raise ValueError(
            f"MSSQL_DEFAULT_PROFILE '{default_profile}' is not listed in MSSQL_PROFILES"
        )

    max_rows = int(_get_env("MAX_ROWS", "1000", environ))
    max_rows_limit = int(_get_env("MAX_ROWS_LIMIT", "10000", environ))
    if max_rows < 1 or max_rows > max_rows_limit:
        raise ValueError(f"MAX_ROWS must be between 1 and {max_rows_limit}")

    return Settings(
        # Application
        app_name=_get_env("APP_NAME", "MSSQLReadOnlyGateway", environ),
        app_env=_get_env("APP_ENV", "development", environ),
        log_level=_get_env("LOG_LEVEL", "INFO", environ),
        log_dir=_get_env("LOG_DIR", "", environ) or None,

        # Limits
        max_rows=max_rows,
        max_rows_limit=max_rows_limit,
        query_timeout_seconds=int(_get_env("QUERY_TIMEOUT_SECONDS", "30", environ)),
        max_query_length=int(_get_env("MAX_QUERY_LENGTH", "50000", environ)),

        # Connections
        odbc_driver=_get_env("ODBC_DRIVER", "ODBC Driver 18 for SQL Server", environ),
        profile_names=profile_names,
        default_profile=default_profile,

        enable_audit_logging=_get_bool("ENABLE_AUDIT_LOGGING", True, environ),
    )


def load_profiles(
    profile_names: List[str],
    environ: Optional[Mapping[str, str]] = None
) -> Dict[str, "ConnectionProfile"]:
    """
    Read the named connection profiles from the environment.

    Args:
        profile_names: Names listed in MSSQL_PROFILES
        environ: Mapping to read from (defaults to os.environ)

    Returns:
        Dict mapping profile name to ConnectionProfile

    Raises:
        ValueError: If a profile lacks its host or database
    """
    from mssql_gateway.database.connection_manager import ConnectionProfile

    profiles = {}
    for name in profile_names:
        prefix = f"MSSQL_{name.upper()}_"
        host = _get_env(prefix + "HOST", "", environ).strip()
        database = _get_env(prefix + "DATABASE", "", environ).strip()
        if not host or not database:
            raise ValueError(
                f"Connection profile '{name}' needs both {prefix}HOST and {prefix}DATABASE"
            )

        auth_mode = _get_env(prefix + "AUTH", "integrated", environ).strip().lower()
        # "sql" is the SQL Server name for username/password logins
        if auth_mode == "sql":
            auth_mode = "credentialed"

        profiles[name] = ConnectionProfile(
            name=name,
            host=host,
            port=int(_get_env(prefix + "PORT", "1433", environ)),
            database=database,
            auth_mode=auth_mode,
            username=_get_env(prefix + "USERNAME", "", environ) or None,
            password=_get_env(prefix + "PASSWORD", "", environ) or None,
            encrypt=_get_bool(prefix + "ENCRYPT", False, environ),
            trust_certificate=_get_bool(prefix + "TRUST_CERTIFICATE", True, environ),
            read_only_intent=_get_bool(prefix + "READONLY", True, environ),
            environment=_get_env(prefix + "ENVIRONMENT", "development", environ),
        )

    return profiles
