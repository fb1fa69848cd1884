"""
Profile-based Database Connection Manager.

This module manages one connection pool per environment profile,
allowing a single process to serve several SQL Server environments
(e.g. local, staging, production) without cross-talk.

Features:
- Per-profile-identity pool registry with atomic check-then-create
- Lazy pool creation, reuse while healthy, recreation when disconnected
- Read-only application intent and TLS options per profile
- Session state reset whenever a connection returns to its pool
- Best-effort shutdown of every pool
- Passwords masked in every description of a profile
"""
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import URL, Engine
from sqlalchemy.exc import DBAPIError, SQLAlchemyError

from mssql_gateway.core.exceptions import (
    ConnectionFailedError,
    DatabaseError,
    QueryTimeoutError,
)
from mssql_gateway.core.logging_config import get_logger
from mssql_gateway.database.query_guard import apply_timeout

logger = get_logger(__name__)

AUTH_INTEGRATED = "integrated"
AUTH_CREDENTIALED = "credentialed"
AUTH_MODES = (AUTH_INTEGRATED, AUTH_CREDENTIALED)

DEFAULT_PORT = 1433
DEFAULT_ODBC_DRIVER = "ODBC Driver 18 for SQL Server"
DEFAULT_QUERY_TIMEOUT_SECONDS = 30
LOGIN_TIMEOUT_SECONDS = 15

# SQLSTATEs pyodbc reports for an expired statement timeout
TIMEOUT_SQLSTATES = ("HYT00", "HYT01")

# Clears SET options and temp objects left on a connection returning to the pool
RESET_CONNECTION_SQL = "{call sys.sp_reset_connection}"

# Options the gateway itself may switch on around a single statement
SESSION_OPTIONS = (
    "SHOWPLAN_XML",
    "SHOWPLAN_ALL",
    "SHOWPLAN_TEXT",
    "PARSEONLY",
    "NOEXEC",
    "STATISTICS XML",
    "STATISTICS IO",
    "STATISTICS TIME",
)


@dataclass(frozen=True)
class ConnectionProfile:
    """
    Connection settings for one named environment.

    Profiles are immutable. Two profiles with the same identity
    (host, port, database, login) share one pool.
    """
    name: str
    host: str
    database: str
    port: int = DEFAULT_PORT
    auth_mode: str = AUTH_INTEGRATED
    username: Optional[str] = None
    password: Optional[str] = field(default=None, repr=False)
    encrypt: bool = False
    trust_certificate: bool = True
    read_only_intent: bool = True
    environment: str = "development"

    @property
    def identity(self) -> Tuple[str, int, str, str]:
        """Key used for pooling: (host, port, database, username-or-'integrated')."""
        return (self.host.lower(), self.port or DEFAULT_PORT, self.database.lower(), self.username or AUTH_INTEGRATED)

    @property
    def server(self) -> str:
        """Host without a named-instance suffix."""
        return self.host.split("\\", 1)[0]

    @property
    def instance_name(self) -> Optional[str]:
        """Named instance from a 'host\\instance' server string."""
        if "\\" in self.host:
            return self.host.split("\\", 1)[1]
        return None

    def describe(self) -> str:
        """Connection string style description with the password masked."""
        parts = [
            f"Server={self.host}",
            f"Database={self.database}",
            f"Port={self.port}",
        ]
        if self.auth_mode == AUTH_CREDENTIALED:
            parts.append(f"User={self.username}")
            parts.append("Password=****")
        else:
            parts.append("IntegratedSecurity=true")
        parts.append(f"Encrypt={self.encrypt}")
        parts.append(f"TrustServerCertificate={self.trust_certificate}")
        parts.append(f"ReadOnly={self.read_only_intent}")
        return "; ".join(parts)

    def to_safe_dict(self) -> Dict[str, Any]:
        """Profile fields for display; the password is never included."""
        return {
            "name": self.name,
            "host": self.host,
            "port": self.port,
            "database": self.database,
            "auth_mode": self.auth_mode,
            "username": self.username,
            "password": "***REDACTED***" if self.password else None,
            "encrypt": self.encrypt,
            "trust_certificate": self.trust_certificate,
            "read_only_intent": self.read_only_intent,
            "environment": self.environment,
        }


def validate_profile(profile: ConnectionProfile) -> None:
    """
    Check the profile fields needed to open a connection.

    Raises:
        ConnectionFailedError: If a field is missing or invalid
    """
    if not profile.host or not profile.host.strip():
        raise ConnectionFailedError("Connection profile has no host", profile.name)
    if not profile.database or not profile.database.strip():
        raise ConnectionFailedError("Connection profile has no database", profile.name)
    if profile.auth_mode not in AUTH_MODES:
        raise ConnectionFailedError(
            f"Unsupported authentication mode: {profile.auth_mode}. "
            f"Expected one of: {', '.join(AUTH_MODES)}",
            profile.name,
        )
    if profile.auth_mode == AUTH_CREDENTIALED and (not profile.username or not profile.password):
        raise ConnectionFailedError(
            "Credentialed authentication requires username and password",
            profile.name,
        )
    if profile.port is not None and not (0 < int(profile.port) < 65536):
        raise ConnectionFailedError(f"Invalid port: {profile.port}", profile.name)


def build_connection_url(profile: ConnectionProfile, odbc_driver: str = DEFAULT_ODBC_DRIVER) -> URL:
    """
    Convert a profile to a SQLAlchemy mssql+pyodbc URL.

    Query items are passed through to the ODBC driver as connection keywords.
    """
    query = {
        "driver": odbc_driver,
        "Encrypt": "yes" if profile.encrypt else "no",
        "TrustServerCertificate": "yes" if profile.trust_certificate else "no",
    }
    if profile.read_only_intent:
        query["ApplicationIntent"] = "ReadOnly"
    if profile.auth_mode == AUTH_INTEGRATED:
        query["Trusted_Connection"] = "yes"

    host = profile.host
    port = profile.port or DEFAULT_PORT
    if profile.instance_name:
        # Named instances resolve their port through the browser service
        port = None

    return URL.create(
        "mssql+pyodbc",
        username=profile.username if profile.auth_mode == AUTH_CREDENTIALED else None,
        password=profile.password if profile.auth_mode == AUTH_CREDENTIALED else None,
        host=host,
        port=port,
        database=profile.database,
        query=query,
    )


def reset_session_state(dbapi_connection, connection_record, reset_state) -> None:
    """
    Pool "reset" listener: wipe session state before a connection is reused.

    SQL Server keeps SET options (SHOWPLAN, STATISTICS, ...) for the life of
    the connection; sp_reset_connection restores the login defaults.
    """
    if not reset_state.terminate_only:
        dbapi_connection.execute(RESET_CONNECTION_SQL)
    dbapi_connection.rollback()


def install_session_reset(engine: Engine) -> Engine:
    """Attach reset_session_state to an engine created with pool_reset_on_return=None."""
    event.listen(engine, "reset", reset_session_state)
    return engine


def create_mssql_engine(profile: ConnectionProfile, odbc_driver: str = DEFAULT_ODBC_DRIVER) -> Engine:
    """Create a pooled SQLAlchemy engine for a profile."""
    engine = create_engine(
        build_connection_url(profile, odbc_driver),
        pool_pre_ping=True,  # Test connections before use (handles stale connections)
        pool_size=5,
        max_overflow=5,  # At most 10 connections per profile
        pool_recycle=1800,
        pool_reset_on_return=None,  # Replaced by reset_session_state
        connect_args={"timeout": LOGIN_TIMEOUT_SECONDS},
        echo=False,
    )
    return install_session_reset(engine)


def _friendly_connection_error(profile: ConnectionProfile, error: Exception) -> str:
    """Map driver error text to a user-friendly message."""
    error_msg = str(error)
    lowered = error_msg.lower()

    if "login failed" in lowered or "authentication" in lowered:
        return "Authentication failed. Please check the username and password."
    if "cannot open database" in lowered:
        return f"Database '{profile.database}' not found or not accessible."
    if "timeout" in lowered or "hyt00" in lowered:
        return f"Connection timeout reaching {profile.host}. Please check your network or host address."
    if "data source name not found" in lowered or "can't open lib" in lowered:
        return "ODBC driver not available. Please install the SQL Server ODBC driver."
    if "tcp provider" in lowered or "connection refused" in lowered or "server is not found" in lowered:
        return f"Cannot connect to {profile.host}:{profile.port}. Please check host and port."
    return f"Connection failed: {error_msg}"


def is_timeout_error(error: Exception) -> bool:
    """
    Check whether a driver error reports an expired statement timeout.

    pyodbc puts the SQLSTATE in args[0] of the original exception. A login
    timeout shares SQLSTATE HYT00, so it is excluded by its message.
    """
    orig = getattr(error, "orig", error)
    args = getattr(orig, "args", ())
    if not args or args[0] not in TIMEOUT_SQLSTATES:
        return False
    return "login timeout" not in str(orig).lower()


class ConnectionPool:
    """
    A live pool of connections bound to exactly one profile identity.

    The `connected` flag is the health signal the manager uses to decide
    between reusing and recreating the pool.

    Example:
        >>> pool = ConnectionPool(profile, create_mssql_engine(profile))
        >>> pool.connect()
        >>> columns, rows = pool.execute("SELECT TOP 5 name FROM sys.tables")
    """

    def __init__(
        self,
        profile: ConnectionProfile,
        engine: Engine,
        query_timeout_seconds: int = DEFAULT_QUERY_TIMEOUT_SECONDS
    ):
        self.profile = profile
        self.engine = engine
        self.query_timeout_seconds = query_timeout_seconds
        self.created_at = datetime.utcnow()
        self.last_used = self.created_at
        self._connected = False

    @property
    def identity(self) -> Tuple[str, int, str, str]:
        return self.profile.identity

    @property
    def connected(self) -> bool:
        return self._connected

    def connect(self) -> None:
        """
        Open a first connection and verify it with SELECT 1.

        Raises:
            ConnectionFailedError: On authentication, network or driver failure
        """
        logger.info(f"Connecting to database: {self.profile.describe()}")
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            logger.warning(f"Connection to profile '{self.profile.name}' failed: {e}")
            raise ConnectionFailedError(
                _friendly_connection_error(self.profile, e), self.profile.name
            ) from e

        self._connected = True
        logger.info(f"Successfully connected to {self.profile.host}/{self.profile.database}")

    def _checkout(self):
        """
        Check a connection out of the pool.

        Failure here is a connection problem, never a statement timeout.
        """
        try:
            return self.engine.connect()
        except SQLAlchemyError as e:
            self._connected = False
            logger.error(f"Connection checkout failed for profile '{self.profile.name}': {e}")
            raise ConnectionFailedError(
                _friendly_connection_error(self.profile, e), self.profile.name
            ) from e

    @staticmethod
    def _run(conn, sql: str, params: Optional[Dict[str, Any]] = None) -> Tuple[List[str], List[Dict[str, Any]]]:
        if params is None:
            result = conn.exec_driver_sql(sql)
        else:
            result = conn.execute(text(sql), params)

        if not result.returns_rows:
            return [], []

        columns = list(result.keys())
        rows = [dict(zip(columns, row)) for row in result.fetchall()]
        return columns, rows

    def _translate_error(self, error: SQLAlchemyError, timeout: int) -> Exception:
        """Map a SQLAlchemy error raised by a statement to a gateway error."""
        if isinstance(error, DBAPIError):
            if is_timeout_error(error):
                logger.warning(f"Query timed out after {timeout}s on profile '{self.profile.name}'")
                return QueryTimeoutError(timeout)
            if error.connection_invalidated:
                self._connected = False
                logger.error(f"Connection lost for profile '{self.profile.name}': {error}")
            else:
                logger.error(f"Query failed on profile '{self.profile.name}': {error}")
            return DatabaseError(f"Query failed: {error.orig if error.orig is not None else error}")
        logger.error(f"Query failed on profile '{self.profile.name}': {error}")
        return DatabaseError(f"Query failed: {error}")

    def execute(
        self,
        sql: str,
        params: Optional[Dict[str, Any]] = None,
        timeout_seconds: Optional[int] = None
    ) -> Tuple[List[str], List[Dict[str, Any]]]:
        """
        Execute one statement with an explicit timeout.

        Raw text without params goes to the driver untouched so that colons
        in literals are not mistaken for bind parameters.

        Args:
            sql: SQL text
            params: Bind parameters for a :name style statement
            timeout_seconds: Deadline; defaults to the pool's query timeout

        Returns:
            Tuple of (column names, rows as dictionaries)

        Raises:
            ConnectionFailedError: When no connection can be checked out
            QueryTimeoutError: When the deadline expires
            DatabaseError: On any other driver failure
        """
        timeout = timeout_seconds or self.query_timeout_seconds
        self.last_used = datetime.utcnow()

        with self._checkout() as conn:
            try:
                apply_timeout(conn, timeout)
                return self._run(conn, sql, params)
            except SQLAlchemyError as e:
                raise self._translate_error(e, timeout) from e

    def execute_with_session_option(
        self,
        option: str,
        sql: str,
        timeout_seconds: Optional[int] = None
    ) -> Tuple[List[str], List[Dict[str, Any]]]:
        """
        Run one statement with a session option switched on around it.

        SET <option> ON, the statement and SET <option> OFF are sent as three
        batches on the same connection (SHOWPLAN must be alone in its batch).
        The option is switched OFF even when the statement fails.

        Args:
            option: One of SESSION_OPTIONS, e.g. "SHOWPLAN_XML"
            sql: Statement already accepted by the query guard
            timeout_seconds: Deadline; defaults to the pool's query timeout

        Returns:
            Tuple of (column names, rows) produced by the statement

        Raises:
            ValueError: If the option is not in SESSION_OPTIONS
            ConnectionFailedError, QueryTimeoutError, DatabaseError: As execute()
        """
        if option not in SESSION_OPTIONS:
            raise ValueError(f"Unsupported session option: {option}")

        timeout = timeout_seconds or self.query_timeout_seconds
        self.last_used = datetime.utcnow()

        with self._checkout() as conn:
            try:
                apply_timeout(conn, timeout)
                conn.exec_driver_sql(f"SET {option} ON")
                try:
                    return self._run(conn, sql)
                finally:
                    conn.exec_driver_sql(f"SET {option} OFF")
            except SQLAlchemyError as e:
                raise self._translate_error(e, timeout) from e

    def fetch_all(
        self,
        sql: str,
        params: Optional[Dict[str, Any]] = None,
        timeout_seconds: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        """Execute a statement and return only its rows."""
        _, rows = self.execute(sql, params=params, timeout_seconds=timeout_seconds)
        return rows

    def close(self) -> None:
        """Dispose every connection in the pool."""
        self._connected = False
        self.engine.dispose()
        logger.info(f"Closed connection pool for profile '{self.profile.name}'")

    def get_info(self) -> Dict[str, Any]:
        """Pool status for display."""
        return {
            "profile": self.profile.name,
            "connected": self._connected,
            "connection": self.profile.describe(),
            "created_at": self.created_at.isoformat(),
            "last_used": self.last_used.isoformat(),
        }


EngineFactory = Callable[[ConnectionProfile], Engine]


class ConnectionPoolManager:
    """
    Owns one ConnectionPool per profile identity.

    The registry is the only shared mutable state in the gateway. A
    registry lock guards the map; a per-identity lock makes
    check-then-create atomic, so concurrent acquire() calls for one
    identity open exactly one pool while other identities proceed.

    Example:
        >>> manager = ConnectionPoolManager()
        >>> pool = manager.acquire(profile)
        >>> manager.acquire(profile) is pool
        True
    """

    def __init__(
        self,
        engine_factory: Optional[EngineFactory] = None,
        odbc_driver: str = DEFAULT_ODBC_DRIVER,
        query_timeout_seconds: int = DEFAULT_QUERY_TIMEOUT_SECONDS
    ):
        """
        Initialize the manager.

        Args:
            engine_factory: Builds an Engine for a profile. Defaults to a
                            mssql+pyodbc engine using odbc_driver.
            odbc_driver: ODBC driver name for the default factory
            query_timeout_seconds: Default deadline for queries on new pools
        """
        self._engine_factory = engine_factory or (lambda profile: create_mssql_engine(profile, odbc_driver))
        self.query_timeout_seconds = query_timeout_seconds
        self._pools: Dict[Tuple[str, int, str, str], ConnectionPool] = {}
        self._identity_locks: Dict[Tuple[str, int, str, str], threading.Lock] = {}
        self._lock = threading.Lock()
        logger.info("ConnectionPoolManager initialized")

    def acquire(self, profile: ConnectionProfile) -> ConnectionPool:
        """
        Return the healthy pool for the profile's identity, creating it if needed.

        No retries: a failed connect is raised to the caller immediately.

        Raises:
            ConnectionFailedError: If the profile is invalid or connecting fails
        """
        key = profile.identity

        with self._lock:
            pool = self._pools.get(key)
            if pool is not None and pool.connected:
                logger.debug(f"Reusing existing connection pool for {key}")
                return pool
            identity_lock = self._identity_locks.setdefault(key, threading.Lock())

        with identity_lock:
            # Another caller may have finished connecting while we waited
            with self._lock:
                pool = self._pools.get(key)
                if pool is not None and pool.connected:
                    return pool

            validate_profile(profile)
            start_time = time.perf_counter()
            try:
                engine = self._engine_factory(profile)
            except (SQLAlchemyError, ImportError) as e:
                raise ConnectionFailedError(
                    _friendly_connection_error(profile, e), profile.name
                ) from e

            new_pool = ConnectionPool(profile, engine, self.query_timeout_seconds)
            try:
                new_pool.connect()
            except ConnectionFailedError:
                engine.dispose()
                raise

            with self._lock:
                stale = self._pools.get(key)
                self._pools[key] = new_pool

            if stale is not None:
                logger.warning(f"Replacing disconnected pool for {key}")
                self._close_pool(key, stale)

            elapsed = (time.perf_counter() - start_time) * 1000
            logger.info(f"Created connection pool for profile '{profile.name}' in {elapsed:.0f}ms")
            return new_pool

    def get_pool_info(self, profile: ConnectionProfile) -> Optional[Dict[str, Any]]:
        """Status of the pool registered for a profile, or None."""
        with self._lock:
            pool = self._pools.get(profile.identity)
        return pool.get_info() if pool is not None else None

    def active_pool_count(self) -> int:
        """Get the number of registered pools."""
        with self._lock:
            return len(self._pools)

    def _close_pool(self, key, pool: ConnectionPool) -> bool:
        try:
            pool.close()
            return True
        except Exception as e:
            logger.error(f"Error closing connection pool for {key}: {e}")
            return False

    def shutdown(self) -> None:
        """
        Close every registered pool. Used at process exit.

        A failure closing one pool is logged and does not stop the others.
        """
        with self._lock:
            pools = list(self._pools.items())
            self._pools.clear()
            self._identity_locks.clear()

        logger.info(f"Closing {len(pools)} connection pool(s)")
        for key, pool in pools:
            self._close_pool(key, pool)
