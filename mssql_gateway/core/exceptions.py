"""
Custom Exceptions - Gateway error taxonomy.

Every failure the gateway reports carries:
- a stable error_code kind tag that callers can switch on
- a human-readable message plus optional details
- an HTTP status code used by the API layer

None of these errors are retried automatically anywhere in the gateway.
Retry policy belongs to the caller.
"""
from typing import Optional


class GatewayException(Exception):
    """
    Base exception for all gateway errors.

    Subclass this for specific error kinds.
    """
    status_code: int = 500
    error_code: str = "internal_error"

    def __init__(self, message: str, details: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        """Convert to error response dict."""
        return {
            "error": self.error_code,
            "message": self.message,
            "details": self.details
        }


class ConnectionFailedError(GatewayException):
    """Raised when a pool cannot be connected (profile, auth or network failure)."""
    status_code = 503
    error_code = "connection_error"

    def __init__(self, message: str, profile_name: Optional[str] = None):
        super().__init__(message, details=f"profile={profile_name}" if profile_name else None)
        self.profile_name = profile_name


class RejectedStatementError(GatewayException):
    """Raised when SQL text is not a read-only statement. Never auto-corrected."""
    status_code = 400
    error_code = "rejected_statement"

    def __init__(self, reason: str, matched: Optional[str] = None):
        super().__init__(
            message=f"Statement rejected: {reason}",
            details=f"matched={matched}" if matched else None
        )
        self.reason = reason
        self.matched = matched


class QueryTimeoutError(GatewayException):
    """Raised when a SQL query exceeds its execution deadline."""
    status_code = 504
    error_code = "query_timeout"

    def __init__(self, timeout_seconds: int = 30):
        super().__init__(
            message=f"Query timed out after {timeout_seconds} seconds. Consider narrowing the query.",
            details=f"timeout={timeout_seconds}s"
        )
        self.timeout_seconds = timeout_seconds


class NotFoundError(GatewayException):
    """Raised when a named catalog object does not exist."""
    status_code = 404
    error_code = "not_found"

    def __init__(self, object_type: str, name: str):
        super().__init__(
            message=f"{object_type} not found: {name}",
            details=f"{object_type.lower()}={name}"
        )
        self.object_type = object_type
        self.name = name


class MetadataInconsistencyError(GatewayException):
    """
    Raised when catalog sub-queries of one describe call disagree.

    Usually means the schema changed between two sub-queries.
    """
    status_code = 409
    error_code = "metadata_inconsistency"

    def __init__(self, table: str, problems: list):
        super().__init__(
            message=f"Catalog metadata for {table} is inconsistent; the schema may have changed during the read",
            details="; ".join(problems)
        )
        self.table = table
        self.problems = list(problems)


class DatabaseError(GatewayException):
    """Raised when database operations fail for any other reason."""
    status_code = 503
    error_code = "database_error"

    def __init__(self, message: str = "Database operation failed"):
        super().__init__(message)


class ProfileNotFoundError(GatewayException):
    """Raised when a connection profile name is not configured."""
    status_code = 404
    error_code = "profile_not_found"

    def __init__(self, profile_name: str):
        super().__init__(
            message=f"Connection profile '{profile_name}' not found in configuration",
            details=f"profile={profile_name}"
        )
        self.profile_name = profile_name
