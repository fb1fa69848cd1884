"""
Audit Middleware - One log line per gateway request.

Each record names:
- Method, path and response status
- The connection profile that served the request
- The gateway error code when the request failed
- Duration (also returned as the X-Response-Time header)

Routes store the resolved profile in request.state.profile, whether it
came from a query parameter, a JSON body or the current-profile default.
The gateway exception handler stores request.state.error_code. Request
state is shared through the ASGI scope, so both are visible here after
call_next() returns. SQL text is never logged here.
"""
import logging
import time
from typing import Callable, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from mssql_gateway.core.logging_config import get_logger

logger = get_logger(__name__)

# Paths polled by load balancers and docs browsers
QUIET_PATH_PREFIXES = ("/health", "/docs", "/redoc", "/openapi.json")


def audit_level(path: str, status_code: int) -> int:
    """Log level for a finished request: failures first, then quiet paths."""
    if status_code >= 500:
        return logging.ERROR
    if status_code >= 400:
        return logging.WARNING
    if path.startswith(QUIET_PATH_PREFIXES):
        return logging.DEBUG
    return logging.INFO


def format_audit_record(
    method: str,
    path: str,
    status_code: int,
    duration: float,
    profile: Optional[str] = None,
    error_code: Optional[str] = None
) -> str:
    """
    Render one audit line.

    Example:
        >>> format_audit_record("POST", "/query", 400, 0.0042, "staging", "rejected_statement")
        'AUDIT POST /query profile=staging status=400 error=rejected_statement duration=0.004s'
    """
    record = f"AUDIT {method} {path} profile={profile or '-'} status={status_code}"
    if error_code:
        record += f" error={error_code}"
    return record + f" duration={duration:.3f}s"


class AuditMiddleware(BaseHTTPMiddleware):
    """Logs every request with its profile and outcome."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            duration = time.perf_counter() - start_time
            logger.error(format_audit_record(
                request.method, request.url.path, 500, duration,
                profile=getattr(request.state, "profile", None),
                error_code="internal_error",
            ))
            raise

        duration = time.perf_counter() - start_time
        logger.log(
            audit_level(request.url.path, response.status_code),
            format_audit_record(
                request.method, request.url.path, response.status_code, duration,
                profile=getattr(request.state, "profile", None),
                error_code=getattr(request.state, "error_code", None),
            ),
        )
        response.headers["X-Response-Time"] = f"{duration:.3f}s"
        return response
