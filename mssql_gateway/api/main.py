"""
FastAPI Application Entry Point.

This module creates and configures the FastAPI application instance.
It handles:
1. Application initialization
2. Router registration
3. Audit middleware
4. Exception handlers (gateway error taxonomy -> JSON)
5. Startup/shutdown events (pool shutdown on exit)

Run with: uvicorn mssql_gateway.api.main:app
"""
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from mssql_gateway import __version__
from mssql_gateway.core.audit import AuditMiddleware
from mssql_gateway.core.config import Settings, get_settings
from mssql_gateway.core.exceptions import GatewayException
from mssql_gateway.core.logging_config import get_logger, setup_logging
from mssql_gateway.api.routes import (
    connection_router,
    health_router,
    query_router,
    schema_router,
)
from mssql_gateway.models.gateway import ErrorResponse
from mssql_gateway.services.gateway_service import GatewayService

logger = get_logger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    service: Optional[GatewayService] = None
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Gateway settings; read from the environment if not provided
        service: Pre-built GatewayService; built from settings at startup if not provided
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Application lifespan manager.

        - Startup: configure logging, load profiles, build the service
        - Shutdown: close every connection pool
        """
        setup_logging(settings.log_level, settings.log_dir)
        logger.info(f"Starting {settings.app_name} in {settings.app_env} mode")
        logger.info(
            f"Limits: max_rows={settings.max_rows}, "
            f"timeout={settings.query_timeout_seconds}s, "
            f"max_query_length={settings.max_query_length}"
        )

        app.state.service = service or GatewayService.from_settings(settings)

        yield  # Application runs here

        logger.info(f"Shutting down {settings.app_name}")
        app.state.service.shutdown()

    app = FastAPI(
        title="SQL Server Read-Only Gateway API",
        description="""
        Read-only access to SQL Server for natural-language agents.

        ## Features

        - **Named profiles**: one connection pool per environment
        - **Read-only guard**: writes are rejected before reaching the server
        - **Row limits and timeouts** on every query
        - **Table metadata**: columns, keys, indexes, foreign keys, triggers
        - **Diagnostics**: estimated plans, syntax checks, table samples and statistics
        """,
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.settings = settings

    if settings.enable_audit_logging:
        app.add_middleware(AuditMiddleware)

    @app.exception_handler(GatewayException)
    async def gateway_exception_handler(request: Request, exc: GatewayException):
        """Handle all gateway errors with their stable error code."""
        request.state.error_code = exc.error_code
        body = ErrorResponse(error=exc.error_code, message=exc.message, details=exc.details)
        return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(body))

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """
        Handle uncaught exceptions globally.

        Detailed error information is only included in development mode.
        """
        logger.exception(f"Unhandled exception: {exc}")
        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_error",
                "message": "An unexpected error occurred",
                "details": str(exc) if settings.is_development() else None,
                "timestamp": datetime.utcnow().isoformat()
            }
        )

    app.include_router(health_router)
    app.include_router(connection_router)
    app.include_router(schema_router)
    app.include_router(query_router)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "mssql_gateway.api.main:app",
        host="127.0.0.1",
        port=8000,
    )
