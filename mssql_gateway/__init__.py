"""
Gateway root package.

This package contains all gateway source code organized by responsibility:
- api/       : FastAPI routes and HTTP handling
- core/      : Configuration, logging, exceptions
- services/  : Orchestration over named connection profiles
- database/  : Connection pools, SQL guarding, catalog metadata
- models/    : Pydantic models for request/response schemas
"""

__version__ = "0.1.0"
