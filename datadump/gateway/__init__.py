"""
HTTP gateway for the export service.

Components:
- schemas.py - Pydantic models for request/response validation
- app.py     - Application factory and shared service state
- api.py     - Route handlers
"""

from datadump.gateway.app import ExportServices, ExportSettings, create_app

__all__ = [
    "ExportServices",
    "ExportSettings",
    "create_app",
]
