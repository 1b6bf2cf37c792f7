"""
Core infrastructure shared across the export service.

This module provides:
- Configuration loading (config.py)
- Centralized logging (logging_config.py)
- ASGI middleware (middleware.py)
"""

from datadump.core.config import get, get_env, get_optional
from datadump.core.logging_config import (
    configure_logging,
    get_logger,
    get_correlation_id,
    set_correlation_id,
    generate_correlation_id,
    is_production,
    register_secret,
    CORRELATION_HEADER,
)
from datadump.core.middleware import CorrelationIdMiddleware, ErrorBoundaryMiddleware

__all__ = [
    # config
    "get",
    "get_env",
    "get_optional",
    # logging
    "configure_logging",
    "get_logger",
    "get_correlation_id",
    "set_correlation_id",
    "generate_correlation_id",
    "is_production",
    "register_secret",
    "CORRELATION_HEADER",
    # middleware
    "CorrelationIdMiddleware",
    "ErrorBoundaryMiddleware",
]
