"""
Exception classes for the export pipeline.
"""

from typing import Iterable, Optional


class ExportError(Exception):
    """Base exception for all export errors."""

    pass


class ValidationError(ExportError):
    """Request is missing required fields or carries invalid values."""

    def __init__(self, message: str, fields: Optional[Iterable[str]] = None):
        self.fields = list(fields or [])
        super().__init__(message)


class ConnectionError(ExportError):
    """Project database could not be reached or rejected the credentials."""

    pass


class MissingTableError(ExportError):
    """Project database lacks one or more required tables."""

    def __init__(self, missing: list[str]):
        self.missing = list(missing)
        super().__init__(f"Missing required tables: {', '.join(self.missing)}")


class QueryError(ExportError):
    """A query against a project table failed."""

    pass


class NoProjectsError(ExportError):
    """An export or aggregation was requested with no registered projects."""

    def __init__(self, message: str = "No projects configured"):
        super().__init__(message)
