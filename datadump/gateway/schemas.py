"""
Pydantic schemas for the export service HTTP API.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_serializer
from pydantic import ValidationError as PydanticValidationError

from datadump.export.exceptions import ValidationError
from datadump.export.orchestrator import OutcomeStatus
from datadump.export.table_exporter import ExportFormat
from datadump.registry import DEFAULT_PORT

REQUIRED_PROJECT_FIELDS = ("name", "host", "database", "username", "password")

ModelT = TypeVar("ModelT", bound=BaseModel)


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


def parse_body(model: Type[ModelT], body: Dict[str, Any]) -> ModelT:
    """Validate a JSON object body against ``model``.

    Raises:
        ValidationError: naming every offending field
    """
    try:
        return model.model_validate(body)
    except PydanticValidationError as e:
        fields = [".".join(str(part) for part in err["loc"]) for err in e.errors()]
        raise ValidationError(f"Invalid request body: {e}", fields=fields) from e


# =============================================================================
# Projects
# =============================================================================

class ProjectCreate(BaseModel):
    """Registration request for a project database."""
    name: str = Field(..., min_length=1, description="Display label")
    host: str = Field(..., min_length=1)
    database: str = Field(..., min_length=1)
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)
    port: int = Field(DEFAULT_PORT, ge=1, le=65535)

    @field_validator("name", "host", "database", "username")
    @classmethod
    def strip_text(cls, v: str) -> str:
        return v.strip()

    @field_validator("port", mode="before")
    @classmethod
    def default_port(cls, v: Any) -> Any:
        if v is None or v == "" or v == 0:
            return DEFAULT_PORT
        return v

    @staticmethod
    def missing_fields(body: Dict[str, Any]) -> List[str]:
        """Required fields that are absent or blank in a raw request body."""
        missing = []
        for name in REQUIRED_PROJECT_FIELDS:
            value = body.get(name)
            if value is None or (isinstance(value, str) and not value.strip()):
                missing.append(name)
        return missing

    @classmethod
    def from_body(cls, body: Dict[str, Any]) -> "ProjectCreate":
        """Validate a registration body, reporting blank required fields first."""
        missing = cls.missing_fields(body)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}", fields=missing)
        return parse_body(cls, body)


class ProjectOut(_CamelModel):
    """Project as returned to clients; never carries the password."""
    id: str
    name: str
    host: str
    database: str
    username: str
    port: int
    created_at: datetime = Field(..., alias="createdAt")


class ProjectCreated(BaseModel):
    message: str = "Project added successfully"
    project: ProjectOut


# =============================================================================
# Export
# =============================================================================

class ExportRequest(BaseModel):
    """Optional body of POST /export."""
    format: Optional[ExportFormat] = Field(None, description="csv or xlsx")


class ExportOutcomeOut(_CamelModel):
    """One (project, table) outcome; ``error`` appears only on failures."""
    project: str
    table: str
    file_name: Optional[str] = Field(None, alias="fileName")
    row_count: int = Field(0, alias="rowCount")
    status: OutcomeStatus
    error: Optional[str] = None

    @model_serializer(mode="wrap")
    def _error_only_when_failed(self, handler):
        data = handler(self)
        if data.get("error") is None:
            data.pop("error", None)
        return data


class ExportSummary(_CamelModel):
    total: int
    succeeded: int
    empty: int
    failed: int
    rows_exported: int = Field(..., alias="rowsExported")


class ExportReportOut(_CamelModel):
    finished_at: datetime = Field(..., alias="finishedAt")
    archive: str
    table_set: str = Field("required", alias="tableSet")
    format: ExportFormat
    summary: ExportSummary
    outcomes: List[ExportOutcomeOut]


# =============================================================================
# Table inspection
# =============================================================================

class TableSummaryOut(_CamelModel):
    table: str
    exists: bool
    row_count: Optional[int] = Field(None, alias="rowCount")
    error: Optional[str] = None


class ProjectTablesOut(_CamelModel):
    project: str
    tables: List[TableSummaryOut]


class TablePreviewOut(_CamelModel):
    """Newest rows of one table; values are converted to JSON-compatible types."""
    project: str
    table: str
    limit: int
    rows: List[Dict[str, Any]]


# =============================================================================
# Team members
# =============================================================================

def _lenient_int(v: Any) -> Optional[int]:
    if v is None or v == "":
        return None
    try:
        return int(v)
    except (TypeError, ValueError):
        return None


class TeamMembersQueryParams(_CamelModel):
    """Query string of GET /team-members; out-of-range paging is clamped later."""
    page: Optional[int] = None
    limit: Optional[int] = None
    search: Optional[str] = None
    project: Optional[str] = None
    sort_by: Optional[str] = Field(None, alias="sortBy")
    sort_order: Optional[str] = Field(None, alias="sortOrder")

    @field_validator("page", "limit", mode="before")
    @classmethod
    def parse_int(cls, v: Any) -> Optional[int]:
        return _lenient_int(v)


class TeamMembersExportRequest(_CamelModel):
    search: Optional[str] = None
    project: Optional[str] = None
    sort_by: Optional[str] = Field(None, alias="sortBy")
    sort_order: Optional[str] = Field(None, alias="sortOrder")


class TeamMembersPage(_CamelModel):
    data: List[Dict[str, Any]]
    total: int
    page: int
    limit: int
    total_pages: int = Field(..., alias="totalPages")
    has_next_page: bool = Field(..., alias="hasNextPage")
    has_prev_page: bool = Field(..., alias="hasPrevPage")


# =============================================================================
# Health
# =============================================================================

class HealthResponse(BaseModel):
    status: str = "ok"
    message: str = "Server is running"
    projects: int = 0
