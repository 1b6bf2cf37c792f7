"""
HTTP route handlers.

Provides endpoints for:
- Health check (GET /health)
- Project registration (GET/POST /projects, DELETE /projects/{id})
- Table inspection (GET /projects/{id}/tables, GET /projects/{id}/tables/{table}/preview)
- Bulk export (POST /export, POST /export/level2, GET /export/last-report)
- Team members (GET /team-members, GET /team-members/projects, POST /export-team-members)
"""

import json
from datetime import datetime, timezone
from typing import Any, Optional, Sequence

from starlette.requests import Request
from starlette.responses import FileResponse, JSONResponse, StreamingResponse
from starlette.routing import Route

from datadump.core.logging_config import get_logger, is_production
from datadump.export import INSPECTABLE_TABLES, LEVEL2_TABLES, REQUIRED_TABLES
from datadump.export.archive import ZIP_MEDIA_TYPE
from datadump.export.exceptions import (
    ConnectionError,
    MissingTableError,
    NoProjectsError,
    QueryError,
    ValidationError,
)
from datadump.export.orchestrator import ExportResult
from datadump.export.schema_check import check_tables, missing_tables
from datadump.export.table_stats import PREVIEW_LIMIT, describe_tables, preview_rows
from datadump.export.workspace import ScratchWorkspace
from datadump.gateway.app import ExportServices
from datadump.gateway.schemas import (
    ExportReportOut,
    ExportRequest,
    HealthResponse,
    ProjectCreate,
    ProjectCreated,
    ProjectOut,
    ProjectTablesOut,
    TablePreviewOut,
    TeamMembersExportRequest,
    TeamMembersPage,
    TeamMembersQueryParams,
    parse_body,
)
from datadump.registry import ProjectConfig
from datadump.teams.aggregator import TeamMemberQuery

logger = get_logger(__name__)

CONNECTION_FAILED = "Failed to connect to database. Please check your credentials."


# =============================================================================
# Helpers
# =============================================================================

def _services(request: Request) -> ExportServices:
    return request.app.state.services


def _error(message: str, code: str, status_code: int, **extra: Any) -> JSONResponse:
    return JSONResponse({"error": message, "code": code, **extra}, status_code=status_code)


def _validation_error(e: ValidationError) -> JSONResponse:
    extra = {"fields": e.fields} if e.fields else {}
    return _error(str(e), "VALIDATION_ERROR", 400, **extra)


def _internal_error(prefix: str, e: Exception) -> JSONResponse:
    """500 for an unanticipated failure; the detail stays in the log in production."""
    logger.exception(f"{prefix}: {e}")
    message = prefix if is_production() else f"{prefix}: {e}"
    return _error(message, "INTERNAL_ERROR", 500)


async def _json_body(request: Request, required: bool = True) -> Optional[dict]:
    """Parsed JSON object body; None when the body is not a JSON object.

    An empty body counts as ``{}`` unless ``required``.
    """
    raw = await request.body()
    if not raw.strip():
        return None if required else {}
    try:
        body = json.loads(raw)
    except ValueError:
        return None
    return body if isinstance(body, dict) else None


def _project_out(project: ProjectConfig) -> dict:
    return ProjectOut(
        id=project.id,
        name=project.name,
        host=project.host,
        database=project.database,
        username=project.username,
        port=project.port,
        created_at=project.created_at,
    ).model_dump(mode="json", by_alias=True)


class WorkspaceFileResponse(FileResponse):
    """FileResponse that removes its scratch workspace once sending ends, however it ends."""

    def __init__(self, *args: Any, workspace: ScratchWorkspace, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self.workspace = workspace

    async def __call__(self, scope, receive, send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            self.workspace.cleanup()


# =============================================================================
# Health
# =============================================================================

async def api_health(request: Request) -> JSONResponse:
    """
    Health check endpoint.

    GET /health
    """
    health = HealthResponse(projects=len(_services(request).repository))
    return JSONResponse(health.model_dump())


# =============================================================================
# Projects
# =============================================================================

async def api_list_projects(request: Request) -> JSONResponse:
    """
    List registered projects (without passwords).

    GET /projects
    """
    projects = _services(request).repository.list()
    return JSONResponse([_project_out(p) for p in projects])


async def api_add_project(request: Request) -> JSONResponse:
    """
    Register a project after checking connectivity and required tables.

    POST /projects
    """
    services = _services(request)

    body = await _json_body(request)
    if body is None:
        return _error("Invalid JSON body", "BAD_REQUEST", 400)

    try:
        payload = ProjectCreate.from_body(body)
    except ValidationError as e:
        return _validation_error(e)

    project = ProjectConfig(
        name=payload.name,
        host=payload.host,
        database=payload.database,
        username=payload.username,
        password=payload.password,
        port=payload.port,
    )

    try:
        async with services.connect(project) as conn:
            checks = await check_tables(conn, REQUIRED_TABLES)
    except (ConnectionError, QueryError) as e:
        logger.error(f"Database connection error for {project.name}: {e}")
        return _error(CONNECTION_FAILED, "CONNECTION_ERROR", 400, details=str(e))

    absent = missing_tables(checks)
    if absent:
        err = MissingTableError(absent)
        logger.warning(f"Rejected project {project.name}: {err}")
        return _error(str(err), "MISSING_TABLES", 400, missing_tables=absent)

    services.repository.add(project)
    response = ProjectCreated(project=ProjectOut.model_validate(_project_out(project)))
    return JSONResponse(response.model_dump(mode="json", by_alias=True))


async def api_remove_project(request: Request) -> JSONResponse:
    """
    Remove a project.

    DELETE /projects/{project_id}
    """
    project_id = request.path_params["project_id"]
    if not _services(request).repository.remove_by_id(project_id):
        return _error("Project not found", "NOT_FOUND", 404)
    return JSONResponse({"message": "Project removed successfully"})


# =============================================================================
# Table inspection
# =============================================================================

async def api_project_tables(request: Request) -> JSONResponse:
    """
    Existence and row count of every known table in one project.

    GET /projects/{project_id}/tables
    """
    services = _services(request)
    project = services.repository.get(request.path_params["project_id"])
    if project is None:
        return _error("Project not found", "NOT_FOUND", 404)

    try:
        async with services.connect(project) as conn:
            summaries = await describe_tables(conn, INSPECTABLE_TABLES)
    except (ConnectionError, QueryError) as e:
        logger.error(f"Table overview failed for {project.name}: {e}")
        return _error(CONNECTION_FAILED, "CONNECTION_ERROR", 400, details=str(e))

    overview = ProjectTablesOut(project=project.name, tables=[s.to_dict() for s in summaries])
    return JSONResponse(overview.model_dump(mode="json", by_alias=True))


async def api_table_preview(request: Request) -> JSONResponse:
    """
    The newest rows of one table.

    GET /projects/{project_id}/tables/{table}/preview
    """
    services = _services(request)
    project = services.repository.get(request.path_params["project_id"])
    if project is None:
        return _error("Project not found", "NOT_FOUND", 404)
    table = request.path_params["table"]
    if table not in INSPECTABLE_TABLES:
        return _error(f"Unknown table: {table}", "NOT_FOUND", 404)

    try:
        async with services.connect(project) as conn:
            rows = await preview_rows(conn, table, PREVIEW_LIMIT)
    except ConnectionError as e:
        logger.error(f"Preview connection failed for {project.name}: {e}")
        return _error(CONNECTION_FAILED, "CONNECTION_ERROR", 400, details=str(e))
    except QueryError as e:
        logger.warning(f"Preview of {project.name}.{table} failed: {e}")
        return _error(f"Could not read {table}", "QUERY_ERROR", 400, details=str(e))

    preview = TablePreviewOut(project=project.name, table=table, limit=PREVIEW_LIMIT, rows=rows)
    return JSONResponse(preview.model_dump(mode="json", by_alias=True))


# =============================================================================
# Export
# =============================================================================

def _report_payload(result: ExportResult, fmt, table_set: str) -> dict:
    return ExportReportOut(
        finished_at=result.finished_at,
        archive=result.archive_name,
        table_set=table_set,
        format=fmt,
        summary=result.report.to_dict(),
        outcomes=[o.to_dict() for o in result.outcomes],
    ).model_dump(mode="json", by_alias=True)


async def _run_export(
    request: Request,
    tables: Sequence[str],
    table_set: str,
    archive_prefix: Optional[str] = None,
):
    services = _services(request)
    projects = services.repository.list()
    if not projects:
        return _error("No projects configured", "NO_PROJECTS", 400)

    body = await _json_body(request, required=False)
    if body is None:
        return _error("Invalid JSON body", "BAD_REQUEST", 400)
    try:
        export_request = parse_body(ExportRequest, body)
    except ValidationError as e:
        return _validation_error(e)

    fmt = export_request.format or services.settings.default_format
    orchestrator = services.orchestrator(fmt, tables=tables, archive_prefix=archive_prefix)

    try:
        result = await orchestrator.export_all(projects)
    except NoProjectsError as e:
        return _error(str(e), "NO_PROJECTS", 400)
    except Exception as e:
        return _internal_error("Export failed", e)

    report = _report_payload(result, fmt, table_set)
    services.last_export = report

    return WorkspaceFileResponse(
        result.archive_path,
        media_type=ZIP_MEDIA_TYPE,
        filename=result.archive_name,
        headers={"X-Export-Summary": json.dumps(report["summary"])},
        workspace=result.workspace,
    )


async def api_export(request: Request):
    """
    Export the required tables of every project as one ZIP.

    POST /export

    Per-table and per-project failures do not fail the request; they are
    reported in the X-Export-Summary header and GET /export/last-report.
    """
    return await _run_export(request, REQUIRED_TABLES, "required")


async def api_export_level2(request: Request):
    """
    Export the level-2 progress tables of every project as one ZIP.

    POST /export/level2

    The tables are optional, so a project without one gets an error outcome
    for it and the rest of the export carries on.
    """
    prefix = _services(request).settings.level2_archive_prefix
    return await _run_export(request, LEVEL2_TABLES, "level2", archive_prefix=prefix)


async def api_last_export_report(request: Request) -> JSONResponse:
    """
    Outcomes of the most recent export in this process.

    GET /export/last-report
    """
    report = _services(request).last_export
    if report is None:
        return _error("No export has run yet", "NOT_FOUND", 404)
    return JSONResponse(report)


# =============================================================================
# Team members
# =============================================================================

def _team_query(params, services: ExportServices, page=None, limit=None) -> TeamMemberQuery:
    return TeamMemberQuery(
        page=page,
        limit=limit,
        search=params.search,
        project=params.project,
        sort_by=params.sort_by,
        sort_order=params.sort_order,
        max_limit=services.settings.teams_max_limit,
        default_limit=services.settings.teams_default_limit,
    )


async def api_team_members(request: Request) -> JSONResponse:
    """
    Paged, searchable list of team members across projects.

    GET /team-members?page&limit&search&project&sortBy&sortOrder
    """
    services = _services(request)
    projects = services.repository.list()
    if not projects:
        return _error("No projects configured", "NO_PROJECTS", 400)

    params = TeamMembersQueryParams.model_validate(dict(request.query_params))
    query = _team_query(params, services, page=params.page, limit=params.limit)

    try:
        result = await services.aggregator.list_team_members(projects, query)
    except NoProjectsError as e:
        return _error(str(e), "NO_PROJECTS", 400)

    page = TeamMembersPage.model_validate(result.to_dict())
    return JSONResponse(page.model_dump(mode="json", by_alias=True))


async def api_team_member_projects(request: Request) -> JSONResponse:
    """
    Project names available as team member filters.

    GET /team-members/projects
    """
    names = [p.name for p in _services(request).repository.list()]
    return JSONResponse({"projects": list(dict.fromkeys(names))})


async def api_export_team_members(request: Request):
    """
    Merged team members as one CSV.

    POST /export-team-members
    """
    services = _services(request)
    projects = services.repository.list()
    if not projects:
        return _error("No projects configured", "NO_PROJECTS", 400)

    body = await _json_body(request, required=False)
    if body is None:
        return _error("Invalid JSON body", "BAD_REQUEST", 400)
    try:
        params = parse_body(TeamMembersExportRequest, body)
    except ValidationError as e:
        return _validation_error(e)

    query = _team_query(params, services)
    try:
        chunks = await services.aggregator.export_team_members_csv(
            projects, query, chunk_size=services.settings.chunk_size
        )
    except NoProjectsError as e:
        return _error(str(e), "NO_PROJECTS", 400)

    file_name = f"team_members_{datetime.now(timezone.utc).date().isoformat()}.csv"
    return StreamingResponse(
        chunks,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{file_name}"'},
    )


# =============================================================================
# Route definitions
# =============================================================================

routes = [
    Route("/health", api_health, methods=["GET"]),

    # Projects
    Route("/projects", api_list_projects, methods=["GET"]),
    Route("/projects", api_add_project, methods=["POST"]),
    Route("/projects/{project_id}", api_remove_project, methods=["DELETE"]),

    # Table inspection
    Route("/projects/{project_id}/tables", api_project_tables, methods=["GET"]),
    Route("/projects/{project_id}/tables/{table}/preview", api_table_preview, methods=["GET"]),

    # Export
    Route("/export", api_export, methods=["POST"]),
    Route("/export/level2", api_export_level2, methods=["POST"]),
    Route("/export/last-report", api_last_export_report, methods=["GET"]),

    # Team members
    Route("/team-members", api_team_members, methods=["GET"]),
    Route("/team-members/projects", api_team_member_projects, methods=["GET"]),
    Route("/export-team-members", api_export_team_members, methods=["POST"]),
]
