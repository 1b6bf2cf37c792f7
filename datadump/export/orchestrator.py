"""
Orchestration of multi-project table exports.

Every configured project is exported independently: a project that cannot be
reached, or a table that cannot be read, is recorded as an error outcome and
the run carries on with the rest.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, AsyncContextManager, Callable, Optional, Sequence

from datadump.export.archive import ArchiveBuilder, archive_file_name
from datadump.export.db_connection import DatabaseConnection, open_connection
from datadump.export.exceptions import NoProjectsError
from datadump.export.table_exporter import TableExporter
from datadump.export.workspace import ScratchWorkspace
from datadump.registry import ProjectConfig

ConnectionFactory = Callable[[ProjectConfig], AsyncContextManager[DatabaseConnection]]


class OutcomeStatus(str, Enum):
    SUCCESS = "success"
    EMPTY = "empty"
    ERROR = "error"


@dataclass(frozen=True)
class ExportOutcome:
    """Result of exporting one table of one project."""

    project: str
    table: str
    status: OutcomeStatus
    file_name: Optional[str] = None
    row_count: int = 0
    error: Optional[str] = None

    def __post_init__(self):
        status = OutcomeStatus(self.status)
        object.__setattr__(self, "status", status)
        if self.row_count < 0:
            raise ValueError("row_count must be non-negative")
        if status is OutcomeStatus.SUCCESS:
            if not self.file_name or self.row_count <= 0:
                raise ValueError("success outcome needs a file and at least one row")
            if self.error is not None:
                raise ValueError("success outcome cannot carry an error")
        elif status is OutcomeStatus.EMPTY:
            if self.file_name is not None or self.row_count != 0 or self.error is not None:
                raise ValueError("empty outcome has no file, rows or error")
        else:
            if self.file_name is not None or self.row_count != 0:
                raise ValueError("error outcome has no file or rows")
            if not self.error:
                raise ValueError("error outcome needs a message")

    @classmethod
    def success(cls, project: str, table: str, file_name: str, row_count: int) -> "ExportOutcome":
        return cls(project, table, OutcomeStatus.SUCCESS, file_name=file_name, row_count=row_count)

    @classmethod
    def empty(cls, project: str, table: str) -> "ExportOutcome":
        return cls(project, table, OutcomeStatus.EMPTY)

    @classmethod
    def failed(cls, project: str, table: str, error: str) -> "ExportOutcome":
        return cls(project, table, OutcomeStatus.ERROR, error=error or "Unknown error")

    def to_dict(self) -> dict[str, Any]:
        data = {
            "project": self.project,
            "table": self.table,
            "fileName": self.file_name,
            "rowCount": self.row_count,
            "status": self.status.value,
        }
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass
class ExportReport:
    """Counts over one export run's outcomes."""

    total: int
    succeeded: int
    empty: int
    failed: int
    rows_exported: int

    @classmethod
    def from_outcomes(cls, outcomes: Sequence[ExportOutcome]) -> "ExportReport":
        def count(status: OutcomeStatus) -> int:
            return sum(1 for o in outcomes if o.status is status)

        return cls(
            total=len(outcomes),
            succeeded=count(OutcomeStatus.SUCCESS),
            empty=count(OutcomeStatus.EMPTY),
            failed=count(OutcomeStatus.ERROR),
            rows_exported=sum(o.row_count for o in outcomes),
        )

    def to_dict(self) -> dict[str, int]:
        return {
            "total": self.total,
            "succeeded": self.succeeded,
            "empty": self.empty,
            "failed": self.failed,
            "rowsExported": self.rows_exported,
        }


@dataclass
class ExportResult:
    """A finished export run; the caller owns the workspace from here on."""

    workspace: ScratchWorkspace
    archive_path: Path
    archive_name: str
    outcomes: list[ExportOutcome]
    finished_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def report(self) -> ExportReport:
        return ExportReport.from_outcomes(self.outcomes)


class ExportOrchestrator:
    """Coordinate per-project connections, per-table exports and archiving."""

    def __init__(
        self,
        tables: Sequence[str],
        exporter: TableExporter,
        archive_builder: Optional[ArchiveBuilder] = None,
        connect: ConnectionFactory = open_connection,
        scratch_root: Optional[Path] = None,
        archive_prefix: str = "supabase_export",
        max_concurrent_projects: int = 1,
        logger: Optional[logging.Logger] = None,
    ):
        """Initialize orchestrator.

        Args:
            tables: Tables exported from every project, in report order
            exporter: Table exporter (carries the output format)
            archive_builder: ZIP packager
            connect: Factory returning an async context manager per project
            scratch_root: Parent directory for scratch workspaces
            archive_prefix: Archive file name prefix
            max_concurrent_projects: Projects exported at once; 1 is fully sequential
            logger: Optional logger instance
        """
        if max_concurrent_projects < 1:
            raise ValueError("max_concurrent_projects must be at least 1")
        self._tables = tuple(tables)
        self._exporter = exporter
        self._archive_builder = archive_builder or ArchiveBuilder()
        self._connect = connect
        self._scratch_root = scratch_root
        self._archive_prefix = archive_prefix
        self._max_concurrent = max_concurrent_projects
        self._logger = logger or logging.getLogger(__name__)

    @property
    def tables(self) -> tuple[str, ...]:
        return self._tables

    async def export_all(self, projects: Sequence[ProjectConfig]) -> ExportResult:
        """Export every required table of every project and archive the results.

        Raises:
            NoProjectsError: ``projects`` is empty (nothing is touched)
        """
        if not projects:
            raise NoProjectsError()

        workspace = ScratchWorkspace.create(self._scratch_root, logger=self._logger)
        self._logger.info(
            f"Starting export of {len(projects)} project(s) into {workspace.path}"
        )

        try:
            outcomes = await self._collect_outcomes(projects, workspace)
            archive_name = archive_file_name(self._archive_prefix)
            archive_path = await self._archive_builder.build(workspace, outcomes, archive_name)
        except BaseException:
            workspace.cleanup()
            raise

        result = ExportResult(
            workspace=workspace,
            archive_path=archive_path,
            archive_name=archive_name,
            outcomes=outcomes,
        )
        report = result.report
        self._logger.info(
            f"Export finished: {report.succeeded} succeeded, {report.empty} empty, "
            f"{report.failed} failed ({report.rows_exported} rows)",
            extra={"data": report.to_dict()},
        )
        return result

    async def _collect_outcomes(
        self, projects: Sequence[ProjectConfig], workspace: ScratchWorkspace
    ) -> list[ExportOutcome]:
        if self._max_concurrent == 1:
            outcomes: list[ExportOutcome] = []
            for project in projects:
                outcomes.extend(await self._export_project(project, workspace))
            return outcomes

        semaphore = asyncio.Semaphore(self._max_concurrent)

        async def bounded(project: ProjectConfig) -> list[ExportOutcome]:
            async with semaphore:
                return await self._export_project(project, workspace)

        # gather keeps input order, so the report stays project-then-table
        per_project = await asyncio.gather(*(bounded(p) for p in projects))
        return [outcome for outcomes in per_project for outcome in outcomes]

    async def _export_project(
        self, project: ProjectConfig, workspace: ScratchWorkspace
    ) -> list[ExportOutcome]:
        outcomes: list[ExportOutcome] = []
        try:
            async with self._connect(project) as conn:
                for table in self._tables:
                    outcomes.append(
                        await self._export_table(conn, project, table, workspace)
                    )
        except Exception as e:
            if len(outcomes) == len(self._tables):
                # Every table was attempted; the failure came from releasing the connection.
                self._logger.warning(f"Error releasing connection for {project.name}: {e}")
            else:
                self._logger.error(f"Error connecting to project {project.name}: {e}")
                message = str(e) or type(e).__name__
                outcomes.extend(
                    ExportOutcome.failed(project.name, table, message)
                    for table in self._tables[len(outcomes):]
                )
        return outcomes

    async def _export_table(
        self,
        conn: DatabaseConnection,
        project: ProjectConfig,
        table: str,
        workspace: ScratchWorkspace,
    ) -> ExportOutcome:
        try:
            result = await self._exporter.export(conn, project.name, table, workspace)
        except Exception as e:
            self._logger.error(f"Error exporting {table} from {project.name}: {e}")
            return ExportOutcome.failed(project.name, table, str(e) or type(e).__name__)

        if result is None:
            return ExportOutcome.empty(project.name, table)
        return ExportOutcome.success(project.name, table, result.file_name, result.row_count)
