"""
Application factory and shared service state.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

from starlette.applications import Starlette
from starlette.middleware import Middleware

from datadump.core.config import get
from datadump.core.logging_config import get_logger
from datadump.core.middleware import CorrelationIdMiddleware, ErrorBoundaryMiddleware
from datadump.export import REQUIRED_TABLES
from datadump.export.archive import ArchiveBuilder
from datadump.export.db_connection import open_connection
from datadump.export.orchestrator import ConnectionFactory, ExportOrchestrator
from datadump.export.table_exporter import ExportFormat, TableExporter
from datadump.registry import ProjectRepository
from datadump.teams.aggregator import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, TeamAggregator

logger = get_logger(__name__)


@dataclass
class ExportSettings:
    """The [export] and [teams] sections of datadump.toml."""

    scratch_root: Optional[Path] = None
    chunk_size: int = 1000
    archive_prefix: str = "supabase_export"
    compression_level: int = 9
    default_format: ExportFormat = ExportFormat.CSV
    max_concurrent_projects: int = 1
    level2_archive_prefix: str = "hl2_export"
    teams_default_limit: int = DEFAULT_PAGE_SIZE
    teams_max_limit: int = MAX_PAGE_SIZE

    @classmethod
    def from_config(cls) -> "ExportSettings":
        scratch = get("export", "scratch_dir")
        return cls(
            scratch_root=Path(scratch) if scratch else None,
            chunk_size=get("export", "chunk_size"),
            archive_prefix=get("export", "archive_prefix"),
            compression_level=get("export", "compression_level"),
            default_format=ExportFormat(get("export", "default_format")),
            max_concurrent_projects=get("export", "max_concurrent_projects"),
            level2_archive_prefix=get("export", "level2_archive_prefix"),
            teams_default_limit=get("teams", "default_limit"),
            teams_max_limit=get("teams", "max_limit"),
        )


class ExportServices:
    """Everything a request handler needs, hung off ``app.state.services``."""

    def __init__(
        self,
        repository: ProjectRepository,
        settings: ExportSettings,
        connect: ConnectionFactory = open_connection,
    ):
        self.repository = repository
        self.settings = settings
        self.connect = connect
        self.aggregator = TeamAggregator(connect=connect)
        self.last_export: Optional[dict] = None

    def orchestrator(
        self,
        fmt: Optional[ExportFormat] = None,
        tables: Sequence[str] = REQUIRED_TABLES,
        archive_prefix: Optional[str] = None,
    ) -> ExportOrchestrator:
        exporter = TableExporter(
            allowed_tables=tables,
            fmt=fmt or self.settings.default_format,
            chunk_size=self.settings.chunk_size,
        )
        return ExportOrchestrator(
            tables=tables,
            exporter=exporter,
            archive_builder=ArchiveBuilder(compression_level=self.settings.compression_level),
            connect=self.connect,
            scratch_root=self.settings.scratch_root,
            archive_prefix=archive_prefix or self.settings.archive_prefix,
            max_concurrent_projects=self.settings.max_concurrent_projects,
        )


def create_app(
    repository: Optional[ProjectRepository] = None,
    settings: Optional[ExportSettings] = None,
    connect: ConnectionFactory = open_connection,
    debug: bool = False,
) -> Starlette:
    """Build the Starlette application."""
    from datadump.gateway.api import routes

    services = ExportServices(
        repository=repository if repository is not None else ProjectRepository(),
        settings=settings or ExportSettings.from_config(),
        connect=connect,
    )

    app = Starlette(
        debug=debug,
        routes=routes,
        middleware=[
            Middleware(CorrelationIdMiddleware),
            Middleware(ErrorBoundaryMiddleware),
        ],
    )
    app.state.services = services
    logger.info(f"App created with {len(services.repository)} project(s) registered")
    return app
