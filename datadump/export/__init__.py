"""
Multi-project table export.

Connects to each registered project database, exports a fixed table set to
CSV or XLSX files in a scratch workspace, and packs them into one ZIP.
"""

# Every registered project must expose these.
REQUIRED_TABLES: tuple[str, ...] = ("individual_attempts", "attempt_details", "teams")

# Hackathon level-2 progress tables; optional per project.
LEVEL2_TABLES: tuple[str, ...] = (
    "hl2_progress",
    "level2_screen3_progress",
    "selected_cases",
    "selected_solution",
    "winners_list_l1",
)

INSPECTABLE_TABLES: tuple[str, ...] = REQUIRED_TABLES + LEVEL2_TABLES

from datadump.export.exceptions import (  # noqa: E402
    ExportError,
    ValidationError,
    ConnectionError,
    MissingTableError,
    QueryError,
    NoProjectsError,
)
from datadump.export.db_connection import (  # noqa: E402
    ConnectionConfig,
    DatabaseConnection,
    open_connection,
)
from datadump.export.schema_check import TableCheck, check_tables, missing_tables  # noqa: E402
from datadump.export.table_exporter import ExportFormat, TableExport, TableExporter  # noqa: E402
from datadump.export.workspace import ScratchWorkspace  # noqa: E402
from datadump.export.archive import ArchiveBuilder  # noqa: E402
from datadump.export.table_stats import (  # noqa: E402
    PREVIEW_LIMIT,
    TableSummary,
    count_rows,
    describe_tables,
    preview_rows,
)
from datadump.export.orchestrator import (  # noqa: E402
    ExportOrchestrator,
    ExportOutcome,
    ExportReport,
    ExportResult,
    OutcomeStatus,
)

__all__ = [
    "REQUIRED_TABLES",
    "LEVEL2_TABLES",
    "INSPECTABLE_TABLES",
    # Exceptions
    "ExportError",
    "ValidationError",
    "ConnectionError",
    "MissingTableError",
    "QueryError",
    "NoProjectsError",
    # Connections
    "ConnectionConfig",
    "DatabaseConnection",
    "open_connection",
    # Schema checks
    "TableCheck",
    "check_tables",
    "missing_tables",
    # Inspection
    "PREVIEW_LIMIT",
    "TableSummary",
    "count_rows",
    "describe_tables",
    "preview_rows",
    # Export
    "ExportFormat",
    "TableExport",
    "TableExporter",
    "ScratchWorkspace",
    "ArchiveBuilder",
    "ExportOrchestrator",
    "ExportOutcome",
    "ExportReport",
    "ExportResult",
    "OutcomeStatus",
]
