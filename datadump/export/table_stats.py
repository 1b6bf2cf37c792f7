"""
Read-only inspection of a project's tables: row counts and a preview of the
most recent rows.
"""

import logging
from dataclasses import dataclass
from typing import Any, Iterable, Optional

from datadump.core.logging_config import get_logger
from datadump.export import INSPECTABLE_TABLES
from datadump.export.db_connection import DatabaseConnection
from datadump.export.exceptions import QueryError
from datadump.export.schema_check import check_tables
from datadump.export.table_exporter import quote_ident

PREVIEW_LIMIT = 25
PREVIEW_ORDER_COLUMN = "created_at"


@dataclass(frozen=True)
class TableSummary:
    """Existence and size of one table."""

    table: str
    exists: bool
    row_count: Optional[int] = None
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        data = {"table": self.table, "exists": self.exists, "rowCount": self.row_count}
        if self.error is not None:
            data["error"] = self.error
        return data


def _require_inspectable(table: str) -> None:
    if table not in INSPECTABLE_TABLES:
        raise ValueError(f"Table '{table}' cannot be inspected")


async def count_rows(conn: DatabaseConnection, table: str) -> int:
    """``COUNT(*)`` of an allow-listed table.

    Raises:
        ValueError: table is not allow-listed
        QueryError: the query failed
    """
    _require_inspectable(table)
    rows = await conn.execute(f"SELECT COUNT(*) AS count FROM {quote_ident(table)}")
    return int(rows[0]["count"]) if rows else 0


async def preview_rows(
    conn: DatabaseConnection, table: str, limit: int = PREVIEW_LIMIT
) -> list[dict[str, Any]]:
    """The newest ``limit`` rows of an allow-listed table, by ``created_at``.

    Raises:
        ValueError: table is not allow-listed
        QueryError: the query failed (including a table without ``created_at``)
    """
    _require_inspectable(table)
    query = (
        f"SELECT * FROM {quote_ident(table)} "
        f"ORDER BY {quote_ident(PREVIEW_ORDER_COLUMN)} DESC LIMIT $1"
    )
    return await conn.execute(query, max(1, int(limit)))


async def describe_tables(
    conn: DatabaseConnection,
    tables: Iterable[str],
    logger: Optional[logging.Logger] = None,
) -> list[TableSummary]:
    """Existence check for every table, then a row count for those present.

    A failing count is reported on its table and does not stop the others.
    """
    logger = logger or get_logger(__name__)
    summaries = []
    for check in await check_tables(conn, tables):
        if not check.exists:
            summaries.append(TableSummary(check.table, exists=False))
            continue
        try:
            summaries.append(TableSummary(check.table, True, await count_rows(conn, check.table)))
        except QueryError as e:
            logger.warning(f"Could not count rows of {check.table}: {e}")
            summaries.append(TableSummary(check.table, True, error=str(e)))
    return summaries
