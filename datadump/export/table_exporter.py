"""
Per-table export into a scratch workspace.

Rows are pulled from a server-side cursor one chunk at a time and appended to
the destination file before the next chunk is fetched.
"""

import asyncio
import csv
import logging
import re
from contextlib import aclosing
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Iterable, Optional

from openpyxl import Workbook

from datadump.export.cells import header_from, row_values, to_sheet_value
from datadump.export.db_connection import DatabaseConnection
from datadump.export.workspace import ScratchWorkspace

DEFAULT_CHUNK_SIZE = 1000

_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9._ -]")


class ExportFormat(str, Enum):
    """Tabular file formats."""
    CSV = "csv"
    XLSX = "xlsx"


@dataclass(frozen=True)
class TableExport:
    """A table that produced a file."""

    file_name: str
    row_count: int


def quote_ident(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def export_file_name(project_name: str, table: str, fmt: ExportFormat) -> str:
    """``<project>_<table>.<ext>`` with anything path-like neutralised."""
    stem = _UNSAFE_FILENAME_CHARS.sub("_", f"{project_name}_{table}").strip(" .")
    return f"{stem or 'export'}.{fmt.value}"


class _CsvWriter:
    def __init__(self, path: Path, columns: list[str]):
        self.path = path
        self.columns = columns
        self._fh = open(path, "w", newline="", encoding="utf-8")
        self._writer = csv.writer(self._fh)
        self._writer.writerow(columns)

    async def write(self, rows: Iterable[dict[str, Any]]) -> None:
        cells = [row_values(row, self.columns) for row in rows]
        await asyncio.to_thread(self._writer.writerows, cells)

    async def close(self) -> None:
        self._fh.close()

    def abort(self) -> None:
        self._fh.close()
        self.path.unlink(missing_ok=True)


class _XlsxWriter:
    def __init__(self, path: Path, columns: list[str], sheet_name: str):
        self.path = path
        self.columns = columns
        self._workbook = Workbook(write_only=True)
        self._sheet = self._workbook.create_sheet(title=sheet_name[:31])
        self._sheet.append(columns)

    async def write(self, rows: Iterable[dict[str, Any]]) -> None:
        for row in rows:
            self._sheet.append([to_sheet_value(row.get(column)) for column in self.columns])

    async def close(self) -> None:
        await asyncio.to_thread(self._workbook.save, self.path)

    def abort(self) -> None:
        self.path.unlink(missing_ok=True)


class TableExporter:
    """Exports one allow-listed table of one project to a file."""

    def __init__(
        self,
        allowed_tables: Iterable[str],
        fmt: ExportFormat = ExportFormat.CSV,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        logger: Optional[logging.Logger] = None,
    ):
        """Initialize exporter.

        Args:
            allowed_tables: The only table names this exporter will query
            fmt: Output file format
            chunk_size: Rows fetched and written per step
            logger: Optional logger instance
        """
        if chunk_size < 1:
            raise ValueError("chunk_size must be at least 1")
        self._allowed = frozenset(allowed_tables)
        self._format = ExportFormat(fmt)
        self._chunk_size = chunk_size
        self._logger = logger or logging.getLogger(__name__)

    @property
    def format(self) -> ExportFormat:
        return self._format

    def _open_writer(self, path: Path, columns: list[str], table: str):
        if self._format is ExportFormat.XLSX:
            return _XlsxWriter(path, columns, sheet_name=table)
        return _CsvWriter(path, columns)

    async def export(
        self,
        conn: DatabaseConnection,
        project_name: str,
        table: str,
        workspace: ScratchWorkspace,
    ) -> Optional[TableExport]:
        """Export every row of ``table``.

        Args:
            conn: Open connection to the project's database
            project_name: Display name used in the file name
            table: Table to export; must be in the allow-list
            workspace: Scratch directory receiving the file

        Returns:
            TableExport for a non-empty table, None when it has no rows
            (no file is written in that case)

        Raises:
            ValueError: table is not allow-listed
            QueryError: the query failed
        """
        if table not in self._allowed:
            raise ValueError(f"Table '{table}' is not exportable")

        file_name = export_file_name(project_name, table, self._format)
        query = f"SELECT * FROM {quote_ident(table)}"

        writer = None
        row_count = 0
        try:
            async with aclosing(conn.stream(query, batch_size=self._chunk_size)) as batches:
                async for batch in batches:
                    if not batch:
                        continue
                    if writer is None:
                        file_name = workspace.reserve(file_name)
                        writer = self._open_writer(
                            workspace.file(file_name), header_from(batch[0]), table
                        )
                    await writer.write(batch)
                    row_count += len(batch)
            if writer is not None:
                await writer.close()
        except BaseException:
            if writer is not None:
                writer.abort()
            raise

        if writer is None:
            self._logger.info(f"{project_name}.{table}: no rows")
            return None

        self._logger.info(f"Wrote {file_name} ({row_count} rows)")
        return TableExport(file_name=file_name, row_count=row_count)
