"""
Tests for per-table export to CSV and XLSX.
"""

import csv
import json

import pytest
from openpyxl import load_workbook

from datadump.export import REQUIRED_TABLES
from datadump.export.exceptions import QueryError
from datadump.export.table_exporter import (
    ExportFormat,
    TableExport,
    TableExporter,
    _CsvWriter,
    export_file_name,
    quote_ident,
)
from datadump.export.workspace import ScratchWorkspace


def _read_csv(path):
    with open(path, newline="", encoding="utf-8") as f:
        return list(csv.reader(f))


@pytest.fixture
def workspace(scratch_root):
    ws = ScratchWorkspace.create(scratch_root)
    yield ws
    ws.cleanup()


@pytest.fixture
def attempts():
    return [
        {"id": 1, "user_email": "a@x.com", "score": 9.5, "answers": {"q1": "b", "q2": ["c", "d"]}},
        {"id": 2, "user_email": "b@x.com", "score": None, "answers": None},
        {"id": 3, "user_email": 'quote "me", please', "score": 7, "answers": {"note": "line1\nline2"}},
    ]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class TestNaming:

    def test_file_name_pattern(self):
        assert export_file_name("GMP", "teams", ExportFormat.CSV) == "GMP_teams.csv"
        assert export_file_name("GMP", "teams", ExportFormat.XLSX) == "GMP_teams.xlsx"

    def test_path_separators_are_neutralised(self):
        name = export_file_name("../evil/proj", "teams", ExportFormat.CSV)
        assert "/" not in name
        assert name.endswith("_teams.csv")

    def test_quote_ident_escapes_quotes(self):
        assert quote_ident("teams") == '"teams"'
        assert quote_ident('we"ird') == '"we""ird"'


# ---------------------------------------------------------------------------
# CSV export
# ---------------------------------------------------------------------------

class TestCsvExport:

    @pytest.mark.asyncio
    async def test_writes_header_and_rows(self, fake_db, workspace, attempts):
        conn = fake_db({"individual_attempts": attempts})
        exporter = TableExporter(REQUIRED_TABLES)

        result = await exporter.export(conn, "GMP", "individual_attempts", workspace)

        assert result == TableExport(file_name="GMP_individual_attempts.csv", row_count=3)
        rows = _read_csv(workspace.file(result.file_name))
        assert rows[0] == ["id", "user_email", "score", "answers"]
        assert len(rows) == 4
        assert rows[2] == ["2", "b@x.com", "", ""]

    @pytest.mark.asyncio
    async def test_structured_cells_round_trip_as_json(self, fake_db, workspace, attempts):
        conn = fake_db({"individual_attempts": attempts})
        exporter = TableExporter(REQUIRED_TABLES)

        result = await exporter.export(conn, "GMP", "individual_attempts", workspace)

        rows = _read_csv(workspace.file(result.file_name))
        assert json.loads(rows[1][3]) == {"q1": "b", "q2": ["c", "d"]}
        assert json.loads(rows[3][3]) == {"note": "line1\nline2"}
        assert rows[3][1] == 'quote "me", please'

    @pytest.mark.asyncio
    async def test_header_comes_from_first_row(self, fake_db, workspace):
        conn = fake_db({
            "teams": [
                {"id": 1, "name": "a"},
                {"id": 2, "email": "extra@x.com"},
            ]
        })
        exporter = TableExporter(REQUIRED_TABLES)

        result = await exporter.export(conn, "P", "teams", workspace)

        rows = _read_csv(workspace.file(result.file_name))
        assert rows == [["id", "name"], ["1", "a"], ["2", ""]]

    @pytest.mark.asyncio
    async def test_streams_in_chunks(self, fake_db, workspace):
        conn = fake_db({"attempt_details": [{"id": i} for i in range(25)]})
        exporter = TableExporter(REQUIRED_TABLES, chunk_size=10)

        result = await exporter.export(conn, "P", "attempt_details", workspace)

        assert result.row_count == 25
        assert conn.stream_batches == [10, 10, 5]
        assert len(_read_csv(workspace.file(result.file_name))) == 26

    @pytest.mark.asyncio
    async def test_empty_table_writes_nothing(self, fake_db, workspace):
        conn = fake_db({"teams": []})
        exporter = TableExporter(REQUIRED_TABLES)

        result = await exporter.export(conn, "P", "teams", workspace)

        assert result is None
        assert list(workspace.path.iterdir()) == []

    @pytest.mark.asyncio
    async def test_duplicate_project_names_get_distinct_files(self, fake_db, workspace):
        conn = fake_db({"teams": [{"id": 1}]})
        exporter = TableExporter(REQUIRED_TABLES)

        first = await exporter.export(conn, "Same", "teams", workspace)
        second = await exporter.export(conn, "Same", "teams", workspace)

        assert first.file_name == "Same_teams.csv"
        assert second.file_name == "Same_teams_2.csv"


# ---------------------------------------------------------------------------
# XLSX export
# ---------------------------------------------------------------------------

class TestXlsxExport:

    @pytest.mark.asyncio
    async def test_writes_workbook(self, fake_db, workspace, attempts):
        conn = fake_db({"individual_attempts": attempts})
        exporter = TableExporter(REQUIRED_TABLES, fmt=ExportFormat.XLSX)

        result = await exporter.export(conn, "GMP", "individual_attempts", workspace)

        assert result.file_name == "GMP_individual_attempts.xlsx"
        workbook = load_workbook(workspace.file(result.file_name), read_only=True)
        sheet = workbook["individual_attempts"]
        values = [list(row) for row in sheet.iter_rows(values_only=True)]
        workbook.close()

        assert values[0] == ["id", "user_email", "score", "answers"]
        assert values[1][0] == 1
        assert values[1][2] == 9.5
        assert json.loads(values[1][3]) == {"q1": "b", "q2": ["c", "d"]}
        assert len(values) == 4

    def test_format_accepts_string(self):
        exporter = TableExporter(REQUIRED_TABLES, fmt="xlsx")
        assert exporter.format is ExportFormat.XLSX


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------

class TestExportFailures:

    @pytest.mark.asyncio
    async def test_rejects_table_outside_allow_list(self, fake_db, workspace):
        conn = fake_db({"users": [{"id": 1}]})
        exporter = TableExporter(REQUIRED_TABLES)

        with pytest.raises(ValueError, match="not exportable"):
            await exporter.export(conn, "P", "users", workspace)
        assert conn.queries == []

    @pytest.mark.asyncio
    async def test_query_error_propagates(self, fake_db, workspace):
        conn = fake_db({})
        exporter = TableExporter(REQUIRED_TABLES)

        with pytest.raises(QueryError, match="does not exist"):
            await exporter.export(conn, "P", "teams", workspace)

    @pytest.mark.asyncio
    async def test_failure_mid_stream_removes_partial_file(self, workspace):
        class BrokenStream:
            async def stream(self, query, *args, batch_size=1000):
                yield [{"id": 1}]
                raise QueryError("connection lost")

        exporter = TableExporter(REQUIRED_TABLES)

        with pytest.raises(QueryError):
            await exporter.export(BrokenStream(), "P", "teams", workspace)
        assert not workspace.file("P_teams.csv").exists()

    @pytest.mark.asyncio
    async def test_write_failure_releases_the_cursor(self, workspace, monkeypatch):
        class TrackedStream:
            released = False

            async def stream(self, query, *args, batch_size=1000):
                try:
                    yield [{"id": 1}]
                    yield [{"id": 2}]
                finally:
                    TrackedStream.released = True

        async def failing_write(self, rows):
            raise OSError("disk full")

        monkeypatch.setattr(_CsvWriter, "write", failing_write)
        exporter = TableExporter(REQUIRED_TABLES)

        with pytest.raises(OSError, match="disk full"):
            await exporter.export(TrackedStream(), "P", "teams", workspace)
        assert TrackedStream.released is True
        assert not workspace.file("P_teams.csv").exists()

    def test_rejects_non_positive_chunk_size(self):
        with pytest.raises(ValueError):
            TableExporter(REQUIRED_TABLES, chunk_size=0)
