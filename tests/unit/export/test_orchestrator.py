"""
Tests for multi-project export orchestration.
"""

import asyncio
import zipfile
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock

import pytest

from datadump.export import REQUIRED_TABLES
from datadump.export.archive import ArchiveBuilder
from datadump.export.exceptions import NoProjectsError
from datadump.export.orchestrator import (
    ExportOrchestrator,
    ExportOutcome,
    ExportReport,
    OutcomeStatus,
)
from datadump.export.table_exporter import TableExporter


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def team_rows():
    return [{"id": i, "name": f"member{i}", "email": f"team{i}@x.com"} for i in range(5)]


@pytest.fixture
def make_orchestrator(scratch_root):
    def factory(connect, **kwargs):
        return ExportOrchestrator(
            tables=REQUIRED_TABLES,
            exporter=TableExporter(REQUIRED_TABLES, chunk_size=2),
            connect=connect,
            scratch_root=scratch_root,
            **kwargs,
        )
    return factory


def _by_key(outcomes):
    return {(o.project, o.table): o for o in outcomes}


# ---------------------------------------------------------------------------
# ExportOutcome status rules
# ---------------------------------------------------------------------------

class TestExportOutcome:

    def test_success_requires_file_and_rows(self):
        with pytest.raises(ValueError):
            ExportOutcome("P", "teams", OutcomeStatus.SUCCESS, file_name=None, row_count=3)
        with pytest.raises(ValueError):
            ExportOutcome("P", "teams", OutcomeStatus.SUCCESS, file_name="P_teams.csv", row_count=0)

    def test_empty_has_no_file(self):
        with pytest.raises(ValueError):
            ExportOutcome("P", "teams", OutcomeStatus.EMPTY, file_name="P_teams.csv")

    def test_error_requires_message(self):
        with pytest.raises(ValueError):
            ExportOutcome("P", "teams", OutcomeStatus.ERROR)
        with pytest.raises(ValueError):
            ExportOutcome("P", "teams", OutcomeStatus.ERROR, row_count=2, error="x")

    def test_failed_with_blank_message_gets_placeholder(self):
        outcome = ExportOutcome.failed("P", "teams", "")
        assert outcome.error == "Unknown error"

    def test_status_accepts_string(self):
        outcome = ExportOutcome("P", "teams", "empty")
        assert outcome.status is OutcomeStatus.EMPTY

    def test_to_dict_shape(self):
        assert ExportOutcome.success("P", "teams", "P_teams.csv", 4).to_dict() == {
            "project": "P",
            "table": "teams",
            "fileName": "P_teams.csv",
            "rowCount": 4,
            "status": "success",
        }
        assert ExportOutcome.failed("P", "teams", "boom").to_dict()["error"] == "boom"


def test_report_counts():
    outcomes = [
        ExportOutcome.success("A", "teams", "A_teams.csv", 5),
        ExportOutcome.empty("A", "individual_attempts"),
        ExportOutcome.failed("A", "attempt_details", "missing"),
        ExportOutcome.success("B", "teams", "B_teams.csv", 2),
    ]

    report = ExportReport.from_outcomes(outcomes)

    assert report.to_dict() == {
        "total": 4,
        "succeeded": 2,
        "empty": 1,
        "failed": 1,
        "rowsExported": 7,
    }


# ---------------------------------------------------------------------------
# export_all
# ---------------------------------------------------------------------------

class TestExportAll:

    @pytest.mark.asyncio
    async def test_mixed_projects_scenario(
        self, fake_db, connect_factory, project_factory, make_orchestrator,
        connection_refused, team_rows,
    ):
        healthy = {"teams": team_rows, "individual_attempts": []}
        connect = connect_factory({
            "A": fake_db(dict(healthy)),
            "B": connection_refused,
            "C": fake_db(dict(healthy)),
        })
        projects = [project_factory("A"), project_factory("B"), project_factory("C")]

        result = await make_orchestrator(connect).export_all(projects)

        try:
            assert len(result.outcomes) == 9
            outcomes = _by_key(result.outcomes)
            for name in ("A", "C"):
                teams = outcomes[(name, "teams")]
                assert teams.status is OutcomeStatus.SUCCESS
                assert teams.row_count == 5
                assert teams.file_name == f"{name}_teams.csv"
                assert outcomes[(name, "individual_attempts")].status is OutcomeStatus.EMPTY
                details = outcomes[(name, "attempt_details")]
                assert details.status is OutcomeStatus.ERROR
                assert "attempt_details" in details.error
            for table in REQUIRED_TABLES:
                failed = outcomes[("B", table)]
                assert failed.status is OutcomeStatus.ERROR
                assert failed.error == str(connection_refused)

            with zipfile.ZipFile(result.archive_path) as zf:
                assert sorted(zf.namelist()) == ["A_teams.csv", "C_teams.csv"]
            assert result.archive_name.startswith("supabase_export_")
            assert result.report.rows_exported == 10
        finally:
            result.workspace.cleanup()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("healthy_count,failing_count", [(1, 0), (0, 3), (2, 2), (4, 1)])
    async def test_one_outcome_per_project_and_table(
        self, fake_db, connect_factory, project_factory, make_orchestrator,
        connection_refused, healthy_count, failing_count,
    ):
        databases = {}
        for i in range(healthy_count):
            databases[f"ok{i}"] = fake_db({t: [{"id": i}] for t in REQUIRED_TABLES})
        for i in range(failing_count):
            databases[f"down{i}"] = connection_refused
        projects = [project_factory(name) for name in databases]

        result = await make_orchestrator(connect_factory(databases)).export_all(projects)

        try:
            assert len(result.outcomes) == len(projects) * len(REQUIRED_TABLES)
            assert [(o.project, o.table) for o in result.outcomes] == [
                (p.name, t) for p in projects for t in REQUIRED_TABLES
            ]
            for outcome in result.outcomes:
                if outcome.status is OutcomeStatus.SUCCESS:
                    assert outcome.file_name and outcome.row_count > 0
                else:
                    assert outcome.file_name is None and outcome.row_count == 0
                if outcome.status is OutcomeStatus.ERROR:
                    assert outcome.error
        finally:
            result.workspace.cleanup()

    @pytest.mark.asyncio
    async def test_connections_are_released(
        self, fake_db, connect_factory, project_factory, make_orchestrator,
    ):
        databases = {"A": fake_db({"teams": [{"id": 1}]}), "B": fake_db({})}
        connect = connect_factory(databases)

        result = await make_orchestrator(connect).export_all(
            [project_factory("A"), project_factory("B")]
        )
        result.workspace.cleanup()

        assert connect.opened == ["A", "B"]
        assert all(db.closed for db in databases.values())

    @pytest.mark.asyncio
    async def test_no_projects_touches_nothing(self, scratch_root, make_orchestrator):
        connect = MagicMock()

        with pytest.raises(NoProjectsError):
            await make_orchestrator(connect).export_all([])

        connect.assert_not_called()
        assert list(scratch_root.iterdir()) == []

    @pytest.mark.asyncio
    async def test_workspace_removed_when_archiving_fails(
        self, fake_db, connect_factory, project_factory, make_orchestrator, scratch_root,
    ):
        connect = connect_factory({"A": fake_db({"teams": [{"id": 1}]})})
        builder = MagicMock(spec=ArchiveBuilder)
        builder.build = AsyncMock(side_effect=OSError("disk full"))

        with pytest.raises(OSError, match="disk full"):
            await make_orchestrator(connect, archive_builder=builder).export_all(
                [project_factory("A")]
            )

        assert list(scratch_root.iterdir()) == []

    @pytest.mark.asyncio
    async def test_duplicate_project_names_keep_both_files(
        self, fake_db, connect_factory, project_factory, make_orchestrator,
    ):
        db = fake_db({"teams": [{"id": 1}]})
        connect = connect_factory({"Same": db})
        projects = [project_factory("Same"), project_factory("Same")]

        result = await make_orchestrator(connect).export_all(projects)

        try:
            with zipfile.ZipFile(result.archive_path) as zf:
                assert sorted(zf.namelist()) == ["Same_teams.csv", "Same_teams_2.csv"]
        finally:
            result.workspace.cleanup()

    @pytest.mark.asyncio
    async def test_release_failure_after_all_tables_keeps_outcomes(
        self, fake_db, project_factory, make_orchestrator,
    ):
        db = fake_db({t: [{"id": 1}] for t in REQUIRED_TABLES})

        @asynccontextmanager
        async def connect(project):
            yield db
            raise OSError("close failed")

        result = await make_orchestrator(connect).export_all([project_factory("A")])

        try:
            assert len(result.outcomes) == 3
            assert all(o.status is OutcomeStatus.SUCCESS for o in result.outcomes)
        finally:
            result.workspace.cleanup()

    @pytest.mark.asyncio
    async def test_bounded_concurrency_keeps_project_order(
        self, fake_db, project_factory, make_orchestrator,
    ):
        active = 0
        peak = 0

        @asynccontextmanager
        async def connect(project):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            # later projects finish first
            await asyncio.sleep(0.01 * (5 - int(project.name[1:])))
            try:
                yield fake_db({"teams": [{"id": 1}]})
            finally:
                active -= 1

        projects = [project_factory(f"p{i}") for i in range(5)]

        result = await make_orchestrator(connect, max_concurrent_projects=2).export_all(projects)

        try:
            assert peak == 2
            assert [o.project for o in result.outcomes] == [
                p.name for p in projects for _ in REQUIRED_TABLES
            ]
        finally:
            result.workspace.cleanup()

    def test_rejects_zero_concurrency(self, make_orchestrator):
        with pytest.raises(ValueError):
            make_orchestrator(MagicMock(), max_concurrent_projects=0)
