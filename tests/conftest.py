"""
Shared test fixtures for the datadump test suite.
"""

import re
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Callable, Optional, Union

import pytest

from datadump.export.exceptions import ConnectionError, QueryError
from datadump.registry import ProjectConfig

_FROM_RE = re.compile(r'FROM\s+"?(\w+)"?', re.IGNORECASE)
_ORDER_RE = re.compile(r'ORDER BY\s+"(\w+)"\s+(ASC|DESC)', re.IGNORECASE)


class FakeDatabase:
    """In-memory stand-in for a project's DatabaseConnection."""

    def __init__(self, tables: Optional[dict[str, list[dict[str, Any]]]] = None):
        self.tables = tables or {}
        self.queries: list[tuple[str, tuple]] = []
        self.stream_batches: list[int] = []
        self.closed = False

    def _rows(self, query: str) -> list[dict[str, Any]]:
        table = _FROM_RE.search(query).group(1)
        if table not in self.tables:
            raise QueryError(f'relation "{table}" does not exist')
        return [dict(r) for r in self.tables[table]]

    async def execute(self, query: str, *args: Any) -> list[dict[str, Any]]:
        self.queries.append((query, args))
        if "information_schema.tables" in query:
            return [{"exists": args[1] in self.tables}]
        rows = self._rows(query)
        if "COUNT(*)" in query:
            return [{"count": len(rows)}]
        order = _ORDER_RE.search(query)
        if order:
            column, direction = order.group(1), order.group(2).upper()
            if rows and column not in rows[0]:
                raise QueryError(f'column "{column}" does not exist')
            rows.sort(key=lambda r: str(r.get(column) or ""), reverse=direction == "DESC")
        if "LIMIT $1" in query:
            rows = rows[:args[0]]
        return rows

    async def stream(self, query: str, *args: Any, batch_size: int = 1000):
        self.queries.append((query, args))
        rows = self._rows(query)
        for start in range(0, len(rows), batch_size):
            batch = rows[start:start + batch_size]
            self.stream_batches.append(len(batch))
            yield batch


def make_connect(databases: dict[str, Union[FakeDatabase, Exception]]) -> Callable:
    """Connection factory keyed by project name; an Exception value fails the connect."""
    opened: list[str] = []

    @asynccontextmanager
    async def connect(project: ProjectConfig):
        target = databases[project.name]
        if isinstance(target, Exception):
            raise target
        opened.append(project.name)
        try:
            yield target
        finally:
            target.closed = True

    connect.opened = opened
    return connect


def make_project(name: str, **overrides: Any) -> ProjectConfig:
    fields = {
        "name": name,
        "host": f"{name.lower()}.db.example.com",
        "database": "postgres",
        "username": "postgres",
        "password": f"{name}-secret-pw",
        "port": 5432,
    }
    fields.update(overrides)
    return ProjectConfig(**fields)


@pytest.fixture
def fake_db() -> type[FakeDatabase]:
    return FakeDatabase


@pytest.fixture
def connect_factory() -> Callable:
    return make_connect


@pytest.fixture
def project_factory() -> Callable[..., ProjectConfig]:
    return make_project


@pytest.fixture
def connection_refused() -> ConnectionError:
    return ConnectionError("Failed to connect to database: connection refused")


@pytest.fixture
def scratch_root(tmp_path: Path) -> Path:
    """Parent directory for scratch workspaces created during a test."""
    root = tmp_path / "scratch"
    root.mkdir()
    return root


@pytest.fixture
def sample_team_rows() -> list[dict]:
    """Rows shaped like a project's teams table."""
    return [
        {
            "id": 1,
            "name": "Asha Rao",
            "email": "team42@college.edu",
            "role": "leader",
            "join_code": "JC7Q2X",
            "team_code": "OLD01",
            "created_at": "2024-03-01T10:00:00",
        },
        {
            "id": 2,
            "name": "Ben Ortiz",
            "email": "ben.ortiz@college.edu",
            "role": "member",
            "join_code": None,
            "team_code": "TC200",
            "created_at": "2024-03-02T10:00:00",
        },
        {
            "id": 3,
            "name": "Chen Li",
            "email": "t77@college.edu",
            "role": "member",
            "join_code": "",
            "team_code": None,
            "created_at": "2024-03-03T10:00:00",
        },
    ]
