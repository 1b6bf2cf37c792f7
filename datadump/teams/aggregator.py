"""
Cross-project team member aggregation.

Reads the ``teams`` table of every project, tags each row with its project and
a derived team code, then filters, sorts and pages the merged list in memory.
"""

import csv
import io
import locale
import logging
import math
from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator, Optional, Sequence

from datadump.core.logging_config import get_logger
from datadump.export.cells import row_values, union_columns
from datadump.export.db_connection import open_connection
from datadump.export.exceptions import NoProjectsError
from datadump.export.orchestrator import ConnectionFactory
from datadump.export.schema_check import table_exists
from datadump.export.table_exporter import quote_ident
from datadump.registry import ProjectConfig
from datadump.teams.team_codes import TeamCodeResolver, resolve_team_name

TEAMS_TABLE = "teams"

DEFAULT_PAGE_SIZE = 12
MAX_PAGE_SIZE = 100

# Columns the per-project query may ORDER BY.
SQL_SORT_COLUMNS = frozenset({"name", "email", "role", "created_at", "updated_at"})
# Derived/cross-project keys, sorted after merging.
MEMORY_SORT_KEYS = {"team_code": "team_code", "project": "project_name"}

SEARCH_FIELDS = ("name", "email", "team_code", "project_name", "role", "join_code")


def _as_int(value: Any, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


@dataclass
class TeamMemberQuery:
    """Search, filter, sort and paging options; values are normalized on creation."""

    page: int = 1
    limit: Optional[int] = None
    search: Optional[str] = None
    project: Optional[str] = None
    sort_by: str = "created_at"
    sort_order: str = "desc"
    max_limit: int = field(default=MAX_PAGE_SIZE, repr=False)
    default_limit: int = field(default=DEFAULT_PAGE_SIZE, repr=False)

    def __post_init__(self):
        self.page = max(1, _as_int(self.page, 1))
        self.limit = min(self.max_limit, max(1, _as_int(self.limit, self.default_limit)))
        self.search = (self.search or "").strip() or None
        project = (self.project or "").strip()
        self.project = None if project.lower() in ("", "all") else project
        self.sort_by = (self.sort_by or "created_at").strip()
        order = (self.sort_order or "desc").strip().lower()
        self.sort_order = order if order in ("asc", "desc") else "desc"

    @property
    def descending(self) -> bool:
        return self.sort_order == "desc"

    def order_clause(self) -> str:
        """ORDER BY clause for the per-project query."""
        if self.sort_by in SQL_SORT_COLUMNS:
            return f"{quote_ident(self.sort_by)} {self.sort_order.upper()}"
        return f"{quote_ident('created_at')} DESC"

    def includes(self, project: ProjectConfig) -> bool:
        return self.project is None or project.name == self.project


@dataclass
class PagedResult:
    """One page of merged team members."""

    data: list[dict[str, Any]]
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0

    @property
    def has_next_page(self) -> bool:
        return self.page < self.total_pages

    @property
    def has_prev_page(self) -> bool:
        return self.page > 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "data": self.data,
            "total": self.total,
            "page": self.page,
            "limit": self.limit,
            "totalPages": self.total_pages,
            "hasNextPage": self.has_next_page,
            "hasPrevPage": self.has_prev_page,
        }


def paginate(members: Sequence[dict[str, Any]], page: int, limit: int) -> PagedResult:
    start = (page - 1) * limit
    return PagedResult(
        data=list(members[start:start + limit]),
        total=len(members),
        page=page,
        limit=limit,
    )


def matches_search(member: dict[str, Any], term: str) -> bool:
    needle = term.casefold()
    for key in SEARCH_FIELDS:
        value = member.get(key)
        if value is not None and needle in str(value).casefold():
            return True
    return False


def _collation_key(value: Any) -> str:
    return locale.strxfrm("" if value is None else str(value).casefold())


def sort_members(members: list[dict[str, Any]], sort_by: str, descending: bool) -> list[dict[str, Any]]:
    """In-memory sort for keys the database cannot order by; other keys pass through."""
    key = MEMORY_SORT_KEYS.get(sort_by)
    if key is None:
        return members
    return sorted(members, key=lambda m: _collation_key(m.get(key)), reverse=descending)


class TeamAggregator:
    """Merge team members from every project's ``teams`` table."""

    def __init__(
        self,
        connect: ConnectionFactory = open_connection,
        resolver: Optional[TeamCodeResolver] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self._connect = connect
        self._resolver = resolver or TeamCodeResolver()
        self._logger = logger or get_logger(__name__)

    async def collect(
        self, projects: Sequence[ProjectConfig], query: TeamMemberQuery
    ) -> list[dict[str, Any]]:
        """Fetch, enrich, search and sort members across projects (no paging).

        Raises:
            NoProjectsError: ``projects`` is empty
        """
        if not projects:
            raise NoProjectsError()

        members: list[dict[str, Any]] = []
        for project in projects:
            if not query.includes(project):
                continue
            members.extend(await self._fetch_project(project, query))

        if query.search:
            members = [m for m in members if matches_search(m, query.search)]

        return sort_members(members, query.sort_by, query.descending)

    async def list_team_members(
        self, projects: Sequence[ProjectConfig], query: TeamMemberQuery
    ) -> PagedResult:
        members = await self.collect(projects, query)
        result = paginate(members, query.page, query.limit)
        self._logger.info(
            f"Team members: {result.total} match(es), page {result.page}/{result.total_pages}"
        )
        return result

    async def export_rows(
        self, projects: Sequence[ProjectConfig], query: TeamMemberQuery
    ) -> tuple[list[str], list[dict[str, Any]]]:
        """Columns (union over all rows, first-seen order) and rows for CSV export."""
        members = await self.collect(projects, query)
        return union_columns(members), members

    async def export_team_members_csv(
        self,
        projects: Sequence[ProjectConfig],
        query: TeamMemberQuery,
        chunk_size: int = 1000,
    ) -> Iterator[str]:
        """Every matching member as CSV text chunks, ignoring paging."""
        columns, rows = await self.export_rows(projects, query)
        self._logger.info(f"Exporting {len(rows)} team member(s) as CSV")
        return iter_csv(columns, rows, chunk_size=chunk_size)

    async def _fetch_project(
        self, project: ProjectConfig, query: TeamMemberQuery
    ) -> list[dict[str, Any]]:
        sql = f"SELECT * FROM {quote_ident(TEAMS_TABLE)} ORDER BY {query.order_clause()}"
        try:
            async with self._connect(project) as conn:
                if not await table_exists(conn, TEAMS_TABLE):
                    self._logger.warning(f"Project {project.name} has no {TEAMS_TABLE} table, skipping")
                    return []
                rows = await conn.execute(sql)
        except Exception as e:
            self._logger.error(f"Error fetching team members from {project.name}: {e}")
            return []

        return [self._enrich(row, project) for row in rows]

    def _enrich(self, row: dict[str, Any], project: ProjectConfig) -> dict[str, Any]:
        member = dict(row)
        team_code = self._resolver.resolve(row)
        member["project_name"] = project.name
        member["team_code"] = team_code
        member["team_name"] = resolve_team_name(row, team_code)
        return member


def iter_csv(
    columns: Sequence[str], rows: Iterable[dict[str, Any]], chunk_size: int = 1000
) -> Iterator[str]:
    """Yield CSV text in chunks of ``chunk_size`` rows, header first."""
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(columns)
    pending = 0
    for row in rows:
        writer.writerow(row_values(row, columns))
        pending += 1
        if pending >= chunk_size:
            yield buffer.getvalue()
            buffer.seek(0)
            buffer.truncate(0)
            pending = 0
    tail = buffer.getvalue()
    if tail:
        yield tail
