"""
Required-table checks against a project's catalog.
"""

import asyncio
from dataclasses import dataclass
from typing import Iterable

from datadump.export.db_connection import DatabaseConnection

TABLE_EXISTS_QUERY = """
    SELECT EXISTS (
        SELECT FROM information_schema.tables
        WHERE table_schema = $1
          AND table_name = $2
    ) AS exists
"""


@dataclass(frozen=True)
class TableCheck:
    """Existence check result for one table."""

    table: str
    exists: bool


async def table_exists(
    conn: DatabaseConnection, table: str, schema: str = "public"
) -> bool:
    rows = await conn.execute(TABLE_EXISTS_QUERY, schema, table)
    return bool(rows and rows[0]["exists"])


async def check_tables(
    conn: DatabaseConnection,
    table_names: Iterable[str],
    schema: str = "public",
) -> list[TableCheck]:
    """Probe each table concurrently.

    Args:
        conn: Open project connection
        table_names: Tables to look for
        schema: Database schema (default: public)

    Returns:
        One TableCheck per name, in input order
    """
    names = list(table_names)
    results = await asyncio.gather(
        *(table_exists(conn, name, schema) for name in names)
    )
    return [TableCheck(table=name, exists=exists) for name, exists in zip(names, results)]


def missing_tables(checks: Iterable[TableCheck]) -> list[str]:
    """Names of the tables that do not exist."""
    return [check.table for check in checks if not check.exists]
