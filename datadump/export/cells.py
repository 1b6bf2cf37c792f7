"""
Cell serialization for tabular exports.

Rows arrive as ordered mappings with no fixed schema. Structured values are
flattened to compact JSON so a single cell never spans fields or lines.
"""

import json
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Iterable, Mapping

from openpyxl.cell.cell import ILLEGAL_CHARACTERS_RE


def to_json(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False, default=str)


def to_cell(value: Any) -> str:
    """Render one value as CSV cell text."""
    if value is None:
        return ""
    if isinstance(value, (dict, list, tuple)):
        return to_json(value)
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, (bytes, bytearray, memoryview)):
        return "\\x" + bytes(value).hex()
    return str(value)


def to_sheet_value(value: Any) -> Any:
    """Render one value for a spreadsheet cell.

    Numbers and booleans stay native; everything else goes through to_cell.
    """
    if value is None:
        return None
    if isinstance(value, (bool, int, float, Decimal)):
        return value
    # openpyxl refuses control characters outright
    return ILLEGAL_CHARACTERS_RE.sub("", to_cell(value))


def header_from(row: Mapping[str, Any]) -> list[str]:
    """Column list for a table: the key order of its first row."""
    return list(row.keys())


def row_values(row: Mapping[str, Any], columns: Iterable[str]) -> list[str]:
    """Cells for ``row`` in ``columns`` order; keys outside ``columns`` are dropped."""
    return [to_cell(row.get(column)) for column in columns]


def union_columns(rows: Iterable[Mapping[str, Any]]) -> list[str]:
    """Superset of keys across rows, in first-seen order."""
    seen: dict[str, None] = {}
    for row in rows:
        for key in row:
            seen.setdefault(key, None)
    return list(seen)
