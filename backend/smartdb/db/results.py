"""Engine-independent query results.

Every engine hands back the same ``QueryResult`` shape. Reading a cursor
follows two paths: the read path fetches rows when the statement produced a
result set, and the generic path reports only the affected-row count. The
generic path is taken when the cursor has no description, or when fetching
fails with an error the engine classifies as a result-shape mismatch. Errors
reported by the database server never qualify, so a real SQL error is never
retried or hidden.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

ShapeErrorCheck = Callable[[BaseException], bool]


def never_shape_error(exc: BaseException) -> bool:
    return False


@dataclass
class QueryResult:
    """Normalized result of one statement."""

    rows: List[Dict[str, Any]] = field(default_factory=list)
    columns: List[str] = field(default_factory=list)
    row_count: int = 0


def normalize_result(
    rows: Optional[Sequence[Any]],
    columns: Optional[Sequence[str]] = None,
    row_count: Optional[int] = None,
) -> QueryResult:
    """
    Build a QueryResult from whatever the driver returned.

    Args:
        rows: Sequence of mappings or tuples; None when the engine returned nothing
        columns: Explicit field names; derived from the first row when omitted
        row_count: Engine-reported count; DB-API's ``-1`` counts as omitted

    Returns:
        QueryResult with rows as dicts keyed by column name
    """
    raw_rows = list(rows) if rows is not None else []

    if columns is None:
        first = raw_rows[0] if raw_rows else None
        columns = list(first.keys()) if isinstance(first, Mapping) else []
    columns = list(columns)

    normalized: List[Dict[str, Any]] = []
    for row in raw_rows:
        if isinstance(row, Mapping):
            normalized.append(dict(row))
        else:
            normalized.append(dict(zip(columns, row)))

    if row_count is None or row_count < 0:
        row_count = len(normalized) if rows is not None else 0

    return QueryResult(rows=normalized, columns=columns, row_count=row_count)


async def read_cursor(cursor: Any, is_shape_error: ShapeErrorCheck = never_shape_error) -> QueryResult:
    """Normalize an executed async DB-API style cursor."""
    description = cursor.description
    if description is None:
        return normalize_result(None, columns=[], row_count=cursor.rowcount)
    try:
        rows = await cursor.fetchall()
    except Exception as exc:
        if not is_shape_error(exc):
            raise
        return normalize_result(None, columns=[], row_count=cursor.rowcount)
    columns = [column[0] for column in description]
    return normalize_result(rows, columns=columns)
