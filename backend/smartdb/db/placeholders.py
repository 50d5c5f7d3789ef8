"""Positional placeholder translation.

Statements are written with PostgreSQL-style ``$1, $2, ...`` placeholders no
matter which engine runs them. Each engine declares a native style and the
statement is rewritten before it reaches the driver:

- ``format``: ``%s`` markers with the parameter list expanded into occurrence
  order (psycopg, aiomysql). Literal ``%`` is doubled when parameters are
  bound, because both drivers then treat every ``%`` as a format directive.
- ``numbered``: SQLite's ``?NNN`` markers, which keep the original numbering.

Placeholders inside string literals, quoted identifiers, comments and
dollar-quoted bodies are left alone.
"""

import re
from typing import Any, List, Optional, Sequence, Tuple

from smartdb.core.errors import ErrorCode, QueryExecutionError

FORMAT = "format"
NUMBERED = "numbered"

_DOLLAR_TAG = re.compile(r"\$([A-Za-z_][A-Za-z0-9_]*)?\$")
_PLACEHOLDER = re.compile(r"\$(\d+)")
_IDENT_CHAR = re.compile(r"[A-Za-z0-9_$]")


def _skip_quoted(sql: str, start: int, quote: str, backslash_escapes: bool) -> int:
    """Return the index just past the closing quote of the literal at ``start``."""
    i = start + 1
    n = len(sql)
    while i < n:
        c = sql[i]
        if backslash_escapes and c == "\\":
            i += 2
            continue
        if c == quote:
            if i + 1 < n and sql[i + 1] == quote:
                i += 2
                continue
            return i + 1
        i += 1
    return n


def _rewrite(
    sql: str,
    values: List[Any],
    style: str,
    backslash_escapes: bool,
    escape_percent: bool,
) -> Tuple[str, List[Any], bool]:
    out: List[str] = []
    bound: List[Any] = []
    used = False

    def opaque(text: str) -> None:
        out.append(text.replace("%", "%%") if escape_percent else text)

    i = 0
    n = len(sql)
    while i < n:
        c = sql[i]
        nxt = sql[i + 1] if i + 1 < n else ""
        prev = sql[i - 1] if i > 0 else ""

        if c in ("'", '"', "`"):
            escapes = backslash_escapes or (c == "'" and prev in ("e", "E"))
            end = _skip_quoted(sql, i, c, escapes)
            opaque(sql[i:end])
            i = end
            continue
        if c == "-" and nxt == "-":
            end = sql.find("\n", i)
            end = n if end == -1 else end
            opaque(sql[i:end])
            i = end
            continue
        if c == "/" and nxt == "*":
            end = sql.find("*/", i + 2)
            end = n if end == -1 else end + 2
            opaque(sql[i:end])
            i = end
            continue
        if c == "$" and not _IDENT_CHAR.match(prev):
            placeholder = _PLACEHOLDER.match(sql, i)
            if placeholder:
                index = int(placeholder.group(1))
                if index < 1 or index > len(values):
                    raise QueryExecutionError(
                        f"Placeholder ${index} has no matching parameter "
                        f"({len(values)} supplied)",
                        details={"placeholder": index, "param_count": len(values)},
                        code=ErrorCode.QUERY_VALIDATION_ERROR,
                    )
                used = True
                if style == FORMAT:
                    out.append("%s")
                    bound.append(values[index - 1])
                else:
                    out.append(f"?{index}")
                i = placeholder.end()
                continue
            tag = _DOLLAR_TAG.match(sql, i)
            if tag:
                close = sql.find(tag.group(0), tag.end())
                end = n if close == -1 else close + len(tag.group(0))
                opaque(sql[i:end])
                i = end
                continue
        if c == "%" and escape_percent:
            out.append("%%")
        else:
            out.append(c)
        i += 1

    return "".join(out), bound, used


def translate(
    sql: str,
    params: Optional[Sequence[Any]],
    style: str,
    backslash_escapes: bool = False,
) -> Tuple[str, Optional[List[Any]]]:
    """
    Rewrite ``$n`` placeholders into the engine's native style.

    Args:
        sql: Statement using ``$1``-style positional placeholders
        params: Positional parameter values (``params[0]`` binds ``$1``)
        style: ``FORMAT`` or ``NUMBERED``
        backslash_escapes: Whether ``\\`` escapes quotes inside literals (MySQL)

    Returns:
        Tuple of (native SQL, parameters for the driver). Parameters are None
        when the statement binds none, so drivers skip formatting entirely.

    Raises:
        QueryExecutionError: If a placeholder has no matching parameter, or
            parameters were supplied to a statement without placeholders
    """
    values = list(params) if params else []
    if not values and "$" not in sql:
        return sql, None

    text, bound, used = _rewrite(sql, values, style, backslash_escapes, False)
    if values and not used:
        raise QueryExecutionError(
            f"Statement has no placeholders but {len(values)} parameters were supplied",
            details={"param_count": len(values)},
            code=ErrorCode.QUERY_VALIDATION_ERROR,
        )
    if not used:
        return text, None
    if style == FORMAT:
        text, bound, _ = _rewrite(sql, values, style, backslash_escapes, True)
        return text, bound
    return text, values
