"""Ranked full-text search over the session index."""

import re
import sqlite3
from datetime import datetime, timedelta, timezone
from typing import Any

from rich.console import Console
from rich.markup import escape

from sesame.exceptions import InvalidQueryError
from sesame.models import KIND_TOOL_CALL, SearchOptions, SearchResult

console = Console()

# Query that lists sessions by recency instead of matching terms
LIST_ALL_QUERY = "*"
LIST_ALL_SNIPPET = "(recent session)"

SESSION_COLUMNS = """
    s.id AS session_id,
    s.source,
    s.path,
    s.cwd,
    s.name,
    s.created_at,
    s.modified_at
"""


def escape_fts_query(query: str) -> str:
    """Quote each whitespace-separated token for FTS5.

    Operators such as . * - : or NEAR inside user text are matched as plain
    terms instead of being interpreted as FTS5 syntax.
    """
    return " ".join('"' + token.replace('"', '""') + '"' for token in query.split())


def parse_relative_date(value: str) -> str:
    """Turn a CLI date into an ISO string.

    Supports:
    - ISO: "2026-01-15", "2026-01-15T10:30:00Z" (returned as-is)
    - Relative: "7d", "2w", "1m" (date part only)
    """
    value = value.strip()
    if re.match(r"^\d{4}-\d{2}-\d{2}", value):
        return value

    match = re.match(r"^(\d+)([dwm])$", value)
    if not match:
        raise InvalidQueryError(
            f"Invalid date format: {value!r}. "
            "Use ISO date (YYYY-MM-DD) or relative format (7d, 2w, 1m)"
        )

    amount = int(match.group(1))
    unit = match.group(2)
    now = datetime.now(tz=timezone.utc)

    if unit == "d":
        target = now - timedelta(days=amount)
    elif unit == "w":
        target = now - timedelta(weeks=amount)
    else:
        # Calendar months, clamping the day to the target month's length
        month_index = now.year * 12 + now.month - 1 - amount
        year, month = divmod(month_index, 12)
        month += 1
        day = min(now.day, _days_in_month(year, month))
        target = now.replace(year=year, month=month, day=day)

    return target.date().isoformat()


def _days_in_month(year: int, month: int) -> int:
    if month == 12:
        return 31
    return (datetime(year, month + 1, 1) - timedelta(days=1)).day


def _validate(query: str, options: SearchOptions) -> None:
    if not query or not query.strip():
        raise InvalidQueryError("Search query cannot be empty")
    if isinstance(options.limit, bool) or not isinstance(options.limit, int) or options.limit < 1:
        raise InvalidQueryError(f"limit must be a positive integer, got {options.limit!r}")
    if options.status not in (None, "success", "error"):
        raise InvalidQueryError(f"status must be 'success' or 'error', got {options.status!r}")


def _session_filters(options: SearchOptions) -> tuple[list[str], list[Any]]:
    """SQL conditions on the sessions table (alias s)."""
    clauses: list[str] = []
    params: list[Any] = []

    if options.cwd:
        clauses.append("s.cwd LIKE ? ESCAPE '\\'")
        params.append(_escape_like(options.cwd) + "%")

    if options.after:
        clauses.append("s.created_at >= ?")
        params.append(options.after)

    if options.before:
        clauses.append("s.created_at <= ?")
        params.append(options.before)

    if options.exclude:
        placeholders = ",".join("?" for _ in options.exclude)
        clauses.append(f"s.id NOT IN ({placeholders})")
        params.extend(options.exclude)

    return clauses, params


def _chunk_filters(options: SearchOptions) -> tuple[list[str], list[Any]]:
    """SQL conditions on the chunks table (alias c)."""
    clauses: list[str] = []
    params: list[Any] = []

    if options.tools_only:
        clauses.append("c.kind = ?")
        params.append(KIND_TOOL_CALL)

    if options.tool_name:
        clauses.append("c.tool_name = ?")
        params.append(options.tool_name)

    if options.path_filter:
        clauses.append("c.kind = ? AND c.content LIKE ? ESCAPE '\\'")
        params.extend([KIND_TOOL_CALL, "%" + _escape_like(options.path_filter) + "%"])

    return clauses, params


def _status_filter(options: SearchOptions) -> tuple[list[str], list[Any]]:
    """Session must contain a chunk with the requested outcome.

    Only meaningful with a tool scope; without tool_name or tools_only the
    status option is ignored.
    """
    if not options.status or not (options.tool_name or options.tools_only):
        return [], []

    sql = "s.id IN (SELECT c2.session_id FROM chunks c2 WHERE c2.is_error = ?"
    params: list[Any] = [1 if options.status == "error" else 0]
    if options.tool_name:
        sql += " AND c2.tool_name = ?"
        params.append(options.tool_name)
    sql += ")"
    return [sql], params


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _result_from_row(row: sqlite3.Row, score: float, snippet: str) -> SearchResult:
    return SearchResult(
        session_id=row["session_id"],
        source=row["source"],
        path=row["path"],
        cwd=row["cwd"],
        name=row["name"],
        score=score,
        created_at=row["created_at"],
        modified_at=row["modified_at"],
        matched_snippet=snippet,
    )


def search_fts(
    conn: sqlite3.Connection, query: str, options: SearchOptions
) -> list[SearchResult]:
    """Full-text mode: best-matching chunk per session, ordered by BM25.

    BM25 scores are negative; lower is a better match.
    """
    clauses = ["chunks_fts MATCH ?"]
    params: list[Any] = [escape_fts_query(query)]

    for conditions, values in (
        _session_filters(options),
        _chunk_filters(options),
        _status_filter(options),
    ):
        clauses.extend(conditions)
        params.extend(values)

    sql = f"""
        SELECT
            {SESSION_COLUMNS},
            c.id AS chunk_id,
            bm25(chunks_fts) AS score,
            snippet(chunks_fts, 0, '', '', '...', 32) AS snippet
        FROM chunks_fts
        JOIN chunks c ON c.id = chunks_fts.rowid
        JOIN sessions s ON s.id = c.session_id
        WHERE {" AND ".join(clauses)}
    """
    rows = conn.execute(sql, params).fetchall()

    # Group by session, keeping its best chunk (ties go to the earliest chunk)
    best: dict[str, tuple[float, int, sqlite3.Row]] = {}
    for row in rows:
        current = best.get(row["session_id"])
        key = (row["score"], row["chunk_id"])
        if current is None or key < current[:2]:
            best[row["session_id"]] = (row["score"], row["chunk_id"], row)

    ranked = sorted(best.values(), key=lambda item: (item[0], item[2]["session_id"]))
    return [
        _result_from_row(row, score, row["snippet"])
        for score, _, row in ranked[: options.limit]
    ]


def list_sessions(conn: sqlite3.Connection, options: SearchOptions) -> list[SearchResult]:
    """Listing mode: sessions matching the filters, newest first."""
    clauses, params = _session_filters(options)

    chunk_clauses, chunk_params = _chunk_filters(options)
    if chunk_clauses:
        clauses.append(
            "EXISTS (SELECT 1 FROM chunks c WHERE c.session_id = s.id AND "
            + " AND ".join(chunk_clauses)
            + ")"
        )
        params.extend(chunk_params)

    status_clauses, status_params = _status_filter(options)
    clauses.extend(status_clauses)
    params.extend(status_params)

    where = " AND ".join(clauses) if clauses else "1=1"
    sql = f"""
        SELECT {SESSION_COLUMNS}
        FROM sessions s
        WHERE {where}
        ORDER BY s.modified_at DESC, s.id
        LIMIT ?
    """
    params.append(options.limit)

    rows = conn.execute(sql, params).fetchall()
    return [_result_from_row(row, 0.0, row["name"] or LIST_ALL_SNIPPET) for row in rows]


def search(
    conn: sqlite3.Connection, query: str, options: SearchOptions | None = None
) -> list[SearchResult]:
    """Search indexed sessions.

    ``query`` is matched as a bag of terms and ranked with BM25. The special
    query ``*`` lists sessions by recency under the same filters.
    Raises InvalidQueryError for an empty query or unusable options.
    """
    if options is None:
        options = SearchOptions()
    _validate(query, options)

    if query == LIST_ALL_QUERY:
        return list_sessions(conn, options)
    return search_fts(conn, query, options)


def normalize_score(score: float) -> float:
    """Map a BM25 score onto 0..1 for display."""
    return round(min(1.0, abs(score) / 20), 2)


def format_json_output(results: list[SearchResult], query: str) -> None:
    """Format results as JSON for programmatic use."""
    output = {
        "query": query,
        "resultCount": len(results),
        "results": [
            {
                "sessionId": result.session_id,
                "source": result.source,
                "path": result.path,
                "cwd": result.cwd,
                "name": result.name,
                "score": normalize_score(result.score),
                "created": result.created_at,
                "matchedSnippet": result.matched_snippet,
            }
            for result in results
        ],
    }
    console.print_json(data=output)


def format_human_output(results: list[SearchResult], query: str) -> None:
    """Format results for human-readable output."""
    if not results:
        console.print(
            f'[yellow]No sessions found matching "{escape(query)}"[/yellow]', highlight=False
        )
        return

    console.print(f'Found {len(results)} sessions matching "{escape(query)}"\n', highlight=False)
    for result in results:
        name = result.name or "Unnamed"
        date = result.created_at[:10] if result.created_at else "unknown"
        console.print(
            f"  [dim]\\[{normalize_score(result.score):.2f}][/dim] "
            f"[cyan]{escape(result.session_id)}[/cyan] ({escape(name)}) - {date}",
            highlight=False,
        )
        if result.cwd:
            console.print(f"         [green]{escape(result.cwd)}[/green]", highlight=False)
        console.print(f'         "{result.matched_snippet}"\n', markup=False, highlight=False)
