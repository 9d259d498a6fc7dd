"""Incremental session indexer."""

import logging
import os
import sqlite3
from datetime import datetime, timezone
from pathlib import Path

from sesame.formatter import build_chunks
from sesame.models import IndexResult, StoredSession
from sesame.parsers import SessionParser
from sesame.storage import LAST_SYNC_KEY, get_session_mtime, insert_session, set_metadata

logger = logging.getLogger(__name__)


def discover_session_files(source_dir: Path) -> list[Path]:
    """List candidate files in source_dir, recursing one level into subdirectories.

    Sessions may be nested under per-project folders:
        <source_dir>/<encoded-cwd>/<session-id>.jsonl

    Unreadable subdirectories contribute no files. A failure to read
    source_dir itself raises OSError.
    """
    with os.scandir(source_dir) as it:
        entries = sorted(it, key=lambda e: e.name)

    paths: list[Path] = []
    for entry in entries:
        entry_path = Path(entry.path)
        if entry.is_dir():
            try:
                children = sorted(os.listdir(entry_path))
            except OSError:
                continue
            paths.extend(entry_path / child for child in children)
        else:
            paths.append(entry_path)
    return paths


def file_mtime_ms(path: Path) -> int:
    """Modification time of path in whole milliseconds."""
    return path.stat().st_mtime_ns // 1_000_000


def index_file(conn: sqlite3.Connection, path: Path, parser: SessionParser) -> str:
    """Index one session file.

    Returns "skipped", "added" or "updated". Raises on parse or storage errors.
    """
    mtime = file_mtime_ms(path)

    # Fast path: recover the id without a full parse and compare mtimes
    session_id = parser.read_session_id(path)
    if session_id is not None and get_session_mtime(conn, session_id) == mtime:
        return "skipped"

    logger.debug("Indexing %s", path)
    parsed = parser.parse(path)

    # The cheap id recovery may have failed or disagreed with the full parse
    existed = get_session_mtime(conn, parsed.id) is not None

    session = StoredSession(
        id=parsed.id,
        source=parsed.source,
        path=str(path),
        cwd=parsed.cwd,
        name=parsed.name,
        created_at=parsed.created_at,
        modified_at=parsed.modified_at,
        message_count=len(parsed.turns),
        file_mtime=mtime,
    )
    insert_session(conn, session, build_chunks(parsed), replace=existed)
    return "updated" if existed else "added"


def index_sessions(
    conn: sqlite3.Connection, source_dir: str | Path, parser: SessionParser
) -> IndexResult:
    """Bring the index up to date with the session files in source_dir.

    Unchanged files (same mtime as stored) are skipped without parsing; changed
    files replace their previous session. A failure on one file is counted in
    ``errors`` and does not stop the run. If source_dir cannot be read at all,
    an all-zero result is returned with ``scan_error`` set.
    """
    result = IndexResult()
    source_dir = Path(source_dir)

    try:
        paths = discover_session_files(source_dir)
    except OSError as e:
        logger.error("Failed to read directory %s: %s", source_dir, e)
        result.scan_error = str(e)
        return result

    for path in paths:
        if not parser.can_parse(path):
            continue

        try:
            outcome = index_file(conn, path, parser)
        except Exception as e:
            logger.error("Error indexing %s: %s", path, e)
            result.errors += 1
            continue

        if outcome == "skipped":
            result.skipped += 1
        elif outcome == "added":
            result.added += 1
        else:
            result.updated += 1

    return result


def record_sync(conn: sqlite3.Connection, result: IndexResult) -> bool:
    """Stamp last_sync_at if the run changed something and had no errors."""
    if result.changed == 0 or result.errors > 0 or result.scan_error:
        return False
    set_metadata(conn, LAST_SYNC_KEY, datetime.now(tz=timezone.utc).isoformat())
    return True
