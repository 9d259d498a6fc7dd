"""SQLite storage for the sesame index."""

import contextlib
import logging
import os
import sqlite3
from collections.abc import Callable, Iterator, Sequence
from pathlib import Path

from sesame.exceptions import StorageError
from sesame.migrations import run_migrations
from sesame.models import StoredChunk, StoredSession, StoreStats

logger = logging.getLogger(__name__)

# Metadata key recording the last indexing run that changed something
LAST_SYNC_KEY = "last_sync_at"

# Always the latest table definitions, including columns added by migrations.
SCHEMA = """
    -- Sessions table
    CREATE TABLE IF NOT EXISTS sessions (
        id TEXT PRIMARY KEY,
        source TEXT NOT NULL,
        path TEXT NOT NULL,
        cwd TEXT,
        name TEXT,
        created_at TEXT,
        modified_at TEXT,
        message_count INTEGER,
        file_mtime INTEGER
    );

    -- Chunks table
    CREATE TABLE IF NOT EXISTS chunks (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        session_id TEXT NOT NULL REFERENCES sessions(id) ON DELETE CASCADE,
        kind TEXT NOT NULL,  -- 'message' | 'tool_call'
        role TEXT,
        tool_name TEXT,
        seq INTEGER,
        content TEXT NOT NULL,
        is_error INTEGER DEFAULT NULL  -- 0 = success, 1 = error, NULL = n/a
    );

    -- Metadata table for tracking index state
    CREATE TABLE IF NOT EXISTS metadata (
        key TEXT PRIMARY KEY,
        value TEXT NOT NULL,
        updated_at TEXT NOT NULL DEFAULT (datetime('now'))
    );

    -- FTS5 for keyword search
    CREATE VIRTUAL TABLE IF NOT EXISTS chunks_fts USING fts5(
        content,
        content='chunks',
        content_rowid='id',
        tokenize='porter unicode61'
    );

    -- Triggers to keep FTS in sync
    CREATE TRIGGER IF NOT EXISTS chunks_ai AFTER INSERT ON chunks BEGIN
        INSERT INTO chunks_fts(rowid, content) VALUES (new.id, new.content);
    END;

    CREATE TRIGGER IF NOT EXISTS chunks_ad AFTER DELETE ON chunks BEGIN
        INSERT INTO chunks_fts(chunks_fts, rowid, content) VALUES('delete', old.id, old.content);
    END;

    CREATE TRIGGER IF NOT EXISTS chunks_au AFTER UPDATE ON chunks BEGIN
        INSERT INTO chunks_fts(chunks_fts, rowid, content) VALUES('delete', old.id, old.content);
        INSERT INTO chunks_fts(rowid, content) VALUES (new.id, new.content);
    END;

    CREATE INDEX IF NOT EXISTS idx_chunks_session ON chunks(session_id);
    CREATE INDEX IF NOT EXISTS idx_chunks_kind ON chunks(kind);
    CREATE INDEX IF NOT EXISTS idx_chunks_tool ON chunks(tool_name);
"""

DROP_ALL = """
    DROP TRIGGER IF EXISTS chunks_ai;
    DROP TRIGGER IF EXISTS chunks_ad;
    DROP TRIGGER IF EXISTS chunks_au;

    DROP INDEX IF EXISTS idx_chunks_session;
    DROP INDEX IF EXISTS idx_chunks_kind;
    DROP INDEX IF EXISTS idx_chunks_tool;

    DROP TABLE IF EXISTS chunks_fts;
    DROP TABLE IF EXISTS chunks;
    DROP TABLE IF EXISTS sessions;
    DROP TABLE IF EXISTS metadata;
    DROP TABLE IF EXISTS schema_migrations;
"""

Connect = Callable[[str], sqlite3.Connection]


def open_database(path: str | Path, connect: Connect = sqlite3.connect) -> sqlite3.Connection:
    """Open (creating if needed) the index database at path.

    ``connect`` opens the underlying connection and can be swapped for any
    DB-API compatible SQLite binding.
    """
    if str(path) != ":memory:":
        Path(path).parent.mkdir(parents=True, exist_ok=True)

    conn = connect(str(path))
    # Transactions are managed explicitly (see transaction()).
    conn.isolation_level = None
    conn.row_factory = sqlite3.Row

    # WAL lets readers proceed while a writer is active
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")

    # Must be decided before SCHEMA runs: it determines whether migrations
    # are executed or only recorded.
    is_fresh = not _table_exists(conn, "sessions")

    conn.executescript(SCHEMA)
    run_migrations(conn, is_fresh)
    return conn


def _table_exists(conn: sqlite3.Connection, name: str) -> bool:
    row = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name = ?", (name,)
    ).fetchone()
    return row is not None


@contextlib.contextmanager
def transaction(conn: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
    """Run the enclosed statements in one transaction."""
    conn.execute("BEGIN")
    try:
        yield conn
        conn.execute("COMMIT")
    except Exception:
        conn.execute("ROLLBACK")
        raise


def database_path(conn: sqlite3.Connection) -> str | None:
    """Return the file backing the main database, or None if in-memory."""
    for row in conn.execute("PRAGMA database_list"):
        if row[1] == "main":
            return row[2] or None
    return None


def get_session_mtime(conn: sqlite3.Connection, session_id: str) -> int | None:
    """Get the stored file mtime (ms) for a session, or None if unknown."""
    row = conn.execute(
        "SELECT file_mtime FROM sessions WHERE id = ?", (session_id,)
    ).fetchone()
    return row["file_mtime"] if row else None


def get_session(conn: sqlite3.Connection, session_id: str) -> StoredSession | None:
    """Get a session by ID."""
    row = conn.execute("SELECT * FROM sessions WHERE id = ?", (session_id,)).fetchone()
    if row is None:
        return None
    return StoredSession(
        id=row["id"],
        source=row["source"],
        path=row["path"],
        cwd=row["cwd"],
        name=row["name"],
        created_at=row["created_at"],
        modified_at=row["modified_at"],
        message_count=row["message_count"],
        file_mtime=row["file_mtime"],
    )


def get_session_chunks(conn: sqlite3.Connection, session_id: str) -> list[StoredChunk]:
    """Get all chunks for a session in emission order."""
    rows = conn.execute(
        "SELECT * FROM chunks WHERE session_id = ? ORDER BY seq, id", (session_id,)
    ).fetchall()
    return [
        StoredChunk(
            id=row["id"],
            session_id=row["session_id"],
            kind=row["kind"],
            role=row["role"],
            tool_name=row["tool_name"],
            seq=row["seq"],
            content=row["content"],
            is_error=None if row["is_error"] is None else bool(row["is_error"]),
        )
        for row in rows
    ]


def delete_session(conn: sqlite3.Connection, session_id: str) -> None:
    """Delete a session. Its chunks and FTS entries go with it."""
    conn.execute("DELETE FROM sessions WHERE id = ?", (session_id,))


def _is_error_value(is_error: bool | None) -> int | None:
    if is_error is None:
        return None
    return 1 if is_error else 0


def insert_session(
    conn: sqlite3.Connection,
    session: StoredSession,
    chunks: Sequence[StoredChunk],
    replace: bool = False,
) -> None:
    """Insert a session and its chunks atomically.

    With ``replace``, any existing session with the same id is deleted in the
    same transaction, so readers never see the session missing.
    """
    try:
        with transaction(conn):
            if replace:
                delete_session(conn, session.id)

            conn.execute(
                """
                INSERT INTO sessions (id, source, path, cwd, name, created_at, modified_at,
                                      message_count, file_mtime)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    session.id,
                    session.source,
                    session.path,
                    session.cwd,
                    session.name,
                    session.created_at,
                    session.modified_at,
                    session.message_count,
                    session.file_mtime,
                ),
            )
            conn.executemany(
                """
                INSERT INTO chunks (session_id, kind, role, tool_name, seq, content, is_error)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        chunk.session_id,
                        chunk.kind,
                        chunk.role,
                        chunk.tool_name,
                        chunk.seq,
                        chunk.content,
                        _is_error_value(chunk.is_error),
                    )
                    for chunk in chunks
                ],
            )
    except sqlite3.Error as e:
        raise StorageError(f"Failed to store session {session.id}: {e}") from e


def drop_all(conn: sqlite3.Connection) -> None:
    """Remove all indexed data and recreate an empty, fully migrated schema."""
    logger.info("Dropping all indexed data")
    conn.executescript(DROP_ALL)
    conn.executescript(SCHEMA)
    run_migrations(conn, is_fresh=True)


def set_metadata(conn: sqlite3.Connection, key: str, value: str) -> None:
    """Set a metadata value."""
    conn.execute(
        """
        INSERT INTO metadata (key, value, updated_at)
        VALUES (?, ?, datetime('now'))
        ON CONFLICT(key) DO UPDATE SET
            value = excluded.value,
            updated_at = datetime('now')
        """,
        (key, value),
    )


def get_metadata(conn: sqlite3.Connection, key: str) -> str | None:
    """Get a metadata value."""
    row = conn.execute("SELECT value FROM metadata WHERE key = ?", (key,)).fetchone()
    return row["value"] if row else None


def get_stats(conn: sqlite3.Connection) -> StoreStats:
    """Get index statistics."""
    session_count = conn.execute("SELECT COUNT(*) FROM sessions").fetchone()[0]
    chunk_count = conn.execute("SELECT COUNT(*) FROM chunks").fetchone()[0]

    size_bytes = 0
    db_path = database_path(conn)
    if db_path:
        try:
            size_bytes = os.stat(db_path).st_size
        except OSError:
            size_bytes = 0

    return StoreStats(
        session_count=session_count,
        chunk_count=chunk_count,
        size_bytes=size_bytes,
        last_sync_at=get_metadata(conn, LAST_SYNC_KEY),
    )


def format_size(size_bytes: int) -> str:
    """Format byte size as human-readable string."""
    size = float(size_bytes)
    for unit in ("B", "KB", "MB", "GB"):
        if size < 1024:
            return f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} TB"
