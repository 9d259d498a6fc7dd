"""Schema migrations for the sesame index.

Rules:
- Never remove or reorder entries in MIGRATIONS.
- Append new migrations with a strictly increasing id.
- SCHEMA in storage.py must always reflect the latest table definitions, so
  that a fresh database is correct without running any migration body.
"""

import logging
import sqlite3
from collections.abc import Callable
from dataclasses import dataclass

logger = logging.getLogger(__name__)

LEDGER_SCHEMA = """
    CREATE TABLE IF NOT EXISTS schema_migrations (
        id INTEGER PRIMARY KEY,
        description TEXT,
        applied_at TEXT NOT NULL DEFAULT (datetime('now'))
    );
"""


@dataclass(frozen=True)
class Migration:
    """A single append-only schema upgrade step."""

    id: int
    description: str
    apply: Callable[[sqlite3.Connection], None]


def _column_exists(conn: sqlite3.Connection, table: str, column: str) -> bool:
    rows = conn.execute(f"PRAGMA table_info({table})").fetchall()
    return any(row[1] == column for row in rows)


def _add_is_error(conn: sqlite3.Connection) -> None:
    if not _column_exists(conn, "chunks", "is_error"):
        conn.execute("ALTER TABLE chunks ADD COLUMN is_error INTEGER DEFAULT NULL")


def _add_metadata(conn: sqlite3.Connection) -> None:
    conn.execute("""
        CREATE TABLE IF NOT EXISTS metadata (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL,
            updated_at TEXT NOT NULL DEFAULT (datetime('now'))
        )
    """)


MIGRATIONS: list[Migration] = [
    Migration(1, "add is_error column to chunks", _add_is_error),
    Migration(2, "add metadata table", _add_metadata),
]


def applied_migration_ids(conn: sqlite3.Connection) -> set[int]:
    """Return the ids recorded in the migration ledger."""
    return {row[0] for row in conn.execute("SELECT id FROM schema_migrations")}


def run_migrations(
    conn: sqlite3.Connection,
    is_fresh: bool,
    migrations: list[Migration] | None = None,
) -> list[int]:
    """Apply pending migrations in order and record them in the ledger.

    A fresh database already has the latest schema, so its migrations are
    only recorded. Returns the ids that were newly recorded.
    """
    if migrations is None:
        migrations = MIGRATIONS

    conn.executescript(LEDGER_SCHEMA)
    applied = applied_migration_ids(conn)

    recorded: list[int] = []
    for migration in migrations:
        if migration.id in applied:
            continue

        conn.execute("BEGIN")
        try:
            if not is_fresh:
                logger.info("Applying migration %d: %s", migration.id, migration.description)
                migration.apply(conn)
            conn.execute(
                "INSERT INTO schema_migrations (id, description) VALUES (?, ?)",
                (migration.id, migration.description),
            )
            conn.execute("COMMIT")
        except Exception:
            conn.execute("ROLLBACK")
            raise
        recorded.append(migration.id)

    return recorded
