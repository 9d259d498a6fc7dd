"""Keep the index up to date while session files change."""

import json
import logging
import sqlite3
import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from rich.console import Console
from watchfiles import watch

from sesame.indexer import index_sessions, record_sync
from sesame.parsers import SessionParser

logger = logging.getLogger(__name__)
console = Console()

DEBOUNCE_MS = 500


@dataclass
class WatchedSource:
    path: Path
    parser: SessionParser


def run_index_pass(
    conn: sqlite3.Connection,
    sources: Iterable[WatchedSource],
    emit: Callable[[dict[str, Any]], None],
) -> None:
    """Index each source once and emit one event per source."""
    timestamp = datetime.now(tz=timezone.utc).isoformat()

    for source in sources:
        try:
            result = index_sessions(conn, source.path, source.parser)
        except Exception as e:
            logger.error("Error indexing %s: %s", source.path, e)
            emit({"timestamp": timestamp, "path": str(source.path), "error": str(e)})
            continue

        record_sync(conn, result)
        logger.info(
            "Indexed %s - added: %d, updated: %d, skipped: %d, errors: %d",
            source.path,
            result.added,
            result.updated,
            result.skipped,
            result.errors,
        )
        event: dict[str, Any] = {
            "timestamp": timestamp,
            "path": str(source.path),
            "added": result.added,
            "updated": result.updated,
            "skipped": result.skipped,
            "errors": result.errors,
        }
        if result.scan_error:
            event["error"] = result.scan_error
        emit(event)


def emit_json_line(event: dict[str, Any]) -> None:
    """Write an event as a single JSON line on stdout."""
    console.print(json.dumps(event), markup=False, highlight=False, soft_wrap=True)


def _sources_for_changes(
    sources: list[WatchedSource], changed_paths: Iterable[str]
) -> list[WatchedSource]:
    changed = [Path(p).resolve() for p in changed_paths]
    matched = []
    for source in sources:
        root = source.path.resolve()
        if any(path == root or root in path.parents for path in changed):
            matched.append(source)
    return matched


def watch_sources(
    conn: sqlite3.Connection,
    sources: list[WatchedSource],
    interval: float | None = None,
    emit: Callable[[dict[str, Any]], None] = emit_json_line,
    stop_event: threading.Event | None = None,
) -> None:
    """Run an initial pass, then re-index on a timer or on file changes.

    With ``interval`` (seconds) every source is re-indexed periodically;
    otherwise the source directories are watched and only the source whose
    files changed is re-indexed, debounced by DEBOUNCE_MS.
    """
    if stop_event is None:
        stop_event = threading.Event()

    logger.info("Running initial index...")
    run_index_pass(conn, sources, emit)

    if interval is not None:
        logger.info("Polling every %s seconds", interval)
        while not stop_event.wait(interval):
            run_index_pass(conn, sources, emit)
        return

    watched = [source for source in sources if source.path.is_dir()]
    for source in sources:
        if source not in watched:
            logger.warning("Cannot watch %s: not a directory", source.path)
    if not watched:
        return

    for source in watched:
        logger.info("Watching %s", source.path)

    for changes in watch(
        *(source.path for source in watched),
        debounce=DEBOUNCE_MS,
        stop_event=stop_event,
    ):
        changed_sources = _sources_for_changes(watched, (path for _, path in changes))
        if changed_sources:
            run_index_pass(conn, changed_sources, emit)

