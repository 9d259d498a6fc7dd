"""CLI for sesame."""

import logging
from typing import Annotated, NoReturn

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from sesame import __version__
from sesame.exceptions import SesameError

app = typer.Typer(
    name="sesame",
    help="Search coding agent session history with ranked full-text search.",
    no_args_is_help=True,
)
console = Console()
err_console = Console(stderr=True)


def version_callback(value: bool) -> None:
    if value:
        console.print(f"sesame {__version__}")
        raise typer.Exit()


def setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option("--version", callback=version_callback, is_eager=True),
    ] = None,
    verbose: Annotated[
        bool, typer.Option("--verbose", "-v", help="Verbose logging")
    ] = False,
) -> None:
    """Search coding agent session history."""
    setup_logging(verbose)


def _fail(error: Exception) -> NoReturn:
    err_console.print(f"[red]Error: {escape(str(error))}[/red]", highlight=False)
    raise typer.Exit(1)


@app.command()
def search(
    query: Annotated[str, typer.Argument(help='Search query ("*" lists recent sessions)')],
    cwd: Annotated[
        str | None, typer.Option("--cwd", help="Filter by project directory (prefix)")
    ] = None,
    after: Annotated[
        str | None, typer.Option("--after", help="Sessions created after (7d, 2w, 1m, or ISO date)")
    ] = None,
    before: Annotated[
        str | None, typer.Option("--before", help="Sessions created before (7d, 2w, 1m, or ISO date)")
    ] = None,
    limit: Annotated[int, typer.Option("--limit", "-n", min=1, help="Max results")] = 10,
    tools: Annotated[bool, typer.Option("--tools", help="Search only tool call chunks")] = False,
    tool: Annotated[str | None, typer.Option("--tool", help="Search a specific tool")] = None,
    path: Annotated[
        str | None, typer.Option("--path", help="Find sessions whose tool calls touched a file")
    ] = None,
    exclude: Annotated[
        list[str] | None,
        typer.Option("--exclude", "-x", help="Exclude a session id (can repeat)"),
    ] = None,
    status: Annotated[
        str | None,
        typer.Option("--status", help="Tool outcome: success or error (needs --tool or --tools)"),
    ] = None,
    json_output: Annotated[bool, typer.Option("--json", help="Output as JSON")] = False,
) -> None:
    """Search indexed sessions."""
    from sesame.config import get_app_paths
    from sesame.models import SearchOptions
    from sesame.searcher import (
        format_human_output,
        format_json_output,
        parse_relative_date,
    )
    from sesame.searcher import search as run_search
    from sesame.storage import open_database

    try:
        options = SearchOptions(
            cwd=cwd,
            after=parse_relative_date(after) if after else None,
            before=parse_relative_date(before) if before else None,
            limit=limit,
            tools_only=tools,
            tool_name=tool,
            path_filter=path,
            exclude=list(exclude or []),
            status=status,
        )
        conn = open_database(get_app_paths().index_path)
        try:
            results = run_search(conn, query, options)
        finally:
            conn.close()
    except SesameError as e:
        _fail(e)

    if json_output:
        format_json_output(results, query)
    else:
        format_human_output(results, query)


@app.command()
def index(
    full: Annotated[bool, typer.Option("--full", help="Drop and rebuild the index")] = False,
) -> None:
    """Index session files (incremental)."""
    from sesame.config import expand_path, get_app_paths, load_config
    from sesame.indexer import index_sessions, record_sync
    from sesame.models import IndexResult
    from sesame.parsers import get_parser
    from sesame.storage import drop_all, open_database

    paths = get_app_paths()
    try:
        config = load_config(paths)
        conn = open_database(paths.index_path)
    except SesameError as e:
        _fail(e)

    total = IndexResult()
    try:
        if full:
            console.print("Dropping existing index...")
            drop_all(conn)

        for source in config.sources:
            parser = get_parser(source.parser)
            if parser is None:
                err_console.print(
                    f"[yellow]Skipping source {source.path}: "
                    f'unsupported parser "{source.parser}"[/yellow]'
                )
                continue

            source_path = expand_path(source.path)
            console.print(f"\nIndexing [cyan]{escape(str(source_path))}[/cyan]...")
            result = index_sessions(conn, source_path, parser)

            if result.scan_error:
                err_console.print(
                    f"  [red]Could not read source: {escape(result.scan_error)}[/red]"
                )
            if result.added:
                console.print(f"  Added: {result.added}")
            if result.updated:
                console.print(f"  Updated: {result.updated}")
            if result.skipped:
                console.print(f"  Skipped: {result.skipped}")
            if result.errors:
                err_console.print(f"  [red]Errors: {result.errors}[/red]")

            total.merge(result)

        record_sync(conn, total)
    finally:
        conn.close()

    console.print("\n" + "─" * 50)
    console.print("[green]Indexing complete[/green]")
    console.print(f"  Total added:   {total.added}")
    console.print(f"  Total updated: {total.updated}")
    console.print(f"  Total skipped: {total.skipped}")
    if total.errors:
        console.print(f"  Total errors:  {total.errors}")


@app.command()
def status() -> None:
    """Show index statistics."""
    from sesame.config import get_app_paths
    from sesame.storage import format_size, get_stats, open_database

    index_path = get_app_paths().index_path
    conn = open_database(index_path)
    try:
        stats = get_stats(conn)
    finally:
        conn.close()

    console.print("[bold]Sesame Index Status[/bold]")
    console.print(f"  Sessions:  {stats.session_count:,}")
    console.print(f"  Chunks:    {stats.chunk_count:,}")
    console.print(f"  Database:  {format_size(stats.size_bytes)}")
    console.print(f"  Last sync: {stats.last_sync_at or 'never'}")
    console.print(f"  Location:  {index_path}")


@app.command()
def watch(
    interval: Annotated[
        int | None,
        typer.Option("--interval", min=1, help="Poll every N seconds instead of watching files"),
    ] = None,
) -> None:
    """Watch session sources and index them as they change."""
    from sesame.config import expand_path, get_app_paths, load_config
    from sesame.parsers import get_parser
    from sesame.storage import open_database
    from sesame.watcher import WatchedSource, watch_sources

    paths = get_app_paths()
    try:
        config = load_config(paths)
    except SesameError as e:
        _fail(e)

    sources: list[WatchedSource] = []
    for source in config.sources:
        parser = get_parser(source.parser)
        if parser is None:
            err_console.print(
                f"[yellow]Skipping watch for {source.path}: "
                f'unsupported parser "{source.parser}"[/yellow]'
            )
            continue
        sources.append(WatchedSource(path=expand_path(source.path), parser=parser))

    conn = open_database(paths.index_path)
    err_console.print("Watch mode active. Press Ctrl+C to stop.")
    try:
        watch_sources(conn, sources, interval=interval)
    except KeyboardInterrupt:
        err_console.print("Shutting down...")
    finally:
        conn.close()


if __name__ == "__main__":
    app()
