"""Data models for sesame."""

from dataclasses import dataclass, field
from typing import Any, Literal

# Chunk kinds
KIND_MESSAGE = "message"
KIND_TOOL_CALL = "tool_call"

DEFAULT_LIMIT = 10


@dataclass
class ToolCall:
    """A structured tool invocation made by the assistant."""

    name: str
    args: dict[str, Any] = field(default_factory=dict)
    result: str | None = None


@dataclass
class Turn:
    """One event in a parsed session."""

    role: str  # "user" | "assistant" | "system"
    text: str
    tool_calls: list[ToolCall] = field(default_factory=list)
    tool_name: str | None = None  # set on tool result turns
    is_error: bool | None = None  # set on tool result turns


@dataclass
class ParsedSession:
    """A session as produced by a parser, independent of the log format."""

    id: str
    source: str
    created_at: str | None
    modified_at: str | None
    turns: list[Turn] = field(default_factory=list)
    cwd: str | None = None
    name: str | None = None


@dataclass
class StoredSession:
    """A row of the sessions table."""

    id: str
    source: str
    path: str
    cwd: str | None
    name: str | None
    created_at: str | None
    modified_at: str | None
    message_count: int
    file_mtime: int  # milliseconds


@dataclass
class StoredChunk:
    """A row of the chunks table (a searchable unit)."""

    session_id: str
    kind: str  # KIND_MESSAGE | KIND_TOOL_CALL
    role: str | None
    tool_name: str | None
    seq: int
    content: str
    is_error: bool | None = None  # None = not applicable
    id: int = 0  # assigned by the store


@dataclass
class SearchOptions:
    """Filters and bounds for a search."""

    cwd: str | None = None
    after: str | None = None  # ISO date, compared against created_at
    before: str | None = None
    limit: int = DEFAULT_LIMIT
    tools_only: bool = False
    tool_name: str | None = None
    path_filter: str | None = None
    exclude: list[str] = field(default_factory=list)
    status: Literal["success", "error"] | None = None


@dataclass
class SearchResult:
    """One matching session."""

    session_id: str
    source: str
    path: str
    cwd: str | None
    name: str | None
    score: float
    created_at: str | None
    modified_at: str | None
    matched_snippet: str


@dataclass
class IndexResult:
    """Counts from one indexing pass over a source directory."""

    added: int = 0
    updated: int = 0
    skipped: int = 0
    errors: int = 0
    scan_error: str | None = None

    @property
    def changed(self) -> int:
        return self.added + self.updated

    def merge(self, other: "IndexResult") -> None:
        """Add another pass's counts; the first scan error is kept."""
        self.added += other.added
        self.updated += other.updated
        self.skipped += other.skipped
        self.errors += other.errors
        self.scan_error = self.scan_error or other.scan_error


@dataclass
class StoreStats:
    """Aggregate index statistics."""

    session_count: int
    chunk_count: int
    size_bytes: int
    last_sync_at: str | None
