"""Pytest fixtures for sesame tests."""

import json
import os
import tempfile
from pathlib import Path

import pytest

from sesame.models import KIND_MESSAGE, StoredChunk, StoredSession
from sesame.storage import open_database


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def db(temp_dir):
    """An open index database in a temporary directory."""
    conn = open_database(temp_dir / "index.sqlite")
    yield conn
    conn.close()


class PiSessionBuilder:
    """Builds Pi JSONL session files line by line."""

    def __init__(self) -> None:
        self.lines: list[dict] = []
        self.has_header = False

    def header(
        self,
        id: str = "test-session",
        cwd: str | None = None,
        timestamp: str = "2026-01-15T10:00:00.000Z",
    ) -> "PiSessionBuilder":
        record = {"type": "session", "version": 3, "id": id, "timestamp": timestamp}
        if cwd is not None:
            record["cwd"] = cwd
        self.lines.insert(0, record)
        self.has_header = True
        return self

    def name(self, name: str) -> "PiSessionBuilder":
        self.lines.append({"type": "session_info", "name": name})
        return self

    def user(self, text: str) -> "PiSessionBuilder":
        self.lines.append({
            "type": "message",
            "message": {"role": "user", "content": [{"type": "text", "text": text}]},
        })
        return self

    def assistant(self, text: str) -> "PiSessionBuilder":
        self.lines.append({
            "type": "message",
            "message": {"role": "assistant", "content": [{"type": "text", "text": text}]},
        })
        return self

    def tool_call(self, name: str, **arguments) -> "PiSessionBuilder":
        self.lines.append({
            "type": "message",
            "message": {
                "role": "assistant",
                "content": [
                    {"type": "toolCall", "id": "tc_1", "name": name, "arguments": arguments}
                ],
            },
        })
        return self

    def tool_result(self, tool_name: str, text: str, is_error: bool = False) -> "PiSessionBuilder":
        self.lines.append({
            "type": "message",
            "message": {
                "role": "toolResult",
                "toolCallId": "tc_1",
                "toolName": tool_name,
                "isError": is_error,
                "content": [{"type": "text", "text": text}],
            },
        })
        return self

    def bash_execution(self, command: str, output: str) -> "PiSessionBuilder":
        self.lines.append({
            "type": "message",
            "message": {"role": "bashExecution", "command": command, "output": output, "exitCode": 0},
        })
        return self

    def compaction(self, summary: str) -> "PiSessionBuilder":
        self.lines.append({"type": "compaction", "summary": summary})
        return self

    def raw(self, record: dict) -> "PiSessionBuilder":
        self.lines.append(record)
        return self

    def build(self) -> str:
        if not self.has_header:
            self.header()
        return "\n".join(json.dumps(line) for line in self.lines)

    def write(self, path: Path, mtime: float | None = None) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.build() + "\n", encoding="utf-8")
        if mtime is not None:
            os.utime(path, (mtime, mtime))
        return path


@pytest.fixture
def pi_session():
    """Factory for Pi session builders."""
    return PiSessionBuilder


def make_session(id: str, **overrides) -> StoredSession:
    """A stored session with sensible defaults."""
    values = {
        "id": id,
        "source": "pi",
        "path": f"/path/to/{id}.jsonl",
        "cwd": "/project",
        "name": None,
        "created_at": "2026-01-15T10:00:00Z",
        "modified_at": "2026-01-15T10:00:00Z",
        "message_count": 1,
        "file_mtime": 1_700_000_000_000,
    }
    values.update(overrides)
    return StoredSession(**values)


def make_chunk(session_id: str, content: str, seq: int = 0, **overrides) -> StoredChunk:
    """A stored message chunk with sensible defaults."""
    values = {
        "session_id": session_id,
        "kind": KIND_MESSAGE,
        "role": "user",
        "tool_name": None,
        "seq": seq,
        "content": content,
        "is_error": None,
    }
    values.update(overrides)
    return StoredChunk(**values)
