"""Session log parsers.

A parser turns one session file into a format-agnostic ParsedSession. The
indexer only relies on the SessionParser protocol; PiParser handles the JSONL
files written by the Pi coding agent:

    ~/.pi/agent/sessions/<encoded-cwd>/<session-id>.jsonl

The first line of a Pi session is a header record of type "session" carrying
the session id, creation timestamp and working directory.
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol

from sesame.exceptions import ParserError
from sesame.models import ParsedSession, ToolCall, Turn

logger = logging.getLogger(__name__)

# Metadata lines that carry nothing searchable
IGNORED_LINE_TYPES = frozenset({"model_change", "thinking_level_change", "custom"})


class SessionParser(Protocol):
    """Interface every session log parser implements."""

    id: str

    def can_parse(self, path: Path) -> bool:
        """Return True if path is a session file of this format. Never raises."""
        ...

    def parse(self, path: Path) -> ParsedSession:
        """Parse a session file into a normalized structure."""
        ...

    def read_session_id(self, path: Path) -> str | None:
        """Recover the session id with a cheap partial read, if possible."""
        ...


def read_first_line(path: Path) -> str | None:
    """Read the first line of a file without loading the rest."""
    try:
        with open(path, encoding="utf-8") as f:
            return f.readline().rstrip("\n")
    except (OSError, UnicodeDecodeError):
        return None


def _load_header(path: Path) -> dict[str, Any] | None:
    line = read_first_line(path)
    if not line:
        return None
    try:
        record = json.loads(line)
    except json.JSONDecodeError:
        return None
    if not isinstance(record, dict) or record.get("type") != "session":
        return None
    return record


def _text_blocks(content: Any) -> str:
    """Join the text blocks of a message content list."""
    if isinstance(content, str):
        return content
    if not isinstance(content, list):
        return ""
    return "\n".join(
        block.get("text", "")
        for block in content
        if isinstance(block, dict) and block.get("type") == "text"
    )


def _arguments(block: dict[str, Any]) -> dict[str, Any]:
    arguments = block.get("arguments")
    return arguments if isinstance(arguments, dict) else {}


class PiParser:
    """Parser for Pi's JSONL session files."""

    id = "pi"

    def can_parse(self, path: Path) -> bool:
        path = Path(path)
        if path.suffix != ".jsonl" or not path.is_file():
            return False
        return _load_header(path) is not None

    def read_session_id(self, path: Path) -> str | None:
        header = _load_header(Path(path))
        if header is None:
            return None
        session_id = header.get("id")
        return session_id if isinstance(session_id, str) and session_id else None

    def parse(self, path: Path) -> ParsedSession:
        path = Path(path)
        try:
            with open(path, encoding="utf-8") as f:
                lines = [line for line in f if line.strip()]
            mtime = path.stat().st_mtime
        except (OSError, UnicodeDecodeError) as e:
            raise ParserError(f"Cannot read {path}: {e}") from e

        session = ParsedSession(
            id=path.stem,
            source=self.id,
            created_at=datetime.now(tz=timezone.utc).isoformat(),
            modified_at=datetime.fromtimestamp(mtime, tz=timezone.utc).isoformat(),
        )

        for line_num, line in enumerate(lines, 1):
            try:
                record = json.loads(line)
            except json.JSONDecodeError as e:
                logger.warning("%s: failed to parse line %d: %s", path, line_num, e)
                continue

            if not isinstance(record, dict):
                logger.warning("%s: line %d is not an object", path, line_num)
                continue

            try:
                self._apply_record(session, record, path, line_num)
            except (AttributeError, TypeError, ValueError) as e:
                logger.warning("%s: malformed record at line %d: %s", path, line_num, e)

        return session

    def _apply_record(
        self, session: ParsedSession, record: dict[str, Any], path: Path, line_num: int
    ) -> None:
        record_type = record.get("type")

        if record_type == "session":
            session.id = record.get("id") or session.id
            session.cwd = record.get("cwd")
            session.created_at = record.get("timestamp") or session.created_at

        elif record_type == "session_info":
            session.name = record.get("name")

        elif record_type == "message":
            turn = self._parse_message(record.get("message") or {})
            if turn is not None:
                session.turns.append(turn)

        elif record_type == "compaction":
            summary = record.get("summary")
            text = summary if isinstance(summary, str) else ""
            session.turns.append(Turn(role="system", text=text))

        elif record_type in IGNORED_LINE_TYPES:
            pass

        else:
            logger.warning("%s: unknown line type at line %d: %s", path, line_num, record_type)

    def _parse_message(self, message: dict[str, Any]) -> Turn | None:
        role = message.get("role")
        content = message.get("content", [])

        if role == "user":
            return Turn(role="user", text=_text_blocks(content))

        if role == "assistant":
            # Thinking blocks are skipped
            tool_calls = [
                ToolCall(name=block.get("name", "unknown"), args=_arguments(block))
                for block in content
                if isinstance(block, dict) and block.get("type") == "toolCall"
            ] if isinstance(content, list) else []
            return Turn(role="assistant", text=_text_blocks(content), tool_calls=tool_calls)

        if role == "toolResult":
            return Turn(
                role="system",
                text=_text_blocks(content),
                tool_name=message.get("toolName"),
                is_error=bool(message.get("isError", False)),
            )

        if role == "bashExecution":
            command = message.get("command", "")
            output = message.get("output", "")
            return Turn(role="system", text=f"$ {command}\n{output}")

        return None


PARSERS: dict[str, type] = {
    PiParser.id: PiParser,
}


def get_parser(parser_id: str) -> SessionParser | None:
    """Get a parser instance by id, or None if the id is not supported."""
    parser_cls = PARSERS.get(parser_id)
    return parser_cls() if parser_cls else None
