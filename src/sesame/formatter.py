"""Render parsed sessions into searchable chunks."""

import json
from typing import Any

from sesame.models import KIND_MESSAGE, KIND_TOOL_CALL, ParsedSession, StoredChunk, ToolCall

# Tool families, matched case-insensitively on the tool name
WRITE_TOOLS = frozenset({"write", "create", "write_file", "create_file"})
EDIT_TOOLS = frozenset({"edit", "edit_file"})
SHELL_TOOLS = frozenset({"bash", "shell", "run_command"})
READ_TOOLS = frozenset({"read", "read_file"})

# Argument names seen across parser and agent versions, first match wins
PATH_KEYS = ("path", "file_path", "filePath")
CONTENT_KEYS = ("content", "file_content", "fileContent")
OLD_KEYS = ("old", "oldText", "old_text", "old_string", "search")
NEW_KEYS = ("new", "newText", "new_text", "new_string", "replace")
COMMAND_KEYS = ("command", "cmd", "script")


def _render_value(value: Any) -> str:
    return value if isinstance(value, str) else json.dumps(value)


def extract_arg(tool_call: ToolCall, keys: tuple[str, ...]) -> str | None:
    """Return the first argument present under any of keys, as text."""
    for key in keys:
        value = tool_call.args.get(key)
        if value is not None:
            return _render_value(value)
    return None


def extract_paths(tool_call: ToolCall) -> list[str]:
    """Return the file paths referenced by a tool call."""
    path = extract_arg(tool_call, PATH_KEYS)
    return [path] if path else []


def _join(parts: list[str | None]) -> str:
    return "\n".join(part for part in parts if part)


def format_tool_call(tool_call: ToolCall) -> str:
    """Format a tool call into structured searchable text.

    Each tool family gets a layout optimized for search:
    - write/create: tool name + path + content
    - edit: tool name + path + old/new
    - bash: tool name + command + output
    - read: tool name + path + content
    - anything else: tool name + args + result
    """
    name = tool_call.name.lower()
    header = f"tool: {tool_call.name}"
    result = tool_call.result

    if name in WRITE_TOOLS:
        path = extract_arg(tool_call, PATH_KEYS)
        content = extract_arg(tool_call, CONTENT_KEYS)
        return _join([
            header,
            f"path: {path}" if path else None,
            f"content:\n{content}" if content else None,
            f"result:\n{result}" if result else None,
        ])

    if name in EDIT_TOOLS:
        path = extract_arg(tool_call, PATH_KEYS)
        old_text = extract_arg(tool_call, OLD_KEYS)
        new_text = extract_arg(tool_call, NEW_KEYS)
        return _join([
            header,
            f"path: {path}" if path else None,
            f"old:\n{old_text}" if old_text else None,
            f"new:\n{new_text}" if new_text else None,
            f"result:\n{result}" if result else None,
        ])

    if name in SHELL_TOOLS:
        command = extract_arg(tool_call, COMMAND_KEYS)
        return _join([
            header,
            f"command: {command}" if command else None,
            f"output:\n{result}" if result else None,
        ])

    if name in READ_TOOLS:
        path = extract_arg(tool_call, PATH_KEYS)
        return _join([
            header,
            f"path: {path}" if path else None,
            f"content:\n{result}" if result else None,
        ])

    args_text = "\n".join(
        f"{key}: {_render_value(value)}" for key, value in tool_call.args.items()
    )
    return _join([
        header,
        args_text or None,
        f"result:\n{result}" if result else None,
    ])


def build_chunks(session: ParsedSession) -> list[StoredChunk]:
    """Create the chunks for a parsed session.

    Each turn yields a message chunk (if it has text) followed by one chunk
    per tool call. Blank chunks are never emitted.
    """
    chunks: list[StoredChunk] = []
    seq = 0

    for turn in session.turns:
        if turn.text.strip():
            chunks.append(
                StoredChunk(
                    session_id=session.id,
                    kind=KIND_MESSAGE,
                    role=turn.role,
                    tool_name=turn.tool_name,
                    seq=seq,
                    content=turn.text,
                    is_error=turn.is_error,
                )
            )
            seq += 1

        for tool_call in turn.tool_calls:
            content = format_tool_call(tool_call)
            if not content.strip():
                continue
            chunks.append(
                StoredChunk(
                    session_id=session.id,
                    kind=KIND_TOOL_CALL,
                    role=None,
                    tool_name=tool_call.name,
                    seq=seq,
                    content=content,
                )
            )
            seq += 1

    return chunks
