"""Derived tool-call fields: file path, command and capped output content."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from agent_stream.models import ToolCallLocation

OUTPUT_CONTENT_LIMIT = 50_000
TRUNCATION_MARKER = "[... output truncated ...]"
EXECUTE_KINDS = frozenset({"execute"})


def extract_file_path(
    locations: Sequence[ToolCallLocation] | None,
    tool_input: Any,
) -> str | None:
    if locations:
        return locations[0].path
    if isinstance(tool_input, dict):
        for key in ("file_path", "path"):
            value = tool_input.get(key)
            if isinstance(value, str) and value:
                return value
    return None


def extract_command(kind: str, tool_input: Any) -> str | None:
    if kind not in EXECUTE_KINDS or not isinstance(tool_input, dict):
        return None
    command = tool_input.get("command")
    if isinstance(command, list):
        return " ".join(str(item) for item in command)
    return command if isinstance(command, str) and command else None


def cap_output_content(text: str | None, *, limit: int = OUTPUT_CONTENT_LIMIT) -> str | None:
    """Cap tool output, appending the truncation marker, then trim."""
    if text is None:
        return None
    if len(text) > limit:
        text = f"{text[:limit]}\n{TRUNCATION_MARKER}"
    return text.strip()
