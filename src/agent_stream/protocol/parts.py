"""Best-effort interleaving for messages persisted without authoritative parts."""

from __future__ import annotations

import math
import re
from collections.abc import Sequence

from agent_stream.models import MessagePart, TextPart, ToolCallPart, ToolCallRecord

_PARAGRAPH_BREAK = re.compile(r"\n{2,}")


def reconstruct_parts(
    content: str,
    parts: Sequence[MessagePart],
    tool_calls: Sequence[ToolCallRecord],
) -> list[MessagePart]:
    """Derive a render order for a finalized message.

    Non-empty ``parts`` are authoritative and returned unchanged. Otherwise tool
    calls are spread over the paragraphs of ``content`` in their original order,
    ``ceil(tools / paragraphs)`` per paragraph, with the last paragraph taking
    whatever remains. This approximates legacy rows; live runs never need it.
    """
    if parts:
        return list(parts)
    if not tool_calls:
        return [TextPart(content=content)]

    paragraphs = [chunk for chunk in _PARAGRAPH_BREAK.split(content) if chunk.strip()]
    if not paragraphs:
        return [ToolCallPart(tool_call_id=item.tool_call_id) for item in tool_calls]

    per_paragraph = math.ceil(len(tool_calls) / len(paragraphs))
    result: list[MessagePart] = []
    cursor = 0
    last_index = len(paragraphs) - 1
    for index, paragraph in enumerate(paragraphs):
        result.append(TextPart(content=paragraph))
        end = len(tool_calls) if index == last_index else cursor + per_paragraph
        for item in tool_calls[cursor:end]:
            result.append(ToolCallPart(tool_call_id=item.tool_call_id))
        cursor = min(end, len(tool_calls))
    return result
