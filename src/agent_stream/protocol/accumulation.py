"""Accumulation reducer applied identically by the encoder and the decoder.

The encoder uses it to decide what to persist at checkpoints; the decoder uses
it to rebuild the open message from the diff stream. Keeping one reducer means
the two sides cannot drift on how text, tool calls and parts interleave.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from agent_stream.models import MessagePart, TextPart, ToolCallPart, ToolCallRecord
from agent_stream.protocol.events import ToolCallUpdatePayload

logger = logging.getLogger(__name__)


@dataclass
class MessageAccumulation:
    """Open assistant message state: cumulative text, tool calls, sealed parts."""

    message_id: str | None = None
    content: str = ""
    # Text received since the last part boundary.
    pending_text: str = ""
    parts: list[MessagePart] = field(default_factory=list)
    # Insertion-ordered, keyed by correlation key.
    tool_calls: dict[str, ToolCallRecord] = field(default_factory=dict)

    def append_text(self, text: str) -> None:
        self.content += text
        self.pending_text += text

    def add_tool_call(self, tool_call: ToolCallRecord) -> None:
        """Seal pending text into a part, then reference the tool call."""
        self._seal_pending_text()
        self.tool_calls[tool_call.tool_call_id] = tool_call
        self.parts.append(ToolCallPart(tool_call_id=tool_call.tool_call_id))

    def apply_tool_call_update(self, update: ToolCallUpdatePayload) -> ToolCallRecord | None:
        """Merge a partial patch; returns None when the correlation key is unknown."""
        current = self.tool_calls.get(update.tool_call_id)
        if current is None:
            logger.debug(
                "accumulation event=unknown_tool_call tool_call_id=%s", update.tool_call_id
            )
            return None
        merged = ToolCallRecord.model_validate({**current.model_dump(), **update.patch()})
        self.tool_calls[update.tool_call_id] = merged
        return merged

    def seal(self) -> list[MessagePart]:
        """Close the message: pending text becomes the final text part."""
        self._seal_pending_text()
        return list(self.parts)

    def snapshot_parts(self) -> list[MessagePart]:
        """Current render order without sealing, for mid-run views and checkpoints."""
        snapshot = list(self.parts)
        if self.pending_text.strip():
            snapshot.append(TextPart(content=self.pending_text))
        return snapshot

    def _seal_pending_text(self) -> None:
        if self.pending_text.strip():
            self.parts.append(TextPart(content=self.pending_text))
        self.pending_text = ""
