"""Client-side view of a task, rebuilt from run frames or from a stored snapshot."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from agent_stream.client.decoder import Frame
from agent_stream.errors import FrameParseError
from agent_stream.models import (
    CamelModel,
    ContentType,
    MessagePart,
    MessageRole,
    ProgressItemRecord,
    TaskDetail,
    ToolCallRecord,
)
from agent_stream.protocol import events
from agent_stream.protocol.accumulation import MessageAccumulation
from agent_stream.protocol.events import ArtifactSummary, parse_payload
from agent_stream.protocol.parts import reconstruct_parts

logger = logging.getLogger(__name__)

StreamStatus = Literal["idle", "running", "paused", "completed", "failed"]


class ViewMessage(CamelModel):
    """One rendered message: text and tool calls in their render order."""

    id: str
    role: MessageRole = "assistant"
    content_type: ContentType = "text"
    content: str = ""
    mime_type: str | None = None
    parts: list[MessagePart] = Field(default_factory=list)
    tool_calls: list[ToolCallRecord] = Field(default_factory=list)
    timestamp: datetime | None = None


@dataclass
class TaskStreamState:
    status: StreamStatus = "idle"
    is_running: bool = False
    messages: list[ViewMessage] = field(default_factory=list)
    progress: list[ProgressItemRecord] = field(default_factory=list)
    current_thought: str = ""
    browser_live_url: str | None = None
    browser_screenshot_url: str | None = None
    error: str | None = None
    session_id: str | None = None
    artifacts: list[ArtifactSummary] = field(default_factory=list)
    current: MessageAccumulation | None = None

    def begin_run(self) -> None:
        """Clear the per-run view before a new stream is attached."""
        self.current = None
        self.status = "running"
        self.is_running = True
        self.messages = []
        self.progress = []
        self.error = None
        self.current_thought = ""

    def mark_idle(self) -> None:
        self.current = None
        self.status = "idle"
        self.is_running = False

    def handle_frame(self, frame: Frame) -> bool:
        """Apply one frame; malformed payloads are logged and skipped."""
        try:
            payload = parse_payload(frame.event, frame.data)
        except FrameParseError as exc:
            logger.warning("stream_decoder event=parse_error frame=%s error=%s", frame.event, exc)
            return False
        self.apply(frame.event, payload)
        return True

    def apply(self, event: str, payload: BaseModel | dict[str, Any]) -> None:
        if isinstance(payload, events.StatusPayload):
            self.status = payload.status if payload.status != "pending" else "idle"
            self.is_running = payload.status == "running"
        elif isinstance(payload, events.MessageChunkPayload):
            if self.current is None or self.current.message_id != payload.message_id:
                self.current = MessageAccumulation(message_id=payload.message_id)
            self.current.append_text(payload.content)
            self._sync_current()
        elif isinstance(payload, events.ThoughtChunkPayload):
            self.current_thought += payload.content
        elif isinstance(payload, events.ImagePayload):
            self.messages.append(
                ViewMessage(
                    id=payload.id,
                    content_type="image",
                    content=payload.content,
                    mime_type=payload.mime_type,
                    timestamp=datetime.fromisoformat(payload.timestamp),
                )
            )
        elif isinstance(payload, ToolCallRecord):
            if self.current is None or self.current.message_id != payload.message_id:
                self.current = MessageAccumulation(message_id=payload.message_id)
            self.current.add_tool_call(payload)
            self._sync_current()
        elif isinstance(payload, events.ToolCallUpdatePayload):
            if self.current is None:
                return
            if self.current.apply_tool_call_update(payload) is not None:
                self._sync_current()
        elif isinstance(payload, events.PlanPayload):
            self.progress = list(payload.entries)
        elif isinstance(payload, events.BrowserUrlPayload):
            self.browser_live_url = payload.live_url or self.browser_live_url
            self.browser_screenshot_url = payload.screenshot_url or self.browser_screenshot_url
        elif isinstance(payload, events.ArtifactsPayload):
            self.artifacts = list(payload.artifacts)
        elif isinstance(payload, events.ErrorPayload):
            self.error = payload.message
            self.status = "failed"
            self.is_running = False
        elif isinstance(payload, events.DonePayload):
            if self.current is not None:
                self.current.seal()
                self._sync_current()
            self.current = None
            self.status = "completed"
            self.is_running = False
            self.current_thought = ""
            self.session_id = payload.session_id
        else:
            logger.debug("stream_decoder event=ignored frame=%s", event)

    def hydrate(self, detail: TaskDetail) -> None:
        """Replace the view with a persisted snapshot (page load, polling)."""
        self.messages = hydrate_messages(detail)
        self.progress = list(detail.progress)
        self.artifacts = [
            ArtifactSummary.model_validate(artifact.model_dump()) for artifact in detail.artifacts
        ]
        self.browser_live_url = detail.browser_live_url
        self.browser_screenshot_url = detail.browser_screenshot_url
        self.session_id = detail.session_id
        if detail.status != "running" or not self.is_running:
            self.status = "idle" if detail.status == "pending" else detail.status
            self.is_running = False

    def _sync_current(self) -> None:
        current = self.current
        if current is None or current.message_id is None:
            return
        view = ViewMessage(
            id=current.message_id,
            content=current.content,
            parts=current.snapshot_parts(),
            tool_calls=list(current.tool_calls.values()),
            timestamp=datetime.now(UTC),
        )
        for index, message in enumerate(self.messages):
            if message.id == view.id:
                self.messages[index] = view
                return
        self.messages.append(view)


def hydrate_messages(detail: TaskDetail) -> list[ViewMessage]:
    views: list[ViewMessage] = []
    for message in detail.messages:
        parts: list[MessagePart] = []
        if message.content_type == "text":
            parts = reconstruct_parts(message.content, message.parts, message.tool_calls)
        views.append(
            ViewMessage(
                id=message.id,
                role=message.role,
                content_type=message.content_type,
                content=message.content,
                mime_type=message.mime_type,
                parts=parts,
                tool_calls=list(message.tool_calls),
                timestamp=message.created_at,
            )
        )
    return views
