"""Canonical event catalog shared by the stream encoder and decoder.

Every frame on the wire is ``event: <name>\\ndata: <json>\\n\\n``. Payloads are
diffs (chunks, partial tool-call patches keyed by ``toolCallId``), never full
snapshots, so both sides must apply them to the same accumulation model.
"""

from __future__ import annotations

import json
from typing import Any, Final

from pydantic import BaseModel, Field, ValidationError

from agent_stream.errors import FrameParseError
from agent_stream.models import (
    CamelModel,
    ProgressItemRecord,
    TaskStatus,
    ToolCallLocation,
    ToolCallRecord,
    ToolCallStatus,
)

STATUS: Final = "status"
MESSAGE_CHUNK: Final = "message_chunk"
THOUGHT_CHUNK: Final = "thought_chunk"
IMAGE: Final = "image"
TOOL_CALL: Final = "tool_call"
TOOL_CALL_UPDATE: Final = "tool_call_update"
PLAN: Final = "plan"
BROWSER_URL: Final = "browser_url"
ARTIFACTS: Final = "artifacts"
RAW_EVENT: Final = "raw_event"
ERROR: Final = "error"
DONE: Final = "done"

SSE_HEADERS: Final = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}
KEEPALIVE_FRAME: Final = ": keepalive\n\n"


class StatusPayload(CamelModel):
    status: TaskStatus


class MessageChunkPayload(CamelModel):
    message_id: str
    content: str


class ThoughtChunkPayload(CamelModel):
    content: str


class ImagePayload(CamelModel):
    id: str
    role: str = "assistant"
    content_type: str = "image"
    content: str
    mime_type: str | None = None
    timestamp: str


class ToolCallUpdatePayload(CamelModel):
    """Partial tool-call patch; unset fields are left untouched."""

    tool_call_id: str
    status: ToolCallStatus | None = None
    title: str | None = None
    locations: list[ToolCallLocation] | None = None
    output: Any = None
    output_content: str | None = None
    file_path: str | None = None
    command: str | None = None

    def patch(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True, exclude={"tool_call_id"})


class PlanPayload(CamelModel):
    entries: list[ProgressItemRecord] = Field(default_factory=list)


class BrowserUrlPayload(CamelModel):
    live_url: str | None = None
    screenshot_url: str | None = None


class ArtifactSummary(CamelModel):
    id: str
    name: str
    path: str
    type: str
    size: int
    content: str | None = None


class ArtifactsPayload(CamelModel):
    artifacts: list[ArtifactSummary] = Field(default_factory=list)


class ErrorPayload(CamelModel):
    message: str


class DonePayload(CamelModel):
    session_id: str | None = None
    exit_code: int = 0


PAYLOAD_MODELS: Final[dict[str, type[BaseModel]]] = {
    STATUS: StatusPayload,
    MESSAGE_CHUNK: MessageChunkPayload,
    THOUGHT_CHUNK: ThoughtChunkPayload,
    IMAGE: ImagePayload,
    TOOL_CALL: ToolCallRecord,
    TOOL_CALL_UPDATE: ToolCallUpdatePayload,
    PLAN: PlanPayload,
    BROWSER_URL: BrowserUrlPayload,
    ARTIFACTS: ArtifactsPayload,
    ERROR: ErrorPayload,
    DONE: DonePayload,
}


def encode_frame(event: str, payload: BaseModel | dict[str, Any]) -> str:
    """Serialize one event into its wire frame."""
    if isinstance(payload, BaseModel):
        data = payload.model_dump(mode="json", by_alias=True, exclude_none=True)
    else:
        data = payload
    return f"event: {event}\ndata: {json.dumps(data, separators=(',', ':'), default=str)}\n\n"


def parse_payload(event: str, data: str) -> BaseModel | dict[str, Any]:
    """Decode a frame's data line into its typed payload.

    Unknown events and ``raw_event`` pass through as plain dicts.
    Raises FrameParseError when the JSON or the payload shape is invalid.
    """
    try:
        raw = json.loads(data)
    except json.JSONDecodeError as exc:
        raise FrameParseError(event, data) from exc

    model = PAYLOAD_MODELS.get(event)
    if model is None:
        if not isinstance(raw, dict):
            raise FrameParseError(event, data)
        return raw
    try:
        return model.model_validate(raw)
    except ValidationError as exc:
        raise FrameParseError(event, data) from exc
