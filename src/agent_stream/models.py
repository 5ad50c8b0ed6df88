"""Pydantic models shared across API, encoder, decoder, and storage.

Terms used in this file:
- Record: one persisted row (task, message, tool call, progress item, artifact).
- Part: one ordered element of a message's render sequence, either a text
  block or a reference to a tool call by its correlation key.
- Correlation key: the runtime-assigned ``tool_call_id`` used to match updates.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

# Task lifecycle states used by storage, wire frames and API responses.
TaskStatus = Literal["pending", "running", "paused", "completed", "failed"]
MessageRole = Literal["user", "assistant", "system"]
ContentType = Literal["text", "image"]
ToolCallStatus = Literal["pending", "in_progress", "completed", "failed"]
ToolKind = Literal[
    "read",
    "edit",
    "delete",
    "move",
    "search",
    "execute",
    "think",
    "fetch",
    "switch_mode",
    "other",
]
ProgressStatus = Literal["pending", "in_progress", "completed"]
ProgressPriority = Literal["high", "medium", "low"]


class CamelModel(BaseModel):
    """Snake_case in Python, camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TextPart(CamelModel):
    type: Literal["text"] = "text"
    content: str


class ToolCallPart(CamelModel):
    type: Literal["tool_call"] = "tool_call"
    tool_call_id: str


MessagePart = Annotated[TextPart | ToolCallPart, Field(discriminator="type")]


class ToolCallLocation(CamelModel):
    path: str
    line: int | None = None


class TaskRecord(CamelModel):
    """Canonical task row shape returned by storage and the REST surface."""

    id: str
    title: str
    prompt: str
    status: TaskStatus = "pending"
    # Live-runtime handle; required by pause and mid-run uploads.
    session_id: str | None = None
    browser_live_url: str | None = None
    browser_screenshot_url: str | None = None
    created_at: datetime
    updated_at: datetime


class MessageRecord(CamelModel):
    id: str
    task_id: str
    role: MessageRole
    content_type: ContentType = "text"
    # Flattened cumulative text, kept for snippets and legacy rows.
    content: str = ""
    # Authoritative render order once non-empty.
    parts: list[MessagePart] = Field(default_factory=list)
    mime_type: str | None = None
    created_at: datetime


class ToolCallRecord(CamelModel):
    id: str
    tool_call_id: str
    message_id: str
    name: str
    title: str | None = None
    kind: ToolKind = "other"
    status: ToolCallStatus = "pending"
    input: Any = None
    output: Any = None
    locations: list[ToolCallLocation] | None = None
    file_path: str | None = None
    command: str | None = None
    output_content: str | None = None
    created_at: datetime
    updated_at: datetime


class ProgressItemRecord(CamelModel):
    """One step of the agent's plan."""

    id: str
    task_id: str
    content: str
    status: ProgressStatus = "pending"
    priority: ProgressPriority = "medium"


class ArtifactRecord(CamelModel):
    id: str
    task_id: str
    name: str
    path: str
    type: str
    size: int
    content: str | None = None
    created_at: datetime


class MessageDetail(MessageRecord):
    tool_calls: list[ToolCallRecord] = Field(default_factory=list)


class TaskDetail(TaskRecord):
    """Fully hydrated task: messages with tool calls, progress and artifacts."""

    messages: list[MessageDetail] = Field(default_factory=list)
    progress: list[ProgressItemRecord] = Field(default_factory=list)
    artifacts: list[ArtifactRecord] = Field(default_factory=list)


class CreateTaskRequest(CamelModel):
    """Request body for POST /tasks."""

    prompt: str = Field(min_length=1)
    title: str | None = None


class TaskUpdate(CamelModel):
    """Partial task update; only explicitly provided fields are applied."""

    title: str | None = None
    status: TaskStatus | None = None
    session_id: str | None = None
    browser_live_url: str | None = None
    browser_screenshot_url: str | None = None

    def changes(self) -> dict[str, Any]:
        data = self.model_dump(exclude_unset=True)
        # title and status are NOT NULL columns; an explicit null means "leave as is".
        for key in ("title", "status"):
            if key in data and data[key] is None:
                del data[key]
        return data


class RunTaskRequest(CamelModel):
    """Request body for POST /tasks/{id}/run."""

    prompt: str | None = None
    timeout_ms: int | None = Field(default=None, ge=1)
