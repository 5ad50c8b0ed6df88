"""Contracts between the agent runtime and the stream encoder."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol

from pydantic import Field

from agent_stream.models import (
    CamelModel,
    ProgressPriority,
    ProgressStatus,
    ToolCallLocation,
    ToolCallStatus,
    ToolKind,
)
from agent_stream.protocol.events import ToolCallUpdatePayload

FileMap = dict[str, str | bytes]


class ToolCallStart(CamelModel):
    """First event of a tool invocation, as reported by the runtime."""

    tool_call_id: str
    name: str
    title: str | None = None
    kind: ToolKind = "other"
    status: ToolCallStatus = "pending"
    input: Any = None
    locations: list[ToolCallLocation] | None = None
    output_content: str | None = None


class PlanEntry(CamelModel):
    content: str
    status: ProgressStatus = "pending"
    priority: ProgressPriority = "medium"


class PlanSnapshot(CamelModel):
    entries: list[PlanEntry] = Field(default_factory=list)


@dataclass(frozen=True)
class RunRequest:
    prompt: str
    timeout_ms: int
    session_id: str | None = None


@dataclass(frozen=True)
class RunResult:
    session_id: str | None
    exit_code: int = 0
    stdout: str = ""
    stderr: str = ""


class RuntimeCallbacks(Protocol):
    """Ordered callback stream for one run."""

    def on_message_chunk(self, content: str) -> None: ...

    def on_thought_chunk(self, content: str) -> None: ...

    def on_image_chunk(self, data: str, mime_type: str) -> None: ...

    def on_tool_call(self, tool_call: ToolCallStart) -> None: ...

    def on_tool_call_update(self, update: ToolCallUpdatePayload) -> None: ...

    def on_plan(self, entries: list[PlanEntry]) -> None: ...

    def on_browser_url(self, live_url: str | None, screenshot_url: str | None) -> None: ...

    def on_event(self, event: dict[str, Any]) -> None: ...


class AgentRuntime(Protocol):
    """Live sandbox session able to execute runs and expose their outputs."""

    def run(self, request: RunRequest, callbacks: RuntimeCallbacks) -> RunResult: ...

    def get_session(self) -> str | None: ...

    def get_output_files(self) -> FileMap: ...

    def pause(self) -> None: ...

    def resume(self) -> None: ...
