"""Storage interface for tasks and their run artifacts."""

from __future__ import annotations

import base64
import mimetypes
import uuid
from datetime import datetime
from typing import Any, Protocol

from agent_stream.models import (
    ArtifactRecord,
    ContentType,
    MessagePart,
    MessageRecord,
    MessageRole,
    ProgressItemRecord,
    TaskDetail,
    TaskRecord,
    TaskStatus,
    ToolCallRecord,
)
from agent_stream.runtime.base import FileMap, PlanEntry

TASK_UPDATE_FIELDS = frozenset(
    {"title", "status", "session_id", "browser_live_url", "browser_screenshot_url"}
)
TOOL_CALL_UPDATE_FIELDS = frozenset(
    {"title", "status", "locations", "output", "output_content", "file_path", "command"}
)


class TaskStore(Protocol):
    def migrate(self) -> None: ...

    def create_task(self, prompt: str, *, title: str | None = None) -> TaskRecord: ...

    def get_task(self, task_id: str) -> TaskRecord | None: ...

    def get_task_detail(self, task_id: str) -> TaskDetail | None: ...

    def update_task(
        self, task_id: str, *, expected_status: TaskStatus | None = None, **changes: Any
    ) -> TaskRecord:
        """Apply ``changes``; with ``expected_status`` the write only lands if the
        row still has that status, otherwise ``InvalidTransitionError`` is raised."""

    def create_message(
        self,
        task_id: str,
        *,
        role: MessageRole,
        content: str = "",
        content_type: ContentType = "text",
        mime_type: str | None = None,
    ) -> MessageRecord: ...

    def update_message(
        self,
        message_id: str,
        *,
        content: str,
        parts: list[MessagePart] | None = None,
    ) -> None: ...

    def create_tool_call(self, tool_call: ToolCallRecord) -> ToolCallRecord: ...

    def update_tool_call(
        self,
        message_id: str,
        tool_call_id: str,
        changes: dict[str, Any],
    ) -> ToolCallRecord | None: ...

    def replace_progress(
        self, task_id: str, entries: list[PlanEntry]
    ) -> list[ProgressItemRecord]: ...

    def replace_artifacts(self, task_id: str, files: FileMap) -> list[ArtifactRecord]: ...


def new_id() -> str:
    return str(uuid.uuid4())


def default_title(prompt: str) -> str:
    first_line = prompt.strip().splitlines()[0] if prompt.strip() else "Untitled task"
    return first_line[:80]


def check_task_changes(changes: dict[str, Any]) -> None:
    unknown = set(changes) - TASK_UPDATE_FIELDS
    if unknown:
        raise ValueError(f"Unsupported task fields: {sorted(unknown)}")


def check_tool_call_changes(changes: dict[str, Any]) -> None:
    unknown = set(changes) - TOOL_CALL_UPDATE_FIELDS
    if unknown:
        raise ValueError(f"Unsupported tool call fields: {sorted(unknown)}")


def build_progress_items(task_id: str, entries: list[PlanEntry]) -> list[ProgressItemRecord]:
    return [
        ProgressItemRecord(
            id=new_id(),
            task_id=task_id,
            content=entry.content,
            status=entry.status,
            priority=entry.priority,
        )
        for entry in entries
    ]


def build_artifacts(task_id: str, files: FileMap, *, now: datetime) -> list[ArtifactRecord]:
    """Map runtime output files to artifact rows; binary content is base64 text."""
    artifacts: list[ArtifactRecord] = []
    for path, raw in sorted(files.items()):
        name = path.rstrip("/").rsplit("/", 1)[-1] or path
        if isinstance(raw, bytes):
            size = len(raw)
            try:
                content = raw.decode("utf-8")
            except UnicodeDecodeError:
                content = base64.b64encode(raw).decode("ascii")
        else:
            size = len(raw.encode("utf-8"))
            content = raw
        artifacts.append(
            ArtifactRecord(
                id=new_id(),
                task_id=task_id,
                name=name,
                path=path,
                type=mimetypes.guess_type(name)[0] or "application/octet-stream",
                size=size,
                content=content,
                created_at=now,
            )
        )
    return artifacts
