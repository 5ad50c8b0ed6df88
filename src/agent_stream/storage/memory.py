"""In-memory storage backend for tests and local development."""

from __future__ import annotations

import threading
from datetime import UTC, datetime
from typing import Any

from agent_stream.errors import InvalidTransitionError, PersistenceWriteError
from agent_stream.models import (
    ArtifactRecord,
    ContentType,
    MessageDetail,
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
from agent_stream.storage.base import (
    build_artifacts,
    build_progress_items,
    check_task_changes,
    check_tool_call_changes,
    default_title,
    new_id,
)


class InMemoryTaskStore:
    """Dict-backed store with the same semantics as the PostgreSQL backend."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._tasks: dict[str, TaskRecord] = {}
        # Insertion order doubles as created_at order.
        self._messages: dict[str, MessageRecord] = {}
        self._tool_calls: dict[str, ToolCallRecord] = {}
        self._progress: dict[str, list[ProgressItemRecord]] = {}
        self._artifacts: dict[str, list[ArtifactRecord]] = {}

    def migrate(self) -> None:
        return None

    def create_task(self, prompt: str, *, title: str | None = None) -> TaskRecord:
        now = datetime.now(UTC)
        record = TaskRecord(
            id=new_id(),
            title=title or default_title(prompt),
            prompt=prompt,
            status="pending",
            created_at=now,
            updated_at=now,
        )
        with self._lock:
            self._tasks[record.id] = record
        return record.model_copy(deep=True)

    def get_task(self, task_id: str) -> TaskRecord | None:
        with self._lock:
            task = self._tasks.get(task_id)
        return task.model_copy(deep=True) if task else None

    def get_task_detail(self, task_id: str) -> TaskDetail | None:
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None:
                return None
            messages = [
                MessageDetail(
                    **message.model_dump(),
                    tool_calls=[
                        tool_call
                        for tool_call in self._tool_calls.values()
                        if tool_call.message_id == message.id
                    ],
                )
                for message in self._messages.values()
                if message.task_id == task_id
            ]
            detail = TaskDetail(
                **task.model_dump(),
                messages=messages,
                progress=list(self._progress.get(task_id, [])),
                artifacts=list(self._artifacts.get(task_id, [])),
            )
        return detail.model_copy(deep=True)

    def update_task(
        self, task_id: str, *, expected_status: TaskStatus | None = None, **changes: Any
    ) -> TaskRecord:
        check_task_changes(changes)
        with self._lock:
            current = self._tasks.get(task_id)
            if current is None:
                raise KeyError(f"Task {task_id} does not exist")
            if expected_status is not None and current.status != expected_status:
                raise InvalidTransitionError(current.status, changes.get("status", expected_status))
            updated = current.model_copy(update={**changes, "updated_at": datetime.now(UTC)})
            self._tasks[task_id] = updated
        return updated.model_copy(deep=True)

    def create_message(
        self,
        task_id: str,
        *,
        role: MessageRole,
        content: str = "",
        content_type: ContentType = "text",
        mime_type: str | None = None,
    ) -> MessageRecord:
        record = MessageRecord(
            id=new_id(),
            task_id=task_id,
            role=role,
            content_type=content_type,
            content=content,
            mime_type=mime_type,
            created_at=datetime.now(UTC),
        )
        with self._lock:
            if task_id not in self._tasks:
                raise PersistenceWriteError(f"Task {task_id} does not exist")
            self._messages[record.id] = record
        return record.model_copy(deep=True)

    def update_message(
        self,
        message_id: str,
        *,
        content: str,
        parts: list[MessagePart] | None = None,
    ) -> None:
        with self._lock:
            current = self._messages.get(message_id)
            if current is None:
                raise PersistenceWriteError(f"Message {message_id} does not exist")
            update: dict[str, Any] = {"content": content}
            if parts is not None:
                update["parts"] = list(parts)
            self._messages[message_id] = current.model_copy(update=update, deep=True)

    def create_tool_call(self, tool_call: ToolCallRecord) -> ToolCallRecord:
        with self._lock:
            if tool_call.message_id not in self._messages:
                raise PersistenceWriteError(
                    f"Tool call {tool_call.tool_call_id} references missing message "
                    f"{tool_call.message_id}"
                )
            self._tool_calls[tool_call.id] = tool_call.model_copy(deep=True)
        return tool_call

    def update_tool_call(
        self,
        message_id: str,
        tool_call_id: str,
        changes: dict[str, Any],
    ) -> ToolCallRecord | None:
        check_tool_call_changes(changes)
        with self._lock:
            for row_id, current in self._tool_calls.items():
                if current.message_id != message_id or current.tool_call_id != tool_call_id:
                    continue
                updated = ToolCallRecord.model_validate(
                    {**current.model_dump(), **changes, "updated_at": datetime.now(UTC)}
                )
                self._tool_calls[row_id] = updated
                return updated.model_copy(deep=True)
        return None

    def replace_progress(self, task_id: str, entries: list[PlanEntry]) -> list[ProgressItemRecord]:
        items = build_progress_items(task_id, entries)
        with self._lock:
            self._progress[task_id] = items
        return [item.model_copy() for item in items]

    def replace_artifacts(self, task_id: str, files: FileMap) -> list[ArtifactRecord]:
        artifacts = build_artifacts(task_id, files, now=datetime.now(UTC))
        with self._lock:
            self._artifacts[task_id] = artifacts
        return [artifact.model_copy() for artifact in artifacts]
