"""Stream encoder: runtime callbacks in, wire frames and store checkpoints out.

One encoder serves exactly one run. It persists as it goes so a client that
disconnects mid-run, or a second client that connects later, can rebuild the
same interleaved view from storage:

- the assistant message row is created eagerly, before the first tool call;
- text is flushed every ``checkpoint_chars`` uncommitted characters;
- every tool-call boundary seals the pending text into a part and writes
  ``content`` and ``parts`` together.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, TypeVar

from pydantic import BaseModel

from agent_stream.models import ArtifactRecord, ToolCallRecord
from agent_stream.protocol.accumulation import MessageAccumulation
from agent_stream.protocol.events import (
    ARTIFACTS,
    BROWSER_URL,
    DONE,
    ERROR,
    IMAGE,
    MESSAGE_CHUNK,
    PLAN,
    RAW_EVENT,
    STATUS,
    THOUGHT_CHUNK,
    TOOL_CALL,
    TOOL_CALL_UPDATE,
    ArtifactsPayload,
    ArtifactSummary,
    BrowserUrlPayload,
    DonePayload,
    ErrorPayload,
    ImagePayload,
    MessageChunkPayload,
    PlanPayload,
    StatusPayload,
    ThoughtChunkPayload,
    ToolCallUpdatePayload,
)
from agent_stream.runtime.base import (
    AgentRuntime,
    PlanEntry,
    RunRequest,
    RunResult,
    ToolCallStart,
)
from agent_stream.storage.base import TaskStore, build_progress_items, new_id
from agent_stream.streaming.channel import FrameChannel
from agent_stream.streaming.fields import (
    OUTPUT_CONTENT_LIMIT,
    cap_output_content,
    extract_command,
    extract_file_path,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RunAccumulator:
    """Everything one run has produced so far that still needs persisting."""

    message: MessageAccumulation = field(default_factory=MessageAccumulation)
    # Length of message.content at the last content write.
    committed_chars: int = 0
    thought: str = ""
    session_id: str | None = None
    detach_flushed: bool = False
    finalized: bool = False

    @property
    def uncommitted_chars(self) -> int:
        return len(self.message.content) - self.committed_chars


class RunEncoder:
    """Implements the runtime callback stream for one task run."""

    def __init__(
        self,
        task_id: str,
        store: TaskStore,
        runtime: AgentRuntime,
        channel: FrameChannel,
        *,
        checkpoint_chars: int = 500,
        output_content_limit: int = OUTPUT_CONTENT_LIMIT,
        on_terminal: Callable[[], None] | None = None,
    ) -> None:
        self.task_id = task_id
        self.store = store
        self.runtime = runtime
        self.channel = channel
        self.checkpoint_chars = checkpoint_chars
        self.output_content_limit = output_content_limit
        self.on_terminal = on_terminal
        self.state = RunAccumulator()

    def execute(self, request: RunRequest) -> None:
        """Drive one run to a terminal state. Never raises."""
        logger.info("task_run event=start task_id=%s status=running", self.task_id)
        try:
            self._safe_write("task_running", lambda: self.store.update_task(self.task_id, status="running"))
            self._send(STATUS, StatusPayload(status="running"))
            try:
                result = self.runtime.run(request, self)
            except Exception as exc:  # noqa: BLE001
                self._fail(exc)
            else:
                self._complete(result)
        finally:
            try:
                if self.on_terminal is not None:
                    self.on_terminal()
            finally:
                self.channel.close()

    # Runtime callbacks

    def on_message_chunk(self, content: str) -> None:
        self._track_session()
        message_id = self._ensure_message()
        self.state.message.append_text(content)
        self._send(MESSAGE_CHUNK, MessageChunkPayload(message_id=message_id, content=content))
        if self.state.uncommitted_chars > self.checkpoint_chars:
            self._flush_content()

    def on_thought_chunk(self, content: str) -> None:
        self._track_session()
        # Thoughts are streamed only, never persisted.
        self.state.thought += content
        self._send(THOUGHT_CHUNK, ThoughtChunkPayload(content=content))

    def on_image_chunk(self, data: str, mime_type: str) -> None:
        self._track_session()
        record = self._safe_write(
            "image_message",
            lambda: self.store.create_message(
                self.task_id,
                role="assistant",
                content=data,
                content_type="image",
                mime_type=mime_type,
            ),
        )
        self._send(
            IMAGE,
            ImagePayload(
                id=record.id if record is not None else new_id(),
                content=data,
                mime_type=mime_type,
                timestamp=_now().isoformat(),
            ),
        )

    def on_tool_call(self, tool_call: ToolCallStart) -> None:
        self._track_session()
        message_id = self._ensure_message()
        now = _now()
        record = ToolCallRecord(
            id=new_id(),
            tool_call_id=tool_call.tool_call_id,
            message_id=message_id,
            name=tool_call.name,
            title=tool_call.title,
            kind=tool_call.kind,
            status=tool_call.status,
            input=tool_call.input,
            locations=tool_call.locations,
            file_path=extract_file_path(tool_call.locations, tool_call.input),
            command=extract_command(tool_call.kind, tool_call.input),
            output_content=cap_output_content(
                tool_call.output_content, limit=self.output_content_limit
            ),
            created_at=now,
            updated_at=now,
        )
        self.state.message.add_tool_call(record)
        self._safe_write("tool_call", lambda: self.store.create_tool_call(record))
        self._checkpoint_parts()
        self._send(TOOL_CALL, record)

    def on_tool_call_update(self, update: ToolCallUpdatePayload) -> None:
        self._track_session()
        derived: dict[str, Any] = {}
        if update.output_content is not None:
            derived["output_content"] = cap_output_content(
                update.output_content, limit=self.output_content_limit
            )
        if update.file_path is None and update.locations:
            derived["file_path"] = extract_file_path(update.locations, None)
        if derived:
            update = update.model_copy(update=derived)

        merged = self.state.message.apply_tool_call_update(update)
        message_id = self.state.message.message_id
        if message_id is not None:
            stored = self._safe_write(
                "tool_call_update",
                lambda: self.store.update_tool_call(message_id, update.tool_call_id, update.patch()),
            )
            if stored is None and merged is None:
                logger.debug(
                    "task_run event=tool_call_update_unmatched task_id=%s tool_call_id=%s",
                    self.task_id,
                    update.tool_call_id,
                )
        self._send(TOOL_CALL_UPDATE, update)

    def on_plan(self, entries: list[PlanEntry]) -> None:
        self._track_session()
        items = self._safe_write("plan", lambda: self.store.replace_progress(self.task_id, entries))
        if items is None:
            items = build_progress_items(self.task_id, entries)
        self._send(PLAN, PlanPayload(entries=items))

    def on_browser_url(self, live_url: str | None, screenshot_url: str | None) -> None:
        self._track_session()
        changes: dict[str, Any] = {}
        if live_url:
            changes["browser_live_url"] = live_url
        if screenshot_url:
            changes["browser_screenshot_url"] = screenshot_url
        if changes:
            self._safe_write("browser_url", lambda: self.store.update_task(self.task_id, **changes))
        self._send(BROWSER_URL, BrowserUrlPayload(live_url=live_url, screenshot_url=screenshot_url))

    def on_event(self, event: dict[str, Any]) -> None:
        self._track_session()
        self._send(RAW_EVENT, event)

    # Termination

    def finalize(self) -> None:
        """Seal and persist the open message; safe to call more than once."""
        if self.state.finalized:
            return
        self.state.finalized = True
        message = self.state.message
        if message.message_id is None:
            return
        parts = message.seal()
        message_id = message.message_id
        self._safe_write(
            "finalize",
            lambda: self.store.update_message(message_id, content=message.content, parts=parts),
        )
        self.state.committed_chars = len(message.content)

    def _complete(self, result: RunResult) -> None:
        self.finalize()
        session_id = result.session_id or self.state.session_id or self.runtime.get_session()

        artifacts: list[ArtifactRecord] | None = None
        try:
            files = self.runtime.get_output_files()
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "task_run event=output_files_failed task_id=%s error=%s", self.task_id, exc
            )
        else:
            artifacts = self._safe_write(
                "artifacts", lambda: self.store.replace_artifacts(self.task_id, files)
            )

        changes: dict[str, Any] = {"status": "completed", "browser_live_url": None}
        if session_id:
            changes["session_id"] = session_id
        self._safe_write("task_completed", lambda: self.store.update_task(self.task_id, **changes))

        if artifacts is not None:
            self._send(
                ARTIFACTS,
                ArtifactsPayload(
                    artifacts=[
                        ArtifactSummary.model_validate(artifact.model_dump())
                        for artifact in artifacts
                    ]
                ),
            )
        self._send(STATUS, StatusPayload(status="completed"))
        self._send(DONE, DonePayload(session_id=session_id, exit_code=result.exit_code))
        logger.info(
            "task_run event=completed task_id=%s session_id=%s exit_code=%s",
            self.task_id,
            session_id,
            result.exit_code,
        )

    def _fail(self, exc: Exception) -> None:
        logger.exception("task_run event=failed task_id=%s", self.task_id)
        self.finalize()
        self._safe_write(
            "task_failed",
            lambda: self.store.update_task(self.task_id, status="failed", browser_live_url=None),
        )
        self._send(ERROR, ErrorPayload(message=str(exc) or exc.__class__.__name__))
        self._send(STATUS, StatusPayload(status="failed"))

    # Checkpoints

    def _ensure_message(self) -> str:
        message = self.state.message
        if message.message_id is None:
            record = self._safe_write(
                "assistant_message",
                lambda: self.store.create_message(self.task_id, role="assistant"),
            )
            message.message_id = record.id if record is not None else new_id()
        return message.message_id

    def _flush_content(self) -> None:
        message = self.state.message
        message_id = message.message_id
        if message_id is None:
            return
        # Once parts exist they are authoritative, so they move with the text.
        parts = message.snapshot_parts() if message.parts else None
        self._safe_write(
            "content_flush",
            lambda: self.store.update_message(message_id, content=message.content, parts=parts),
        )
        logger.debug(
            "stream_checkpoint event=flush task_id=%s chars=%s",
            self.task_id,
            len(message.content),
        )
        self.state.committed_chars = len(message.content)

    def _checkpoint_parts(self) -> None:
        message = self.state.message
        message_id = message.message_id
        if message_id is None:
            return
        parts = list(message.parts)
        self._safe_write(
            "parts_checkpoint",
            lambda: self.store.update_message(message_id, content=message.content, parts=parts),
        )
        self.state.committed_chars = len(message.content)

    def _track_session(self) -> None:
        if self.state.session_id is not None:
            return
        session_id = self.runtime.get_session()
        if not session_id:
            return
        self.state.session_id = session_id
        self._safe_write(
            "session", lambda: self.store.update_task(self.task_id, session_id=session_id)
        )
        logger.info("task_run event=session task_id=%s session_id=%s", self.task_id, session_id)

    def _send(self, event: str, payload: BaseModel | dict[str, Any]) -> None:
        if self.channel.send(event, payload):
            return
        if self.channel.detached and not self.state.detach_flushed:
            self.state.detach_flushed = True
            self._flush_on_detach()

    def _flush_on_detach(self) -> None:
        logger.info("task_run event=client_detached task_id=%s", self.task_id)
        message = self.state.message
        message_id = message.message_id
        if message_id is None or self.state.finalized:
            return
        parts = message.snapshot_parts()
        self._safe_write(
            "detach_flush",
            lambda: self.store.update_message(message_id, content=message.content, parts=parts),
        )
        self.state.committed_chars = len(message.content)

    def _safe_write(self, action: str, write: Callable[[], T]) -> T | None:
        try:
            return write()
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "stream_checkpoint event=write_failed task_id=%s action=%s error=%s",
                self.task_id,
                action,
                exc,
            )
            return None


def _now() -> datetime:
    return datetime.now(UTC)
