"""Deterministic runtime that replays a fixed list of session updates."""

from __future__ import annotations

import json
import threading
import time
import uuid
from pathlib import Path
from typing import Any

from agent_stream.errors import AgentRunError
from agent_stream.runtime.base import FileMap, RunRequest, RunResult, RuntimeCallbacks
from agent_stream.runtime.updates import dispatch_session_update

DEFAULT_SCRIPT: list[dict[str, Any]] = [
    {
        "sessionUpdate": "plan",
        "entries": [
            {"content": "Inspect the workspace", "status": "in_progress", "priority": "high"},
            {"content": "Write the summary", "status": "pending", "priority": "medium"},
        ],
    },
    {
        "sessionUpdate": "agent_message_chunk",
        "content": {"type": "text", "text": "Looking at the workspace first.\n\n"},
    },
    {
        "sessionUpdate": "tool_call",
        "toolCallId": "call_list_files",
        "title": "List files",
        "kind": "execute",
        "status": "in_progress",
        "rawInput": {"command": "ls -la"},
    },
    {
        "sessionUpdate": "tool_call_update",
        "toolCallId": "call_list_files",
        "status": "completed",
        "content": [{"type": "content", "content": {"type": "text", "text": "README.md"}}],
    },
    {
        "sessionUpdate": "agent_message_chunk",
        "content": {"type": "text", "text": "The workspace holds a single README."},
    },
]


class ScriptedRuntime:
    """Replays scripted updates through the callback stream.

    Useful for local development and tests: the session id is assigned before
    the first update, output files are returned verbatim, and ``fail_with``
    raises after the script has been replayed.
    """

    def __init__(
        self,
        updates: list[dict[str, Any]] | None = None,
        *,
        session_id: str | None = None,
        output_files: FileMap | None = None,
        exit_code: int = 0,
        fail_with: str | None = None,
        step_delay_s: float = 0.0,
    ) -> None:
        self.updates = list(DEFAULT_SCRIPT if updates is None else updates)
        self.output_files: FileMap = dict(output_files or {})
        self.exit_code = exit_code
        self.fail_with = fail_with
        self.step_delay_s = step_delay_s
        self.requests: list[RunRequest] = []
        self._session_id = session_id
        self._running = threading.Event()
        self._running.set()

    @classmethod
    def from_file(cls, path: Path) -> ScriptedRuntime:
        raw = json.loads(path.read_text(encoding="utf-8"))
        if isinstance(raw, list):
            return cls(raw)
        return cls(
            raw.get("updates") or [],
            session_id=raw.get("sessionId"),
            output_files=raw.get("outputFiles") or {},
            exit_code=int(raw.get("exitCode", 0)),
            fail_with=raw.get("failWith"),
        )

    def run(self, request: RunRequest, callbacks: RuntimeCallbacks) -> RunResult:
        self.requests.append(request)
        if self._session_id is None:
            self._session_id = request.session_id or f"sess_{uuid.uuid4().hex[:12]}"

        deadline = time.monotonic() + request.timeout_ms / 1000.0
        for update in self.updates:
            # Paused sessions hold between updates until resumed.
            self._running.wait()
            if time.monotonic() > deadline:
                raise AgentRunError(f"Run timed out after {request.timeout_ms} ms")
            dispatch_session_update({"sessionId": self._session_id, "update": update}, callbacks)
            if self.step_delay_s > 0:
                time.sleep(self.step_delay_s)

        if self.fail_with is not None:
            raise AgentRunError(self.fail_with)
        return RunResult(session_id=self._session_id, exit_code=self.exit_code)

    @property
    def paused(self) -> bool:
        return not self._running.is_set()

    def get_session(self) -> str | None:
        return self._session_id

    def get_output_files(self) -> FileMap:
        return dict(self.output_files)

    def pause(self) -> None:
        self._running.clear()

    def resume(self) -> None:
        self._running.set()
