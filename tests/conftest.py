from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

import pytest
from fastapi.testclient import TestClient

from agent_stream.api.main import create_app
from agent_stream.client.decoder import Frame, SSEDecoder
from agent_stream.config.settings import Settings
from agent_stream.models import MessagePart, TaskDetail, TaskStatus
from agent_stream.runtime.base import RunRequest, RunResult, RuntimeCallbacks
from agent_stream.runtime.scripted import ScriptedRuntime
from agent_stream.storage.memory import InMemoryTaskStore
from agent_stream.streaming.channel import FrameChannel

Step = Callable[[RuntimeCallbacks], None]


class RecordingStore(InMemoryTaskStore):
    """In-memory store that also records the order and shape of writes."""

    def __init__(self) -> None:
        super().__init__()
        self.writes: list[tuple[str, Any]] = []

    def update_task(
        self, task_id: str, *, expected_status: TaskStatus | None = None, **changes: Any
    ):
        self.writes.append(("update_task", dict(changes)))
        return super().update_task(task_id, expected_status=expected_status, **changes)

    def create_message(self, task_id: str, **kwargs: Any):
        record = super().create_message(task_id, **kwargs)
        self.writes.append(("create_message", record))
        return record

    def update_message(
        self, message_id: str, *, content: str, parts: list[MessagePart] | None = None
    ) -> None:
        self.writes.append(("update_message", (content, None if parts is None else list(parts))))
        super().update_message(message_id, content=content, parts=parts)

    def create_tool_call(self, tool_call):
        self.writes.append(("create_tool_call", tool_call))
        return super().create_tool_call(tool_call)

    def message_writes(self) -> list[tuple[str, list[MessagePart] | None]]:
        return [payload for kind, payload in self.writes if kind == "update_message"]

    def task_updates(self) -> list[dict[str, Any]]:
        return [payload for kind, payload in self.writes if kind == "update_task"]


class StepRuntime:
    """Runtime driven by plain callables, one per step."""

    def __init__(
        self,
        steps: list[Step],
        *,
        sessions: list[str | None] | None = None,
        output_files: dict[str, str | bytes] | None = None,
        error: Exception | None = None,
        exit_code: int = 0,
    ) -> None:
        self.steps = steps
        self.sessions = sessions if sessions is not None else ["sess_step"]
        self.output_files = output_files or {}
        self.error = error
        self.exit_code = exit_code
        self.session_calls = 0

    def run(self, request: RunRequest, callbacks: RuntimeCallbacks) -> RunResult:
        for step in self.steps:
            step(callbacks)
        if self.error is not None:
            raise self.error
        return RunResult(session_id=None, exit_code=self.exit_code)

    def get_session(self) -> str | None:
        index = min(self.session_calls, len(self.sessions) - 1)
        self.session_calls += 1
        return self.sessions[index]

    def get_output_files(self) -> dict[str, str | bytes]:
        return dict(self.output_files)

    def pause(self) -> None:
        return None

    def resume(self) -> None:
        return None


def drain(channel: FrameChannel) -> list[Frame]:
    """Decode every frame queued on a closed channel."""
    decoder = SSEDecoder()
    frames: list[Frame] = []
    for text in channel.frames():
        frames.extend(decoder.feed(text.encode("utf-8")))
    return frames


def decode_body(body: bytes) -> list[Frame]:
    return SSEDecoder().feed(body)


def make_detail(status: TaskStatus, **fields: Any) -> TaskDetail:
    now = datetime.now(UTC)
    return TaskDetail(
        id=fields.pop("id", "task-1"),
        title="Demo",
        prompt="Demo prompt",
        status=status,
        created_at=now,
        updated_at=now,
        **fields,
    )


@pytest.fixture
def settings() -> Settings:
    return Settings(storage_backend="memory", stream_keepalive_s=0.5)


@pytest.fixture
def store() -> RecordingStore:
    return RecordingStore()


@pytest.fixture
def runtimes() -> dict[str, ScriptedRuntime]:
    return {}


@pytest.fixture
def client(
    store: RecordingStore,
    runtimes: dict[str, ScriptedRuntime],
    settings: Settings,
) -> TestClient:
    def _factory(task_id: str) -> ScriptedRuntime:
        runtime = ScriptedRuntime(
            session_id="sess_fixture",
            output_files={"report.md": "# Report\n", "chart.png": b"\x89PNG\r\n\x1a\n\xff"},
        )
        runtimes[task_id] = runtime
        return runtime

    app = create_app(store=store, runtime_factory=_factory, settings_override=settings)
    return TestClient(app)
