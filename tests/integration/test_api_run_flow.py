from __future__ import annotations

import json
import threading
import time

from fastapi.testclient import TestClient

from conftest import RecordingStore, decode_body, drain
from agent_stream.api.main import create_app
from agent_stream.client.polling import TaskViewController
from agent_stream.client.stream import TaskStreamClient
from agent_stream.errors import ApiResponseError
from agent_stream.models import TaskDetail, TextPart, ToolCallPart
from agent_stream.runtime.base import RunRequest, RunResult, RuntimeCallbacks
from agent_stream.runtime.scripted import ScriptedRuntime
from agent_stream.streaming.leases import TaskLeases


def _create_task(client: TestClient, prompt: str = "List the workspace files") -> str:
    response = client.post("/tasks", json={"prompt": prompt})
    assert response.status_code == 200
    return response.json()["id"]


def test_run_streams_events_and_persists_full_detail(client: TestClient) -> None:
    task_id = _create_task(client)

    response = client.post(f"/tasks/{task_id}/run", json={"prompt": "Please list files"})

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    assert response.headers["cache-control"] == "no-cache"
    frames = decode_body(response.content)
    events = [frame.event for frame in frames if frame.event != "raw_event"]
    assert events == [
        "status",
        "plan",
        "message_chunk",
        "tool_call",
        "tool_call_update",
        "message_chunk",
        "artifacts",
        "status",
        "done",
    ]
    assert json.loads(frames[-1].data) == {"sessionId": "sess_fixture", "exitCode": 0}

    detail = client.get(f"/tasks/{task_id}").json()
    assert detail["status"] == "completed"
    assert detail["sessionId"] == "sess_fixture"
    assert detail["browserLiveUrl"] is None
    assert [message["role"] for message in detail["messages"]] == ["user", "assistant"]
    assert detail["messages"][0]["content"] == "Please list files"

    assistant = detail["messages"][1]
    assert assistant["parts"] == [
        {"type": "text", "content": "Looking at the workspace first.\n\n"},
        {"type": "tool_call", "toolCallId": "call_list_files"},
        {"type": "text", "content": "The workspace holds a single README."},
    ]
    tool_call = assistant["toolCalls"][0]
    assert tool_call["command"] == "ls -la"
    assert tool_call["status"] == "completed"
    assert tool_call["outputContent"] == "README.md"
    assert [item["content"] for item in detail["progress"]] == [
        "Inspect the workspace",
        "Write the summary",
    ]
    assert sorted(artifact["name"] for artifact in detail["artifacts"]) == ["chart.png", "report.md"]


def test_run_without_prompt_uses_task_prompt_and_adds_no_user_message(
    client: TestClient, runtimes: dict[str, ScriptedRuntime]
) -> None:
    task_id = _create_task(client, "Original instructions")

    client.post(f"/tasks/{task_id}/run")

    assert runtimes[task_id].requests[0].prompt == "Original instructions"
    detail = client.get(f"/tasks/{task_id}").json()
    assert [message["role"] for message in detail["messages"]] == ["assistant"]


def test_second_run_reuses_live_session(
    client: TestClient, runtimes: dict[str, ScriptedRuntime]
) -> None:
    task_id = _create_task(client)

    client.post(f"/tasks/{task_id}/run")
    client.post(f"/tasks/{task_id}/run", json={"prompt": "And now the tests", "timeoutMs": 1000})

    requests = runtimes[task_id].requests
    assert len(requests) == 2
    assert requests[1].session_id == "sess_fixture"
    assert requests[1].timeout_ms == 1000
    assert client.get(f"/tasks/{task_id}").json()["status"] == "completed"


def test_run_missing_task_returns_404(client: TestClient) -> None:
    response = client.post("/tasks/does-not-exist/run")

    assert response.status_code == 404
    assert response.json()["detail"] == "Task not found"


def test_concurrent_run_is_rejected_while_lease_is_held(client: TestClient) -> None:
    task_id = _create_task(client)
    leases = client.app.state.leases
    assert leases.acquire(task_id)

    response = client.post(f"/tasks/{task_id}/run")

    assert response.status_code == 409
    leases.release(task_id)
    assert client.post(f"/tasks/{task_id}/run").status_code == 200
    assert not leases.is_held(task_id)


def test_put_ignores_null_session_while_run_holds_lease(
    client: TestClient, store: RecordingStore
) -> None:
    task_id = _create_task(client)
    store.update_task(task_id, session_id="sess_live")
    leases = client.app.state.leases

    leases.acquire(task_id)
    held = client.put(f"/tasks/{task_id}", json={"sessionId": None, "title": "Renamed"})
    leases.release(task_id)
    idle = client.put(f"/tasks/{task_id}", json={"sessionId": None})

    assert held.status_code == 200
    assert held.json()["sessionId"] == "sess_live"
    assert held.json()["title"] == "Renamed"
    assert idle.json()["sessionId"] is None


def test_put_applies_partial_update(client: TestClient) -> None:
    task_id = _create_task(client)

    response = client.put(
        f"/tasks/{task_id}",
        json={"browserScreenshotUrl": "https://shot/1", "status": None},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["browserScreenshotUrl"] == "https://shot/1"
    assert body["status"] == "pending"
    assert client.put("/tasks/missing", json={"title": "x"}).status_code == 404


def test_pause_and_resume_route_to_live_runtime(
    client: TestClient, store: RecordingStore, runtimes: dict[str, ScriptedRuntime]
) -> None:
    task_id = _create_task(client)
    store.update_task(task_id, status="running")
    runtime = client.app.state.runtimes.get_or_create(task_id)
    client.app.state.leases.acquire(task_id)

    paused = client.post(f"/tasks/{task_id}/pause")

    assert paused.status_code == 200
    assert paused.json()["status"] == "paused"
    assert runtime.paused

    resumed = client.post(f"/tasks/{task_id}/resume")

    assert resumed.status_code == 200
    assert resumed.json()["status"] == "running"
    assert not runtime.paused


def test_pause_requires_running_task(client: TestClient) -> None:
    task_id = _create_task(client)

    assert client.post(f"/tasks/{task_id}/pause").status_code == 400
    assert client.post(f"/tasks/{task_id}/resume").status_code == 400
    assert client.post("/tasks/missing/pause").status_code == 404


def test_failed_run_reports_error_and_persists_failure(
    store: RecordingStore, settings
) -> None:
    app = create_app(
        store=store,
        runtime_factory=lambda task_id: ScriptedRuntime(
            [{"sessionUpdate": "agent_message_chunk", "content": {"type": "text", "text": "Half"}}],
            fail_with="sandbox exited with code 137",
        ),
        settings_override=settings,
    )
    client = TestClient(app)
    task_id = _create_task(client)

    frames = decode_body(client.post(f"/tasks/{task_id}/run").content)

    assert [frame.event for frame in frames if frame.event != "raw_event"][-2:] == ["error", "status"]
    assert json.loads(frames[-2].data) == {"message": "sandbox exited with code 137"}
    detail = client.get(f"/tasks/{task_id}").json()
    assert detail["status"] == "failed"
    assert detail["messages"][0]["content"] == "Half"
    assert not app.state.leases.is_held(task_id)


class _TestClientApi:
    def __init__(self, client: TestClient) -> None:
        self.client = client

    def get_task(self, task_id: str) -> TaskDetail:
        return TaskDetail.model_validate(self.client.get(f"/tasks/{task_id}").json())


def _transport(client: TestClient):
    def _send(url: str, body: bytes):
        response = client.post(url, content=body, headers={"Content-Type": "application/json"})
        if response.status_code != 200:
            raise ApiResponseError(response.status_code, response.text)
        data = response.content
        for index in range(0, len(data), 5):
            yield data[index : index + 5]

    return _send


def test_stream_client_matches_hydrated_view(client: TestClient) -> None:
    task_id = _create_task(client)
    stream = TaskStreamClient("http://testserver", transport=_transport(client))

    state = stream.run(task_id, "Go")

    streamed = [message for message in state.messages if message.role == "assistant"][0]
    controller = TaskViewController(_TestClientApi(client), TaskStreamClient("http://unused"))
    assert controller.open(task_id) == "completed"
    hydrated = [message for message in controller.state.messages if message.role == "assistant"][0]

    assert state.status == "completed"
    assert streamed.parts == hydrated.parts
    assert streamed.parts == [
        TextPart(content="Looking at the workspace first.\n\n"),
        ToolCallPart(tool_call_id="call_list_files"),
        TextPart(content="The workspace holds a single README."),
    ]


def test_stream_client_surfaces_conflict_as_failure(client: TestClient) -> None:
    task_id = _create_task(client)
    client.app.state.leases.acquire(task_id)

    state = TaskStreamClient("http://testserver", transport=_transport(client)).run(task_id)

    assert state.status == "failed"
    assert "409" in state.error


def test_put_enforces_status_transitions(client: TestClient) -> None:
    task_id = _create_task(client)

    skipped = client.put(f"/tasks/{task_id}", json={"status": "completed"})
    unchanged = client.put(f"/tasks/{task_id}", json={"status": "pending", "title": "Same"})
    detached = client.put(f"/tasks/{task_id}", json={"status": "running"})

    assert skipped.status_code == 400
    assert unchanged.status_code == 200
    assert unchanged.json()["status"] == "pending"
    assert detached.status_code == 400
    assert client.get(f"/tasks/{task_id}").json()["status"] == "pending"


def test_put_status_change_during_run(client: TestClient, store: RecordingStore) -> None:
    task_id = _create_task(client)
    store.update_task(task_id, status="running")
    client.app.state.runtimes.get_or_create(task_id)
    client.app.state.leases.acquire(task_id)

    failed = client.put(f"/tasks/{task_id}", json={"status": "failed"})
    reopened = client.put(f"/tasks/{task_id}", json={"status": "paused"})

    assert failed.status_code == 200
    assert failed.json()["status"] == "failed"
    assert reopened.status_code == 400


def test_pause_after_run_finished_leaves_completed(
    client: TestClient, runtimes: dict[str, ScriptedRuntime]
) -> None:
    task_id = _create_task(client)
    client.post(f"/tasks/{task_id}/run")

    response = client.post(f"/tasks/{task_id}/pause")

    assert response.status_code == 400
    assert client.get(f"/tasks/{task_id}").json()["status"] == "completed"
    assert not runtimes[task_id].paused


def test_resume_without_active_run_is_rejected(
    client: TestClient, store: RecordingStore
) -> None:
    task_id = _create_task(client)
    client.app.state.runtimes.get_or_create(task_id)
    store.update_task(task_id, status="paused")

    response = client.post(f"/tasks/{task_id}/resume")

    assert response.status_code == 400
    assert response.json()["detail"] == "Task has no active run"
    assert client.get(f"/tasks/{task_id}").json()["status"] == "paused"


class _FinishOnPauseRuntime:
    """Runtime whose run ends while a pause request is being handled."""

    def __init__(self, leases: TaskLeases, task_id: str) -> None:
        self.leases = leases
        self.task_id = task_id
        self.started = threading.Event()
        self.finish = threading.Event()

    def run(self, request: RunRequest, callbacks: RuntimeCallbacks) -> RunResult:
        self.started.set()
        self.finish.wait(timeout=5.0)
        return RunResult(session_id="sess_race", exit_code=0)

    def get_session(self) -> str | None:
        return "sess_race"

    def get_output_files(self) -> dict[str, str | bytes]:
        return {}

    def pause(self) -> None:
        self.finish.set()
        deadline = time.monotonic() + 5.0
        while self.leases.is_held(self.task_id) and time.monotonic() < deadline:
            time.sleep(0.01)

    def resume(self) -> None:
        return None


def test_run_finishing_during_pause_keeps_terminal_status(
    store: RecordingStore, settings
) -> None:
    holder: dict[str, _FinishOnPauseRuntime] = {}
    app = create_app(
        store=store,
        runtime_factory=lambda task_id: holder.setdefault(
            "runtime", _FinishOnPauseRuntime(app.state.leases, task_id)
        ),
        settings_override=settings,
    )
    client = TestClient(app)
    task_id = _create_task(client)
    channel = app.state.launcher.start(store.get_task(task_id))
    assert holder["runtime"].started.wait(timeout=5.0)

    paused = client.post(f"/tasks/{task_id}/pause")
    resumed = client.post(f"/tasks/{task_id}/resume")

    assert paused.status_code == 200
    assert paused.json()["status"] == "completed"
    assert resumed.status_code == 400
    assert store.get_task(task_id).status == "completed"
    assert not app.state.leases.is_held(task_id)
    assert drain(channel)[-1].event == "done"
