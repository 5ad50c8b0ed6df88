import json

from agent_stream.client.stream import TaskStreamClient
from agent_stream.errors import TransportError
from agent_stream.protocol.events import (
    DonePayload,
    MessageChunkPayload,
    StatusPayload,
    ThoughtChunkPayload,
    encode_frame,
)

BODY = (
    encode_frame("status", StatusPayload(status="running"))
    + encode_frame("message_chunk", MessageChunkPayload(message_id="m1", content="Grüße "))
    + encode_frame("message_chunk", MessageChunkPayload(message_id="m1", content="aus Köln"))
    + encode_frame("status", StatusPayload(status="completed"))
    + encode_frame("done", DonePayload(session_id="sess_1"))
).encode("utf-8")


def _chunks(data: bytes, size: int):
    for index in range(0, len(data), size):
        yield data[index : index + size]


def test_run_posts_request_and_folds_frames() -> None:
    requests: list[tuple[str, dict]] = []

    def _transport(url: str, body: bytes):
        requests.append((url, json.loads(body)))
        return _chunks(BODY, 7)

    client = TaskStreamClient("http://api.local/", transport=_transport)
    state = client.run("task-1", "continue", timeout_ms=5_000)

    assert requests == [
        ("http://api.local/tasks/task-1/run", {"prompt": "continue", "timeoutMs": 5_000})
    ]
    assert state.status == "completed"
    assert state.messages[0].content == "Grüße aus Köln"
    assert state.session_id == "sess_1"


def test_transport_failure_marks_run_failed_without_retry() -> None:
    attempts: list[str] = []

    def _transport(url: str, body: bytes):
        attempts.append(url)
        yield BODY[:40]
        raise TransportError("connection reset by peer")

    state = TaskStreamClient("http://api.local", transport=_transport).run("task-1")

    assert len(attempts) == 1
    assert state.status == "failed"
    assert state.error == "connection reset by peer"
    assert not state.is_running


def test_cancel_returns_to_idle_and_ignores_later_frames() -> None:
    def _transport(url: str, body: bytes):
        yield encode_frame("status", StatusPayload(status="running")).encode("utf-8")
        client.cancel()
        yield encode_frame("thought_chunk", ThoughtChunkPayload(content="late")).encode("utf-8")
        raise TransportError("aborted")

    client = TaskStreamClient("http://api.local", transport=_transport)
    state = client.run("task-1")

    assert state.status == "idle"
    assert not state.is_running
    assert state.current_thought == ""
    assert state.error is None
