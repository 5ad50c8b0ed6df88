import io
import json
from urllib import error

import pytest

from agent_stream.client import api as api_module
from agent_stream.client.api import TaskApiClient
from agent_stream.errors import ApiResponseError, TransportError

TASK = {
    "id": "task-1",
    "title": "Demo",
    "prompt": "Demo prompt",
    "status": "pending",
    "createdAt": "2026-01-01T00:00:00Z",
    "updatedAt": "2026-01-01T00:00:00Z",
}


class _FakeResponse:
    def __init__(self, body: bytes) -> None:
        self._body = body

    def __enter__(self):
        return self

    def __exit__(self, *exc_info) -> None:
        return None

    def read(self) -> bytes:
        return self._body


def _capture(monkeypatch: pytest.MonkeyPatch, body: bytes) -> list:
    seen: list = []

    def _urlopen(req, timeout):
        seen.append((req, timeout))
        return _FakeResponse(body)

    monkeypatch.setattr(api_module.request, "urlopen", _urlopen)
    return seen


def test_update_task_sends_only_provided_fields(monkeypatch: pytest.MonkeyPatch) -> None:
    seen = _capture(monkeypatch, json.dumps({**TASK, "sessionId": None}).encode("utf-8"))

    record = TaskApiClient("http://api.local/", timeout_s=5.0).update_task(
        "task-1", session_id=None
    )

    req, timeout = seen[0]
    assert req.get_method() == "PUT"
    assert req.full_url == "http://api.local/tasks/task-1"
    assert json.loads(req.data) == {"sessionId": None}
    assert timeout == 5.0
    assert record.session_id is None


def test_get_task_parses_detail(monkeypatch: pytest.MonkeyPatch) -> None:
    _capture(monkeypatch, json.dumps({**TASK, "status": "running", "messages": []}).encode("utf-8"))

    detail = TaskApiClient("http://api.local").get_task("task-1")

    assert detail.status == "running"
    assert detail.messages == []


def test_http_error_maps_to_api_response_error(monkeypatch: pytest.MonkeyPatch) -> None:
    def _urlopen(req, timeout):
        raise error.HTTPError(
            req.full_url, 404, "Not Found", hdrs=None, fp=io.BytesIO(b'{"detail":"Task not found"}')
        )

    monkeypatch.setattr(api_module.request, "urlopen", _urlopen)

    with pytest.raises(ApiResponseError) as exc_info:
        TaskApiClient("http://api.local").pause_task("missing")

    assert exc_info.value.status_code == 404
    assert "Task not found" in exc_info.value.detail


def test_unreachable_server_maps_to_transport_error(monkeypatch: pytest.MonkeyPatch) -> None:
    def _urlopen(req, timeout):
        raise error.URLError("connection refused")

    monkeypatch.setattr(api_module.request, "urlopen", _urlopen)

    with pytest.raises(TransportError, match="connection refused"):
        TaskApiClient("http://api.local").health()


def test_non_json_body_is_a_transport_error(monkeypatch: pytest.MonkeyPatch) -> None:
    _capture(monkeypatch, b"<html>gateway timeout</html>")

    with pytest.raises(TransportError, match="non-JSON"):
        TaskApiClient("http://api.local").health()
