import pytest

from conftest import make_detail
from agent_stream.client.polling import TaskPoller, TaskViewController, resolve_view_state
from agent_stream.client.stream import TaskStreamClient
from agent_stream.errors import TransportError
from agent_stream.protocol.events import DonePayload, StatusPayload, encode_frame


class SequenceFetcher:
    def __init__(self, *results) -> None:
        self.results = list(results)
        self.calls = 0

    def get_task(self, task_id: str):
        result = self.results[min(self.calls, len(self.results) - 1)]
        self.calls += 1
        if isinstance(result, Exception):
            raise result
        return result


@pytest.mark.parametrize(
    ("status", "attached", "expected"),
    [
        ("running", True, "running_attached"),
        ("running", False, "running_detached"),
        ("pending", False, "idle"),
        (None, False, "idle"),
        ("paused", False, "paused"),
        ("completed", False, "completed"),
        ("failed", False, "failed"),
        ("completed", True, "running_attached"),
    ],
)
def test_resolve_view_state(status, attached, expected) -> None:
    assert resolve_view_state(status, attached) == expected


def test_poller_stops_once_task_leaves_running() -> None:
    fetcher = SequenceFetcher(
        make_detail("running"), make_detail("running"), make_detail("completed")
    )
    sleeps: list[float] = []
    updates: list[str] = []

    poller = TaskPoller(
        fetcher.get_task,
        interval_s=2.0,
        sleep=sleeps.append,
        on_update=lambda detail: updates.append(detail.status),
    )
    result = poller.poll("task-1")

    assert result.status == "completed"
    assert sleeps == [2.0, 2.0]
    assert updates == ["running", "running", "completed"]


def test_poller_survives_transient_fetch_errors() -> None:
    fetcher = SequenceFetcher(TransportError("connection reset"), make_detail("failed"))
    sleeps: list[float] = []

    result = TaskPoller(fetcher.get_task, sleep=sleeps.append).poll("task-1")

    assert result.status == "failed"
    assert sleeps == [2.0]


def test_poller_stop_ends_polling() -> None:
    fetcher = SequenceFetcher(make_detail("running"))
    poller = TaskPoller(fetcher.get_task, sleep=lambda _: poller.stop())

    result = poller.poll("task-1")

    assert result.status == "running"
    assert fetcher.calls == 1


def test_view_controller_polls_detached_run_until_settled() -> None:
    fetcher = SequenceFetcher(
        make_detail("running"), make_detail("running"), make_detail("completed")
    )
    stream = TaskStreamClient("http://unused", transport=lambda url, body: [])
    controller = TaskViewController(fetcher, stream, sleep=lambda _: None)

    assert controller.open("task-1") == "running_detached"

    controller.poller.join(timeout=2.0)
    assert controller.view_state == "completed"
    assert controller.state.status == "completed"


def test_view_controller_never_polls_while_attached() -> None:
    fetcher = SequenceFetcher(make_detail("completed"))
    seen: list[str] = []

    def _transport(url: str, body: bytes):
        seen.append(controller.view_state)
        seen.append("polling" if controller.poller.active else "quiet")
        yield encode_frame("status", StatusPayload(status="running")).encode("utf-8")
        yield encode_frame("status", StatusPayload(status="completed")).encode("utf-8")
        yield encode_frame("done", DonePayload(session_id="s1")).encode("utf-8")

    stream = TaskStreamClient("http://unused", transport=_transport)
    controller = TaskViewController(fetcher, stream, sleep=lambda _: None)

    assert controller.run("task-1", "go on") == "completed"
    assert seen == ["running_attached", "quiet"]
    assert not controller.poller.active
