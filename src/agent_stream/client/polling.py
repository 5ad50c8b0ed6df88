"""Polling fallback for runs no stream is attached to.

A task can be ``running`` in storage while this client holds no stream: the
page was reloaded, or another client started the run. The view then polls the
stored task until it leaves ``running``. Streaming and polling never overlap.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import Literal, Protocol

from agent_stream.client.state import TaskStreamState
from agent_stream.client.stream import TaskStreamClient
from agent_stream.models import TaskDetail, TaskStatus

logger = logging.getLogger(__name__)

ViewState = Literal[
    "idle",
    "running_attached",
    "running_detached",
    "paused",
    "completed",
    "failed",
]


class TaskFetcher(Protocol):
    def get_task(self, task_id: str) -> TaskDetail: ...


def resolve_view_state(persisted_status: TaskStatus | None, stream_attached: bool) -> ViewState:
    if stream_attached:
        return "running_attached"
    if persisted_status is None or persisted_status == "pending":
        return "idle"
    if persisted_status == "running":
        return "running_detached"
    return persisted_status


class TaskPoller:
    def __init__(
        self,
        fetch: Callable[[str], TaskDetail],
        *,
        interval_s: float = 2.0,
        on_update: Callable[[TaskDetail], None] | None = None,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        self.fetch = fetch
        self.interval_s = interval_s
        self.on_update = on_update
        self._sleep = sleep
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def active(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def poll(self, task_id: str) -> TaskDetail | None:
        """Fetch until the task leaves ``running`` or ``stop()`` is called."""
        latest: TaskDetail | None = None
        while not self._stop.is_set():
            try:
                detail = self.fetch(task_id)
            except Exception as exc:  # noqa: BLE001
                logger.warning("task_poll event=fetch_failed task_id=%s error=%s", task_id, exc)
            else:
                latest = detail
                if self._stop.is_set():
                    break
                if self.on_update is not None:
                    self.on_update(detail)
                if detail.status != "running":
                    logger.info("task_poll event=settled task_id=%s status=%s", task_id, detail.status)
                    return detail
            self._wait()
        return latest

    def start(self, task_id: str) -> None:
        if self.active:
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self.poll, args=(task_id,), name=f"task-poll-{task_id[:8]}", daemon=True
        )
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()

    def join(self, timeout: float | None = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def _wait(self) -> None:
        if self._sleep is not None:
            self._sleep(self.interval_s)
        else:
            self._stop.wait(self.interval_s)


class TaskViewController:
    """Owns one task view: hydrate, stream when running here, poll otherwise."""

    def __init__(
        self,
        api: TaskFetcher,
        stream: TaskStreamClient,
        *,
        poll_interval_s: float = 2.0,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        self.api = api
        self.stream = stream
        self.state: TaskStreamState = stream.state
        self.persisted_status: TaskStatus | None = None
        self._attached = False
        self._poll_interval_s = poll_interval_s
        self._sleep = sleep
        self.poller = self._new_poller()

    @property
    def view_state(self) -> ViewState:
        return resolve_view_state(self.persisted_status, self._attached)

    def open(self, task_id: str) -> ViewState:
        self._apply_snapshot(self.api.get_task(task_id))
        view_state = self.view_state
        self._maybe_poll(task_id)
        return view_state

    def run(self, task_id: str, prompt: str | None = None) -> ViewState:
        self.poller.stop()
        self._attached = True
        try:
            self.stream.run(task_id, prompt)
        finally:
            self._attached = False
        if self.state.status != "idle":
            self._apply_snapshot(self.api.get_task(task_id))
            self._maybe_poll(task_id)
        return self.view_state

    def close(self) -> None:
        self.poller.stop()
        if self._attached:
            self.stream.cancel()

    def _maybe_poll(self, task_id: str) -> None:
        if self.persisted_status == "running" and not self._attached:
            self.poller.stop()
            self.poller = self._new_poller()
            self.poller.start(task_id)

    def _new_poller(self) -> TaskPoller:
        return TaskPoller(
            self.api.get_task,
            interval_s=self._poll_interval_s,
            on_update=self._apply_snapshot,
            sleep=self._sleep,
        )

    def _apply_snapshot(self, detail: TaskDetail) -> None:
        self.persisted_status = detail.status
        self.state.hydrate(detail)
