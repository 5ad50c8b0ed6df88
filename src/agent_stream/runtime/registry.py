"""Live-session registry keyed by task id."""

from __future__ import annotations

import threading
from collections.abc import Callable

from agent_stream.runtime.base import AgentRuntime

RuntimeFactory = Callable[[str], AgentRuntime]


class RuntimeRegistry:
    """Keeps one runtime per task so later runs and pause/resume reach the same session."""

    def __init__(self, factory: RuntimeFactory) -> None:
        self._factory = factory
        self._runtimes: dict[str, AgentRuntime] = {}
        self._lock = threading.Lock()

    def get(self, task_id: str) -> AgentRuntime | None:
        with self._lock:
            return self._runtimes.get(task_id)

    def get_or_create(self, task_id: str) -> AgentRuntime:
        with self._lock:
            runtime = self._runtimes.get(task_id)
            if runtime is None:
                runtime = self._factory(task_id)
                self._runtimes[task_id] = runtime
            return runtime

    def pause(self, task_id: str) -> bool:
        runtime = self.get(task_id)
        if runtime is None:
            return False
        runtime.pause()
        return True

    def resume(self, task_id: str) -> bool:
        runtime = self.get(task_id)
        if runtime is None:
            return False
        runtime.resume()
        return True
