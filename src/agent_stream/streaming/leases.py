"""Per-task run lease: at most one active run per task."""

from __future__ import annotations

import threading


class TaskLeases:
    def __init__(self) -> None:
        self._held: set[str] = set()
        self._lock = threading.Lock()

    def acquire(self, task_id: str) -> bool:
        with self._lock:
            if task_id in self._held:
                return False
            self._held.add(task_id)
            return True

    def release(self, task_id: str) -> None:
        with self._lock:
            self._held.discard(task_id)

    def is_held(self, task_id: str) -> bool:
        with self._lock:
            return task_id in self._held
