"""Task status lifecycle."""

from __future__ import annotations

from agent_stream.errors import InvalidTransitionError
from agent_stream.models import TaskStatus

TERMINAL_STATUSES: frozenset[TaskStatus] = frozenset({"completed", "failed"})

ALLOWED_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    "pending": frozenset({"running"}),
    "running": frozenset({"paused", "completed", "failed"}),
    "paused": frozenset({"running"}),
    # A new prompt on a finished task starts another run.
    "completed": frozenset({"running"}),
    "failed": frozenset({"running"}),
}


def can_transition(current: TaskStatus, target: TaskStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def ensure_transition(current: TaskStatus, target: TaskStatus) -> None:
    if not can_transition(current, target):
        raise InvalidTransitionError(current, target)
