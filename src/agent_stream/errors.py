"""Error taxonomy for the streaming task-execution protocol."""

from __future__ import annotations


class AgentStreamError(Exception):
    """Base class for errors raised by this package."""


class TransportError(AgentStreamError):
    """Network drop or abort while reading a run stream."""


class ApiResponseError(TransportError):
    """The server answered with a non-success HTTP status."""

    def __init__(self, status_code: int, detail: str) -> None:
        super().__init__(f"Request failed with status {status_code}: {detail[:400]}")
        self.status_code = status_code
        self.detail = detail


class AgentRunError(AgentStreamError):
    """The agent runtime failed while executing a run."""


class PersistenceWriteError(AgentStreamError):
    """A store write could not be applied (missing parent row, driver failure)."""


class FrameParseError(AgentStreamError):
    """A wire frame carried data that is not a valid JSON payload."""

    def __init__(self, event: str, data: str) -> None:
        super().__init__(f"Malformed '{event}' frame: {data[:200]!r}")
        self.event = event
        self.data = data


class RunConflictError(AgentStreamError):
    """Another run already holds the lease for this task."""

    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task {task_id} already has an active run")
        self.task_id = task_id


class InvalidTransitionError(AgentStreamError):
    """A task status change that the lifecycle does not allow."""

    def __init__(self, current: str, target: str) -> None:
        super().__init__(f"Cannot move task from '{current}' to '{target}'")
        self.current = current
        self.target = target
