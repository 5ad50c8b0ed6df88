"""Agent runtime adapter contract and implementations."""

from agent_stream.runtime.base import (
    AgentRuntime,
    FileMap,
    PlanEntry,
    RunRequest,
    RunResult,
    RuntimeCallbacks,
    ToolCallStart,
)
from agent_stream.runtime.registry import RuntimeRegistry
from agent_stream.runtime.scripted import ScriptedRuntime
from agent_stream.runtime.updates import dispatch_session_update

__all__ = [
    "AgentRuntime",
    "FileMap",
    "PlanEntry",
    "RunRequest",
    "RunResult",
    "RuntimeCallbacks",
    "RuntimeRegistry",
    "ScriptedRuntime",
    "ToolCallStart",
    "dispatch_session_update",
]
