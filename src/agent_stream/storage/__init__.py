"""Storage backends for tasks and their run artifacts."""

from agent_stream.storage.base import TaskStore
from agent_stream.storage.memory import InMemoryTaskStore
from agent_stream.storage.postgres import PostgresTaskStore

__all__ = [
    "InMemoryTaskStore",
    "PostgresTaskStore",
    "TaskStore",
]
