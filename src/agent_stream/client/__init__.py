"""Client side of the run stream: decoder, view state, REST and polling."""

from agent_stream.client.api import TaskApiClient
from agent_stream.client.decoder import Frame, SSEDecoder
from agent_stream.client.polling import TaskPoller, TaskViewController, resolve_view_state
from agent_stream.client.state import TaskStreamState, ViewMessage, hydrate_messages
from agent_stream.client.stream import TaskStreamClient

__all__ = [
    "Frame",
    "SSEDecoder",
    "TaskApiClient",
    "TaskPoller",
    "TaskStreamClient",
    "TaskStreamState",
    "TaskViewController",
    "ViewMessage",
    "hydrate_messages",
    "resolve_view_state",
]
