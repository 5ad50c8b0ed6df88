"""Server side of the run stream: encoder, wire channel, leases and launcher."""

from agent_stream.streaming.channel import FrameChannel
from agent_stream.streaming.encoder import RunAccumulator, RunEncoder
from agent_stream.streaming.launcher import RunLauncher
from agent_stream.streaming.leases import TaskLeases
from agent_stream.streaming.status import can_transition, ensure_transition

__all__ = [
    "FrameChannel",
    "RunAccumulator",
    "RunEncoder",
    "RunLauncher",
    "TaskLeases",
    "can_transition",
    "ensure_transition",
]
