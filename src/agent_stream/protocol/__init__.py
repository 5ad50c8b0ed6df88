"""Wire contract shared by the server encoder and the client decoder."""

from agent_stream.protocol.accumulation import MessageAccumulation
from agent_stream.protocol.events import encode_frame, parse_payload
from agent_stream.protocol.parts import reconstruct_parts

__all__ = [
    "MessageAccumulation",
    "encode_frame",
    "parse_payload",
    "reconstruct_parts",
]
