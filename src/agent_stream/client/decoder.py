"""Chunk-invariant decoder for the run event stream.

Network reads split the byte stream anywhere: inside a UTF-8 sequence, inside
a line, between ``event:`` and ``data:``. The decoder keeps all three kinds of
partial state across ``feed`` calls, so the frames produced never depend on
where the chunk boundaries fell.
"""

from __future__ import annotations

import codecs
from dataclasses import dataclass


@dataclass(frozen=True)
class Frame:
    event: str
    data: str


class SSEDecoder:
    def __init__(self) -> None:
        self.reset()

    def reset(self) -> None:
        """Drop buffered bytes, the partial line and any pending event name."""
        self._bytes = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._line_buffer = ""
        self._event: str | None = None

    def feed(self, chunk: bytes | str) -> list[Frame]:
        text = self._bytes.decode(chunk) if isinstance(chunk, bytes) else chunk
        self._line_buffer += text
        *lines, self._line_buffer = self._line_buffer.split("\n")

        frames: list[Frame] = []
        for line in lines:
            frame = self._consume_line(line.rstrip("\r"))
            if frame is not None:
                frames.append(frame)
        return frames

    def _consume_line(self, line: str) -> Frame | None:
        # Blank separators and ":" comments (keepalives) carry nothing.
        if not line or line.startswith(":"):
            return None
        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]

        if name == "event":
            self._event = value or None
        elif name == "data" and self._event and value:
            frame = Frame(event=self._event, data=value)
            self._event = None
            return frame
        return None
